"""Services package for Khata business logic.

Focused service classes that the KhataEngine facade wires together.
"""

from .customer_service import CustomerService
from .loan_service import LoanService
from .repayment_ledger import RepaymentLedger
from .summary import SummaryReport

__all__ = ['CustomerService', 'LoanService', 'RepaymentLedger', 'SummaryReport']
