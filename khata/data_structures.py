from dataclasses import dataclass, field, asdict
from typing import Any, BinaryIO, Dict, Optional

from .config import (
    CURRENCY_SYMBOL, DATE_FORMAT_DISPLAY, RECEIPT_FOOTER,
    RECEIPT_MARGIN_MM, RECEIPT_PAGE_SIZE
)
from .result import Result

STATUS_PENDING = "pending"
STATUS_OVERDUE = "overdue"
STATUS_PAID = "paid"
LOAN_STATUSES = (STATUS_PENDING, STATUS_OVERDUE, STATUS_PAID)

FREQUENCY_BI_WEEKLY = "bi-weekly"
FREQUENCY_MONTHLY = "monthly"
FREQUENCIES = (FREQUENCY_BI_WEEKLY, FREQUENCY_MONTHLY)


@dataclass
class Owner:
    id: int
    name: str
    shop_name: str
    phone: str = ""
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Owner':
        return cls(
            id=row['id'],
            name=row['name'],
            shop_name=row['shop_name'],
            phone=row.get('phone') or "",
            created_at=row.get('created_at'),
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class Customer:
    id: int
    owner_id: int
    name: str
    phone: str = ""
    address: str = ""
    trust_score: float = 0
    credit_limit: float = 0
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Customer':
        return cls(
            id=row['id'],
            owner_id=row['owner_id'],
            name=row['name'],
            phone=row.get('phone') or "",
            address=row.get('address') or "",
            trust_score=row.get('trust_score') or 0,
            credit_limit=row.get('credit_limit') or 0,
            created_at=row.get('created_at'),
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class Loan:
    """A loan issued by a shop owner to one of their customers.

    ``remaining_amount`` never exceeds ``amount``; ``status`` is ``paid``
    exactly when the balance is cleared or the loan was closed, and
    ``is_active`` mirrors that terminal state.
    """
    id: int
    owner_id: int
    customer_id: int
    description: str
    amount: float
    remaining_amount: float
    issue_date: str
    due_date: str
    frequency: str
    interest_rate: float = 0
    grace_days: int = 0
    status: str = STATUS_PENDING
    is_active: bool = True
    paid_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Loan':
        return cls(
            id=row['id'],
            owner_id=row['owner_id'],
            customer_id=row['customer_id'],
            description=row['description'],
            amount=row['amount'],
            remaining_amount=row['remaining_amount'],
            issue_date=row['issue_date'],
            due_date=row['due_date'],
            frequency=row['frequency'],
            interest_rate=row.get('interest_rate') or 0,
            grace_days=row.get('grace_days') or 0,
            status=row['status'],
            is_active=bool(row['is_active']),
            paid_at=row.get('paid_at'),
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at'),
        )

    @property
    def collected(self) -> float:
        return round(self.amount - self.remaining_amount, 2)

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class Repayment:
    """One immutable entry of a loan's repayment ledger."""
    id: int
    owner_id: int
    loan_id: int
    customer_id: int
    amount: float
    payment_date: str
    balance_after: float
    notes: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Repayment':
        return cls(
            id=row['id'],
            owner_id=row['owner_id'],
            loan_id=row['loan_id'],
            customer_id=row['customer_id'],
            amount=row['amount'],
            payment_date=row['payment_date'],
            balance_after=row['balance_after'],
            notes=row.get('notes'),
            created_at=row.get('created_at'),
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class ReceiptData:
    """Flat payment summary handed to the receipt renderer."""
    repayment_id: int
    customer_name: str
    loan_description: str
    amount: float
    payment_date: str
    remaining_balance: float
    shop_name: str


@dataclass
class ReceiptConfig:
    title: str = "Payment Receipt"
    footer: str = RECEIPT_FOOTER
    currency_symbol: str = CURRENCY_SYMBOL
    date_format: str = DATE_FORMAT_DISPLAY
    page_size: str = RECEIPT_PAGE_SIZE
    margin_mm: float = RECEIPT_MARGIN_MM


@dataclass
class ReceiptDocument:
    """A rendered receipt ready to be served as a download."""
    filename: str
    content_type: str
    stream: BinaryIO


@dataclass
class RepaymentOutcome:
    """What recording a repayment hands back to the caller.

    ``receipt`` holds the saved receipt path, or the render error; the
    repayment and loan are committed either way.
    """
    repayment: Repayment
    loan: Loan
    receipt: Result = field(default_factory=Result.ok)
    receipt_url: Optional[str] = None


@dataclass
class LoanSummary:
    total_loaned: float = 0.0
    total_collected: float = 0.0
    total_remaining: float = 0.0
    overdue_amount: float = 0.0
    avg_repayment_time: float = 0.0
    active_loans: int = 0
    repaid_loans: int = 0

    def to_dict(self):
        return {
            "totalLoaned": self.total_loaned,
            "totalCollected": self.total_collected,
            "totalRemaining": self.total_remaining,
            "overdueAmount": self.overdue_amount,
            "avgRepaymentTime": self.avg_repayment_time,
            "activeLoans": self.active_loans,
            "repaidLoans": self.repaid_loans,
        }
