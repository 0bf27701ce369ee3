"""Business logic engine for Khata.

This module provides the KhataEngine class which acts as a facade over
the focused service classes in khata/services/ and the receipt renderer.
It is the surface a transport layer (the CLI, or a web front end) talks to.

Service Classes:
    - CustomerService: Customer register
    - LoanService: Loan issuance, edits, closing and status refresh
    - RepaymentLedger: Repayment recording and history
    - SummaryReport: Portfolio totals
"""
import logging

from .config import (
    CURRENCY_SYMBOL, RECEIPT_FOOTER, RECEIPT_URL_TEMPLATE,
    SETTING_CURRENCY_SYMBOL, SETTING_RECEIPT_FOOTER
)
from .data_structures import Owner, ReceiptConfig, RepaymentOutcome
from .exceptions import OwnerNotFoundError, ValidationError
from .receipt_generator import ReceiptGenerator
from .result import ErrorType, Result
from .services import CustomerService, LoanService, RepaymentLedger, SummaryReport

logger = logging.getLogger(__name__)


class KhataEngine:
    """Handles business logic, interfacing with DatabaseManager.

    Every operation takes the acting owner's id first; nothing is looked up
    outside that owner's book.

    Attributes:
        db: DatabaseManager instance for data persistence.
        receipts_dir: Folder receipts are written to after each repayment,
            or None to render them only on request.
        receipt_generator: ReceiptGenerator used for both. Unless one is
            passed in, it is built from the stored receipt settings.
    """

    def __init__(self, db_manager, receipts_dir=None, receipt_generator=None):
        self.db = db_manager
        self.receipts_dir = receipts_dir
        self._receipt_generator = receipt_generator
        self._generator_from_settings = receipt_generator is None
        self._customer_service = None
        self._loan_service = None
        self._ledger = None
        self._summary_report = None

    @property
    def receipt_generator(self):
        """Lazy-load ReceiptGenerator from the receipt settings."""
        if self._receipt_generator is None:
            self._receipt_generator = ReceiptGenerator(self.receipt_config())
        return self._receipt_generator

    @property
    def customer_service(self):
        """Lazy-load CustomerService instance."""
        if self._customer_service is None:
            self._customer_service = CustomerService(self.db)
        return self._customer_service

    @property
    def loan_service(self):
        """Lazy-load LoanService instance."""
        if self._loan_service is None:
            self._loan_service = LoanService(self.db)
        return self._loan_service

    @property
    def ledger(self):
        """Lazy-load RepaymentLedger instance."""
        if self._ledger is None:
            self._ledger = RepaymentLedger(self.db)
        return self._ledger

    @property
    def summary_report(self):
        """Lazy-load SummaryReport instance."""
        if self._summary_report is None:
            self._summary_report = SummaryReport(self.db)
        return self._summary_report

    # ========== SETTINGS ==========

    def receipt_config(self):
        """Receipt layout with the stored footer and currency symbol."""
        return ReceiptConfig(
            footer=self.db.get_setting(SETTING_RECEIPT_FOOTER, RECEIPT_FOOTER),
            currency_symbol=self.db.get_setting(SETTING_CURRENCY_SYMBOL, CURRENCY_SYMBOL),
        )

    def update_receipt_settings(self, footer=None, currency_symbol=None):
        """Store the receipt footer and/or currency symbol.

        An empty footer prints none. Receipts rendered afterwards use the new
        values unless the engine was given its own generator.
        """
        if currency_symbol is not None and not str(currency_symbol).strip():
            raise ValidationError("currency_symbol", "Currency symbol cannot be blank")

        with self.db.transaction():
            if footer is not None:
                self.db.set_setting(SETTING_RECEIPT_FOOTER, str(footer).strip())
            if currency_symbol is not None:
                self.db.set_setting(SETTING_CURRENCY_SYMBOL, str(currency_symbol).strip())

        if self._generator_from_settings:
            self._receipt_generator = None
        return self.receipt_config()

    # ========== OWNERS ==========

    def add_owner(self, name, shop_name, phone=""):
        if not name or not str(name).strip():
            raise ValidationError("name", "Owner name is required")
        if not shop_name or not str(shop_name).strip():
            raise ValidationError("shop_name", "Shop name is required")
        owner_id = self.db.add_owner(str(name).strip(), str(shop_name).strip(), phone or "")
        return self.get_owner(owner_id)

    def get_owner(self, owner_id):
        row = self.db.get_owner(owner_id)
        if not row:
            raise OwnerNotFoundError(owner_id)
        return Owner.from_row(row)

    # ========== CUSTOMERS ==========

    def create_customer(self, owner_id, name, phone="", address="", trust_score=0, credit_limit=0):
        return self.customer_service.create_customer(owner_id, name, phone, address, trust_score, credit_limit)

    def get_customer(self, owner_id, customer_id):
        return self.customer_service.get_customer(owner_id, customer_id)

    def list_customers(self, owner_id):
        return self.customer_service.list_customers(owner_id)

    def update_customer(self, owner_id, customer_id, **fields):
        return self.customer_service.update_customer(owner_id, customer_id, **fields)

    def delete_customer(self, owner_id, customer_id):
        self.customer_service.delete_customer(owner_id, customer_id)

    # ========== LOANS ==========

    def issue_loan(self, owner_id, customer_id, description, amount, frequency, **terms):
        """Issue a new loan.

        Delegates to LoanService.
        """
        return self.loan_service.issue_loan(owner_id, customer_id, description, amount, frequency, **terms)

    def get_loan(self, owner_id, loan_id):
        return self.loan_service.get_loan(owner_id, loan_id)

    def list_loans(self, owner_id, status=None, include_inactive=False, now=None):
        """List loans after bringing their statuses up to date."""
        self.loan_service.refresh_statuses(owner_id, now)
        return self.loan_service.list_loans(owner_id, status=status, include_inactive=include_inactive)

    def update_loan(self, owner_id, loan_id, now=None, **fields):
        return self.loan_service.update_loan(owner_id, loan_id, now=now, **fields)

    def close_loan(self, owner_id, loan_id, now=None):
        return self.loan_service.close_loan(owner_id, loan_id, now)

    def refresh_statuses(self, owner_id, now=None):
        return self.loan_service.refresh_statuses(owner_id, now)

    def list_overdue(self, owner_id, now=None):
        return self.loan_service.list_overdue(owner_id, now)

    def get_summary(self, owner_id, now=None):
        """Portfolio totals, with overdue loans discovered first."""
        self.loan_service.refresh_statuses(owner_id, now)
        return self.summary_report.build(owner_id)

    # ========== REPAYMENTS ==========

    def record_repayment(self, owner_id, loan_id, amount, payment_date=None, notes=None, now=None):
        """Record a repayment and then write its receipt.

        The receipt is written only after the repayment is committed. A
        receipt failure is logged and reported in the outcome; the
        repayment stands.

        Returns:
            RepaymentOutcome with the repayment, the updated loan and the
            receipt Result (path of the saved file, or the error).
        """
        repayment, loan = self.ledger.record_repayment(owner_id, loan_id, amount, payment_date, notes, now)

        receipt = Result.ok()
        if self.receipts_dir is not None:
            receipt = self._save_receipt(owner_id, repayment.id)

        return RepaymentOutcome(
            repayment=repayment,
            loan=loan,
            receipt=receipt,
            receipt_url=RECEIPT_URL_TEMPLATE.format(repayment_id=repayment.id),
        )

    def _save_receipt(self, owner_id, repayment_id):
        try:
            data = self.ledger.receipt_data(owner_id, repayment_id)
            path = self.receipt_generator.save(data, self.receipts_dir)
        except OSError as e:
            logger.exception("Receipt for repayment %s could not be saved", repayment_id)
            return Result.fail(f"Receipt could not be saved: {e}", ErrorType.STORAGE)
        except Exception as e:
            logger.exception("Receipt for repayment %s could not be rendered", repayment_id)
            return Result.fail(f"Receipt generation failed: {e}", ErrorType.RENDER)
        return Result.ok(path)

    def get_repayment(self, owner_id, repayment_id):
        return self.ledger.get_repayment(owner_id, repayment_id)

    def list_repayments(self, owner_id, loan_id=None, customer_id=None):
        return self.ledger.list_repayments(owner_id, loan_id=loan_id, customer_id=customer_id)

    def fetch_receipt(self, owner_id, repayment_id):
        """Render a repayment's receipt for download.

        Returns:
            ReceiptDocument with filename, content type and PDF stream.

        Raises:
            RepaymentNotFoundError: If the repayment is not the owner's.
        """
        data = self.ledger.receipt_data(owner_id, repayment_id)
        return self.receipt_generator.document(data)
