"""Repayment ledger for Khata.

Repayments are appended, never edited or removed. Recording one and
lowering the loan balance happen in the same database transaction, and the
balance update only applies if nobody changed the loan since it was read,
so a reader never sees one without the other.
"""
import logging
import math
from datetime import datetime, time

from ..config import MONEY_PLACES, TIMESTAMP_FORMAT
from ..data_structures import STATUS_PAID, Loan, ReceiptData, Repayment
from ..exceptions import (
    CustomerNotFoundError, InvalidAmountError, LoanInactiveError,
    LoanNotFoundError, OwnerNotFoundError, RepaymentNotFoundError, ValidationError
)
from .. import lifecycle

logger = logging.getLogger(__name__)


class RepaymentLedger:
    """Applies repayments to loans and answers questions about them."""

    def __init__(self, db_manager):
        self.db = db_manager

    def record_repayment(self, owner_id, loan_id, amount, payment_date=None, notes=None, now=None):
        """Record a repayment against one of the owner's loans.

        Args:
            owner_id: Owner of the loan.
            loan_id: Loan being repaid.
            amount: Amount paid; above zero and at most the remaining balance.
            payment_date: Date of payment (default: today).
            notes: Optional free text.
            now: Reference time for the status check (default: now).

        Returns:
            Tuple of (Repayment, updated Loan).

        Raises:
            LoanNotFoundError: If the loan is not the owner's.
            ValidationError: If the payment date is malformed or before the
                loan's issue date.
            InvalidAmountError: If the amount is not positive or exceeds the
                remaining balance. Over-payments are rejected, not clamped.
            LoanInactiveError: If the loan was closed with a balance left.
            ConflictOnUpdateError: If the balance moved while recording.
        """
        if now is None:
            now = datetime.now()
        paid_on = lifecycle.to_date(payment_date if payment_date is not None else now, "payment_date")

        with self.db.transaction():
            row = self.db.get_loan(owner_id, loan_id)
            if not row:
                raise LoanNotFoundError(loan_id, owner_id)
            loan = Loan.from_row(row)

            if paid_on < lifecycle.to_date(loan.issue_date, "issue_date"):
                raise ValidationError("payment_date",
                                      f"Payment date {lifecycle.format_date(paid_on)} is before the loan was issued")
            value = self._validate_amount(amount, loan)
            if not loan.is_active:
                raise LoanInactiveError(loan.id, loan.status)

            new_remaining = round(loan.remaining_amount - value, MONEY_PLACES)
            status = lifecycle.derive_status(loan.due_date, loan.grace_days, new_remaining, now)
            is_active = status != STATUS_PAID
            paid_at = None
            if not is_active:
                paid_at = datetime.combine(paid_on, time()).strftime(TIMESTAMP_FORMAT)

            self.db.apply_loan_balance(owner_id, loan.id, loan.remaining_amount, new_remaining,
                                       status, is_active, paid_at)
            repayment_id = self.db.add_repayment(
                owner_id, loan.id, loan.customer_id, value,
                lifecycle.format_date(paid_on), new_remaining, notes
            )

        logger.info("Repayment %s of %s recorded on loan %s, remaining %s (%s)",
                    repayment_id, value, loan.id, new_remaining, status)
        return self.get_repayment(owner_id, repayment_id), Loan.from_row(self.db.get_loan(owner_id, loan.id))

    def get_repayment(self, owner_id, repayment_id):
        row = self.db.get_repayment(owner_id, repayment_id)
        if not row:
            raise RepaymentNotFoundError(repayment_id, owner_id)
        return Repayment.from_row(row)

    def list_repayments(self, owner_id, loan_id=None, customer_id=None):
        """Repayments of one loan or one customer, latest payment first.

        Exactly one of ``loan_id`` and ``customer_id`` must be given.
        """
        if (loan_id is None) == (customer_id is None):
            raise ValidationError("scope", "Give exactly one of loan_id or customer_id")

        if loan_id is not None and not self.db.get_loan(owner_id, loan_id):
            raise LoanNotFoundError(loan_id, owner_id)
        if customer_id is not None and not self.db.get_customer(owner_id, customer_id):
            raise CustomerNotFoundError(customer_id, owner_id)

        rows = self.db.get_repayments(owner_id, loan_id=loan_id, customer_id=customer_id)
        return [Repayment.from_row(row) for row in rows]

    def receipt_data(self, owner_id, repayment_id):
        """Flat payment summary for the receipt renderer.

        The balance shown is the one left right after this repayment.
        """
        repayment = self.get_repayment(owner_id, repayment_id)
        loan = self.db.get_loan(owner_id, repayment.loan_id)
        if not loan:
            raise LoanNotFoundError(repayment.loan_id, owner_id)
        customer = self.db.get_customer(owner_id, repayment.customer_id)
        if not customer:
            raise CustomerNotFoundError(repayment.customer_id, owner_id)
        owner = self.db.get_owner(owner_id)
        if not owner:
            raise OwnerNotFoundError(owner_id)

        return ReceiptData(
            repayment_id=repayment.id,
            customer_name=customer['name'],
            loan_description=loan['description'],
            amount=repayment.amount,
            payment_date=repayment.payment_date,
            remaining_balance=repayment.balance_after,
            shop_name=owner['shop_name'],
        )

    @staticmethod
    def _validate_amount(amount, loan):
        if isinstance(amount, bool):
            raise InvalidAmountError(amount, loan.remaining_amount, loan.id)
        try:
            value = round(float(amount), MONEY_PLACES)
        except (TypeError, ValueError):
            raise InvalidAmountError(amount, loan.remaining_amount, loan.id)
        if not math.isfinite(value) or not 0 < value <= loan.remaining_amount:
            raise InvalidAmountError(amount, loan.remaining_amount, loan.id)
        return value
