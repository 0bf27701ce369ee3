"""Loan lifecycle service for Khata.

This service handles all loan-related operations including:
- Loan issuance
- Manual edits of loan terms
- Forced closing (write-off or settlement outside the ledger)
- The on-demand status refresh that discovers overdue loans
"""
import logging
import math
from datetime import datetime, time

from ..config import (
    DEFAULT_GRACE_DAYS, DEFAULT_INTEREST_RATE, MAX_INTEREST_RATE,
    MIN_INTEREST_RATE, MONEY_PLACES, TIMESTAMP_FORMAT
)
from ..data_structures import FREQUENCIES, STATUS_OVERDUE, STATUS_PAID, Loan
from ..exceptions import CustomerNotFoundError, LoanNotFoundError, ValidationError
from .. import lifecycle

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("description", "due_date", "frequency", "interest_rate", "grace_days")


class LoanService:
    """Handles loan lifecycle operations.

    Status is never stored blindly: every write that can change it runs the
    lifecycle rules first, and ``paid`` is never left once reached.
    """

    def __init__(self, db_manager):
        """Initialize LoanService.

        Args:
            db_manager: DatabaseManager instance for data persistence.
        """
        self.db = db_manager

    def issue_loan(self, owner_id, customer_id, description, amount, frequency,
                   issue_date=None, due_date=None, interest_rate=None, grace_days=None, now=None):
        """Issue a new loan to one of the owner's customers.

        Args:
            owner_id: Issuing owner.
            customer_id: Borrowing customer, owned by ``owner_id``.
            description: What the loan was for.
            amount: Principal, zero or more.
            frequency: ``bi-weekly`` or ``monthly``; anything else gets a
                30 day term.
            issue_date: Issue date (default: today).
            due_date: Explicit due date; derived from the frequency if omitted.
            interest_rate: Percentage, stored only.
            grace_days: Days past the due date before the loan is overdue.
            now: Reference time for the initial status (default: now).

        Returns:
            The stored Loan.

        Raises:
            CustomerNotFoundError: If the customer is not the owner's.
            ValidationError: If a field is missing or malformed.
        """
        if not self.db.get_customer(owner_id, customer_id):
            raise CustomerNotFoundError(customer_id, owner_id)

        description = self._validate_description(description)
        amount = self._validate_principal(amount)
        interest_rate = self._validate_interest_rate(
            DEFAULT_INTEREST_RATE if interest_rate is None else interest_rate)
        grace_days = self._validate_grace_days(
            DEFAULT_GRACE_DAYS if grace_days is None else grace_days)
        frequency = self._validate_frequency(frequency)

        if now is None:
            now = datetime.now()
        issued = lifecycle.to_date(issue_date if issue_date is not None else now, "issue_date")
        if due_date is not None:
            due = self._validate_due_date(due_date, issued)
        else:
            due = lifecycle.derive_due_date(frequency, issued)

        status = lifecycle.derive_status(due, grace_days, amount, now)
        is_active = status != STATUS_PAID
        paid_at = None if is_active else datetime.combine(issued, time()).strftime(TIMESTAMP_FORMAT)

        loan_id = self.db.add_loan_record(
            owner_id, customer_id, description, amount, amount,
            lifecycle.format_date(issued), lifecycle.format_date(due), frequency,
            interest_rate=interest_rate, grace_days=grace_days,
            status=status, is_active=is_active, paid_at=paid_at
        )
        logger.info("Loan %s issued to customer %s: amount=%s due=%s status=%s",
                    loan_id, customer_id, amount, lifecycle.format_date(due), status)
        return self.get_loan(owner_id, loan_id)

    def get_loan(self, owner_id, loan_id):
        """Get a loan owned by ``owner_id``.

        Raises:
            LoanNotFoundError: If missing or owned by someone else.
        """
        row = self.db.get_loan(owner_id, loan_id)
        if not row:
            raise LoanNotFoundError(loan_id, owner_id)
        return Loan.from_row(row)

    def list_loans(self, owner_id, status=None, include_inactive=False):
        """Owner's loans, newest first; active loans only unless asked."""
        rows = self.db.get_loans(owner_id, status=status, active_only=not include_inactive)
        return [Loan.from_row(row) for row in rows]

    def update_loan(self, owner_id, loan_id, now=None, **fields):
        """Edit loan terms.

        Only description, due date, frequency, interest rate and grace days
        may change. Balances move through repayments and the terminal state
        through ``close_loan``.

        Raises:
            LoanNotFoundError: If the loan is not the owner's.
            ValidationError: For non-editable fields or malformed values.
        """
        blocked = set(fields) - set(EDITABLE_FIELDS)
        if blocked:
            field = sorted(blocked)[0]
            raise ValidationError(field, f"Loan field(s) not editable: {', '.join(sorted(blocked))}")

        changes = {}
        if "description" in fields:
            changes["description"] = self._validate_description(fields["description"])
        if "frequency" in fields:
            changes["frequency"] = self._validate_frequency(fields["frequency"])
        if "interest_rate" in fields:
            changes["interest_rate"] = self._validate_interest_rate(fields["interest_rate"])
        if "grace_days" in fields:
            changes["grace_days"] = self._validate_grace_days(fields["grace_days"])

        # The status is worked out from the row as it stands under the write
        # lock, so a repayment settling the loan meanwhile is never overwritten.
        with self.db.transaction():
            loan = self.get_loan(owner_id, loan_id)
            previous_status = loan.status

            if "due_date" in fields:
                due = self._validate_due_date(fields["due_date"], loan.issue_date)
                changes["due_date"] = lifecycle.format_date(due)

            if "due_date" in changes or "grace_days" in changes:
                loan.due_date = changes.get("due_date", loan.due_date)
                loan.grace_days = changes.get("grace_days", loan.grace_days)
                status = lifecycle.recompute_status(loan, now)
                if status != previous_status:
                    changes["status"] = status

            self.db.update_loan_details(owner_id, loan_id, changes)

        if "status" in changes:
            logger.info("Loan %s status %s -> %s after edit", loan_id, previous_status, changes["status"])
        return self.get_loan(owner_id, loan_id)

    def close_loan(self, owner_id, loan_id, now=None):
        """Force a loan into ``paid`` regardless of its balance.

        Closing a loan that is already paid changes nothing, including its
        ``paid_at``.
        """
        if now is None:
            now = datetime.now()

        with self.db.transaction():
            loan = self.get_loan(owner_id, loan_id)
            if loan.status == STATUS_PAID:
                return loan
            self.db.update_loan_status(owner_id, loan_id, STATUS_PAID, False,
                                       paid_at=now.strftime(TIMESTAMP_FORMAT))

        logger.info("Loan %s closed with %s outstanding", loan_id, loan.remaining_amount)
        return self.get_loan(owner_id, loan_id)

    def refresh_statuses(self, owner_id, now=None):
        """Re-evaluate every active loan against ``now``.

        Overdue is only discovered by looking, so this runs before anything
        that lists or summarises loans by status.

        Returns:
            Number of loans whose status changed.
        """
        changed = 0
        with self.db.transaction():
            for loan in self.list_loans(owner_id):
                status = lifecycle.recompute_status(loan, now)
                if status != loan.status:
                    self.db.update_loan_status(owner_id, loan.id, status, status != STATUS_PAID)
                    changed += 1

        if changed:
            logger.info("Refreshed %d loan status(es) for owner %s", changed, owner_id)
        return changed

    def list_overdue(self, owner_id, now=None):
        self.refresh_statuses(owner_id, now)
        return self.list_loans(owner_id, status=STATUS_OVERDUE)

    @staticmethod
    def _validate_description(description):
        if not description or not str(description).strip():
            raise ValidationError("description", "Loan description is required")
        return str(description).strip()

    @staticmethod
    def _validate_principal(amount):
        try:
            value = float(amount)
        except (TypeError, ValueError):
            raise ValidationError("amount", f"Loan amount must be a number, got {amount!r}")
        if not math.isfinite(value):
            raise ValidationError("amount", f"Loan amount must be a finite number, got {amount!r}")
        if value < 0:
            raise ValidationError("amount", "Loan amount cannot be negative")
        return round(value, MONEY_PLACES)

    @staticmethod
    def _validate_due_date(due_date, issue_date):
        due = lifecycle.to_date(due_date, "due_date")
        if due < lifecycle.to_date(issue_date, "issue_date"):
            raise ValidationError("due_date", f"Due date {lifecycle.format_date(due)} is before the issue date")
        return due

    @staticmethod
    def _validate_interest_rate(rate):
        try:
            value = float(rate)
        except (TypeError, ValueError):
            raise ValidationError("interest_rate", f"Interest rate must be a number, got {rate!r}")
        if not MIN_INTEREST_RATE <= value <= MAX_INTEREST_RATE:
            raise ValidationError("interest_rate",
                                  f"Interest rate must be between {MIN_INTEREST_RATE} and {MAX_INTEREST_RATE}")
        return value

    @staticmethod
    def _validate_grace_days(grace_days):
        if isinstance(grace_days, float) and not grace_days.is_integer():
            raise ValidationError("grace_days", f"Grace days must be a whole number, got {grace_days!r}")
        try:
            value = int(grace_days)
        except (TypeError, ValueError):
            raise ValidationError("grace_days", f"Grace days must be a whole number, got {grace_days!r}")
        if value < 0:
            raise ValidationError("grace_days", "Grace days cannot be negative")
        return value

    @staticmethod
    def _validate_frequency(frequency):
        if not frequency or not str(frequency).strip():
            raise ValidationError("frequency", "Repayment frequency is required")
        frequency = str(frequency).strip()
        if frequency not in FREQUENCIES:
            logger.warning("Unknown repayment frequency %r, using the default term", frequency)
        return frequency
