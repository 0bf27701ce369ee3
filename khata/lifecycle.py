"""Loan lifecycle rules.

Pure functions that derive a loan's due date and status from its terms and
the current time. Nothing here reads or writes storage; callers decide when
to recompute (before persisting a balance change, after editing the due date
or grace period, and in the explicit refresh pass).

Monthly terms use calendar months with end-of-month clamping, so a loan
issued on January 31 falls due on the last day of February.
"""
from datetime import date, datetime, timedelta
from dateutil.relativedelta import relativedelta

from .config import BI_WEEKLY_DAYS, FALLBACK_TERM_DAYS, DATE_FORMAT_STORAGE
from .data_structures import (
    FREQUENCY_BI_WEEKLY, FREQUENCY_MONTHLY,
    STATUS_OVERDUE, STATUS_PAID, STATUS_PENDING
)
from .exceptions import ValidationError


def to_date(value, field="date"):
    """Coerce a date, datetime or YYYY-MM-DD string to a date.

    Raises:
        ValidationError: If a string does not parse.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), DATE_FORMAT_STORAGE).date()
    except ValueError:
        raise ValidationError(field, f"Invalid {field} '{value}'. Expected YYYY-MM-DD.")


def format_date(value):
    return to_date(value).strftime(DATE_FORMAT_STORAGE)


def derive_due_date(frequency, issue_date):
    """Due date for a loan issued on ``issue_date``.

    ``bi-weekly`` adds 14 days, ``monthly`` one calendar month; any other
    frequency falls back to 30 days.
    """
    issued = to_date(issue_date, "issue_date")
    if frequency == FREQUENCY_BI_WEEKLY:
        return issued + timedelta(days=BI_WEEKLY_DAYS)
    if frequency == FREQUENCY_MONTHLY:
        return issued + relativedelta(months=1)
    return issued + timedelta(days=FALLBACK_TERM_DAYS)


def overdue_threshold(due_date, grace_days):
    """Last day on which an unpaid loan is still pending."""
    return to_date(due_date, "due_date") + timedelta(days=int(grace_days or 0))


def derive_status(due_date, grace_days, remaining_amount, now=None):
    """Status of a loan at ``now`` (defaults to the current time).

    A cleared balance is ``paid`` regardless of dates. Otherwise the loan is
    ``overdue`` once ``now`` is past the due date plus the grace period.
    """
    if remaining_amount <= 0:
        return STATUS_PAID
    today = to_date(now if now is not None else datetime.now(), "now")
    if today > overdue_threshold(due_date, grace_days):
        return STATUS_OVERDUE
    return STATUS_PENDING


def recompute_status(loan, now=None):
    """Status ``loan`` should have at ``now``; ``paid`` is terminal."""
    if loan.status == STATUS_PAID:
        return STATUS_PAID
    return derive_status(loan.due_date, loan.grace_days, loan.remaining_amount, now)
