"""
Portfolio summary for Khata.
Aggregates an owner's loan book into totals for the dashboard.
"""
import pandas as pd

from ..config import DATE_FORMAT_STORAGE, MONEY_PLACES, TIMESTAMP_FORMAT
from ..data_structures import STATUS_OVERDUE, STATUS_PAID, LoanSummary

SECONDS_PER_DAY = 24 * 60 * 60


class SummaryReport:
    def __init__(self, db_manager):
        self.db = db_manager

    def build(self, owner_id):
        """Summary over the owner's loans as currently stored.

        Statuses are read as-is; refresh them first to count loans that
        went overdue since they were last looked at.
        """
        return self.summarize(self.db.get_loans_df(owner_id))

    @staticmethod
    def summarize(loans_df):
        """Aggregate a loans DataFrame into a LoanSummary.

        Totals cover active loans; the average repayment time covers paid
        loans and is 0 when there are none.
        """
        if loans_df.empty:
            return LoanSummary()

        active = loans_df[loans_df['is_active'].astype(bool)]
        paid = loans_df[loans_df['status'] == STATUS_PAID]

        total_loaned = round(float(active['amount'].sum()), MONEY_PLACES)
        total_remaining = round(float(active['remaining_amount'].sum()), MONEY_PLACES)
        overdue = active[active['status'] == STATUS_OVERDUE]
        overdue_amount = round(float(overdue['remaining_amount'].sum()), MONEY_PLACES)

        return LoanSummary(
            total_loaned=total_loaned,
            total_collected=round(total_loaned - total_remaining, MONEY_PLACES),
            total_remaining=total_remaining,
            overdue_amount=overdue_amount,
            avg_repayment_time=SummaryReport._average_repayment_days(paid),
            active_loans=len(active),
            repaid_loans=len(paid),
        )

    @staticmethod
    def _average_repayment_days(paid_df):
        """Mean days from issue to completion over paid loans."""
        completed = paid_df.dropna(subset=['paid_at'])
        if completed.empty:
            return 0.0

        finished = pd.to_datetime(completed['paid_at'], format=TIMESTAMP_FORMAT)
        issued = pd.to_datetime(completed['issue_date'], format=DATE_FORMAT_STORAGE)
        durations = (finished - issued).dt.total_seconds() / SECONDS_PER_DAY
        return round(float(durations.mean()), 2)
