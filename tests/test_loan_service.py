"""Tests for loan issuance, edits, closing and status refresh."""
import unittest
from datetime import datetime

from khata.database import DatabaseManager
from khata.exceptions import CustomerNotFoundError, LoanNotFoundError, ValidationError
from khata.services import LoanService, RepaymentLedger


class LoanServiceTestCase(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.service = LoanService(self.db)
        self.owner_id = self.db.add_owner("Asha", "Asha General Store")
        self.customer_id = self.db.add_customer(self.owner_id, "Ravi")
        self.jan1 = datetime(2026, 1, 1)

    def tearDown(self):
        self.db.close()

    def issue(self, amount=1000, frequency="monthly", **terms):
        terms.setdefault("issue_date", "2026-01-01")
        terms.setdefault("now", self.jan1)
        return self.service.issue_loan(self.owner_id, self.customer_id, "Groceries", amount, frequency, **terms)


class TestIssueLoan(LoanServiceTestCase):

    def test_new_loan_defaults(self):
        loan = self.issue()
        self.assertEqual(loan.amount, 1000)
        self.assertEqual(loan.remaining_amount, 1000)
        self.assertEqual(loan.status, "pending")
        self.assertTrue(loan.is_active)
        self.assertEqual(loan.interest_rate, 0)
        self.assertEqual(loan.grace_days, 0)
        self.assertEqual(loan.issue_date, "2026-01-01")
        self.assertEqual(loan.due_date, "2026-02-01")
        self.assertIsNone(loan.paid_at)
        self.assertEqual(loan.collected, 0)

    def test_bi_weekly_due_date(self):
        loan = self.issue(frequency="bi-weekly")
        self.assertEqual(loan.due_date, "2026-01-15")

    def test_explicit_due_date_wins(self):
        loan = self.issue(due_date="2026-03-10")
        self.assertEqual(loan.due_date, "2026-03-10")

    def test_unknown_frequency_warns_and_uses_thirty_days(self):
        with self.assertLogs("khata.services.loan_service", level="WARNING") as logs:
            loan = self.issue(frequency="weekly")
        self.assertEqual(loan.due_date, "2026-01-31")
        self.assertEqual(loan.frequency, "weekly")
        self.assertIn("weekly", logs.output[0])

    def test_zero_amount_loan_is_born_paid(self):
        loan = self.issue(amount=0)
        self.assertEqual(loan.status, "paid")
        self.assertFalse(loan.is_active)
        self.assertEqual(loan.paid_at, "2026-01-01 00:00:00")

    def test_backdated_loan_starts_overdue(self):
        loan = self.issue(issue_date="2025-10-01", now=datetime(2026, 1, 1))
        self.assertEqual(loan.status, "overdue")
        self.assertTrue(loan.is_active)

    def test_terms_are_stored(self):
        loan = self.issue(interest_rate=2.5, grace_days=3)
        self.assertEqual(loan.interest_rate, 2.5)
        self.assertEqual(loan.grace_days, 3)
        # Interest is recorded only, never charged
        self.assertEqual(loan.remaining_amount, 1000)

    def test_amount_rounded_to_cents(self):
        loan = self.issue(amount="99.999")
        self.assertEqual(loan.amount, 100.0)

    def test_invalid_fields(self):
        cases = [
            ({"amount": -1}, "amount"),
            ({"amount": "ten"}, "amount"),
            ({"amount": float("inf")}, "amount"),
            ({"amount": "nan"}, "amount"),
            ({"due_date": "2025-12-31"}, "due_date"),
            ({"frequency": ""}, "frequency"),
            ({"interest_rate": 101}, "interest_rate"),
            ({"interest_rate": -0.5}, "interest_rate"),
            ({"grace_days": -1}, "grace_days"),
            ({"grace_days": 1.5}, "grace_days"),
            ({"issue_date": "2026/01/01"}, "issue_date"),
            ({"due_date": "soon"}, "due_date"),
        ]
        for kwargs, field in cases:
            with self.subTest(field=field, kwargs=kwargs):
                with self.assertRaises(ValidationError) as context:
                    self.issue(**kwargs)
                self.assertEqual(context.exception.field, field)

        self.assertEqual(self.service.list_loans(self.owner_id, include_inactive=True), [])

    def test_blank_description(self):
        with self.assertRaises(ValidationError):
            self.service.issue_loan(self.owner_id, self.customer_id, "  ", 100, "monthly")

    def test_customer_of_another_owner(self):
        other_owner = self.db.add_owner("Bala", "Bala Stores")
        with self.assertRaises(CustomerNotFoundError):
            self.service.issue_loan(other_owner, self.customer_id, "Rice", 100, "monthly")


class TestGetAndListLoans(LoanServiceTestCase):

    def test_get_missing_loan(self):
        with self.assertRaises(LoanNotFoundError) as context:
            self.service.get_loan(self.owner_id, 42)
        self.assertIn("42", str(context.exception))

    def test_list_newest_first_and_active_only(self):
        first = self.issue()
        second = self.issue(amount=200)
        paid = self.issue(amount=0)

        active_ids = [loan.id for loan in self.service.list_loans(self.owner_id)]
        self.assertEqual(active_ids, [second.id, first.id])

        all_ids = [loan.id for loan in self.service.list_loans(self.owner_id, include_inactive=True)]
        self.assertEqual(all_ids, [paid.id, second.id, first.id])

    def test_list_by_status(self):
        self.issue()
        paid = self.issue(amount=0)
        loans = self.service.list_loans(self.owner_id, status="paid", include_inactive=True)
        self.assertEqual([loan.id for loan in loans], [paid.id])

    def test_loans_are_isolated_per_owner(self):
        loan = self.issue()
        other_owner = self.db.add_owner("Bala", "Bala Stores")
        self.assertEqual(self.service.list_loans(other_owner), [])
        with self.assertRaises(LoanNotFoundError):
            self.service.get_loan(other_owner, loan.id)


class TestUpdateLoan(LoanServiceTestCase):

    def test_edit_terms(self):
        loan = self.issue()
        updated = self.service.update_loan(
            self.owner_id, loan.id, now=self.jan1,
            description="Rice and dal", frequency="bi-weekly", interest_rate=1.5
        )
        self.assertEqual(updated.description, "Rice and dal")
        self.assertEqual(updated.frequency, "bi-weekly")
        self.assertEqual(updated.interest_rate, 1.5)
        # Changing frequency does not move an existing due date
        self.assertEqual(updated.due_date, "2026-02-01")

    def test_moving_due_date_recomputes_status(self):
        loan = self.issue()
        overdue = self.service.update_loan(self.owner_id, loan.id, now=datetime(2026, 3, 1),
                                           due_date="2026-02-15")
        self.assertEqual(overdue.status, "overdue")

        pending = self.service.update_loan(self.owner_id, loan.id, now=datetime(2026, 3, 1),
                                           due_date="2026-04-01")
        self.assertEqual(pending.status, "pending")

    def test_grace_days_can_lift_overdue(self):
        loan = self.issue()
        self.service.refresh_statuses(self.owner_id, now=datetime(2026, 2, 3))
        self.assertEqual(self.service.get_loan(self.owner_id, loan.id).status, "overdue")

        updated = self.service.update_loan(self.owner_id, loan.id, now=datetime(2026, 2, 3), grace_days=5)
        self.assertEqual(updated.status, "pending")

    def test_balance_and_status_are_not_editable(self):
        loan = self.issue()
        for field, value in (("remaining_amount", 0), ("amount", 5), ("status", "paid"), ("is_active", 0)):
            with self.subTest(field=field):
                with self.assertRaises(ValidationError):
                    self.service.update_loan(self.owner_id, loan.id, **{field: value})

        unchanged = self.service.get_loan(self.owner_id, loan.id)
        self.assertEqual(unchanged.remaining_amount, 1000)
        self.assertEqual(unchanged.status, "pending")

    def test_paid_loan_stays_paid_after_edit(self):
        loan = self.issue()
        self.service.close_loan(self.owner_id, loan.id, now=self.jan1)
        updated = self.service.update_loan(self.owner_id, loan.id, now=datetime(2026, 6, 1),
                                           due_date="2026-01-05")
        self.assertEqual(updated.status, "paid")
        self.assertFalse(updated.is_active)

    def test_due_date_cannot_move_before_issue(self):
        loan = self.issue()
        with self.assertRaises(ValidationError) as context:
            self.service.update_loan(self.owner_id, loan.id, due_date="2025-12-31")
        self.assertEqual(context.exception.field, "due_date")
        self.assertEqual(self.service.get_loan(self.owner_id, loan.id).due_date, "2026-02-01")

        same_day = self.service.update_loan(self.owner_id, loan.id, now=self.jan1, due_date="2026-01-01")
        self.assertEqual(same_day.due_date, "2026-01-01")

    def test_update_missing_loan(self):
        with self.assertRaises(LoanNotFoundError):
            self.service.update_loan(self.owner_id, 99, description="x")


class TestCloseLoan(LoanServiceTestCase):

    def test_close_with_balance(self):
        loan = self.issue()
        closed = self.service.close_loan(self.owner_id, loan.id, now=datetime(2026, 1, 10, 12, 0))
        self.assertEqual(closed.status, "paid")
        self.assertFalse(closed.is_active)
        self.assertEqual(closed.remaining_amount, 1000)
        self.assertEqual(closed.paid_at, "2026-01-10 12:00:00")

    def test_close_is_idempotent(self):
        loan = self.issue()
        first = self.service.close_loan(self.owner_id, loan.id, now=datetime(2026, 1, 10))
        second = self.service.close_loan(self.owner_id, loan.id, now=datetime(2026, 1, 20))
        self.assertEqual(first.paid_at, second.paid_at)

    def test_close_after_partial_repayment(self):
        loan = self.issue()
        RepaymentLedger(self.db).record_repayment(self.owner_id, loan.id, 250, "2026-01-05",
                                                  now=datetime(2026, 1, 5))
        closed = self.service.close_loan(self.owner_id, loan.id, now=datetime(2026, 1, 6))
        self.assertEqual(closed.remaining_amount, 750)
        self.assertEqual(closed.status, "paid")


class TestRefreshStatuses(LoanServiceTestCase):

    def test_refresh_discovers_overdue(self):
        monthly = self.issue()
        bi_weekly = self.issue(amount=500, frequency="bi-weekly")

        self.assertEqual(self.service.refresh_statuses(self.owner_id, now=datetime(2026, 1, 10)), 0)
        self.assertEqual(self.service.refresh_statuses(self.owner_id, now=datetime(2026, 1, 16)), 1)
        self.assertEqual(self.service.get_loan(self.owner_id, bi_weekly.id).status, "overdue")
        self.assertEqual(self.service.get_loan(self.owner_id, monthly.id).status, "pending")

        # Already overdue loans are not counted again
        self.assertEqual(self.service.refresh_statuses(self.owner_id, now=datetime(2026, 1, 17)), 0)

    def test_refresh_leaves_paid_loans_alone(self):
        loan = self.issue()
        self.service.close_loan(self.owner_id, loan.id, now=self.jan1)
        self.assertEqual(self.service.refresh_statuses(self.owner_id, now=datetime(2027, 1, 1)), 0)
        self.assertEqual(self.service.get_loan(self.owner_id, loan.id).status, "paid")

    def test_list_overdue(self):
        self.issue()
        late = self.issue(amount=500, frequency="bi-weekly")
        overdue = self.service.list_overdue(self.owner_id, now=datetime(2026, 1, 20))
        self.assertEqual([loan.id for loan in overdue], [late.id])

    def test_refresh_logs_changes(self):
        self.issue(frequency="bi-weekly")
        with self.assertLogs("khata.services.loan_service", level="INFO") as logs:
            self.service.refresh_statuses(self.owner_id, now=datetime(2026, 2, 1))
        self.assertTrue(any("Refreshed 1" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main(verbosity=2)
