"""Tests for the command line front end."""
import io
import json
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

from khata.main import build_parser, main, serialize_value
from khata.data_structures import LoanSummary


class TestCli(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.tmpdir, "khata.db")
        self.receipts_dir = os.path.join(self.tmpdir, "receipts")

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def khata(self, *args):
        """Run a command; return (exit code, parsed stdout or None, stderr)."""
        argv = ["--db", self.db_path, "--receipts-dir", self.receipts_dir, "--log-level", "WARNING"]
        argv.extend(str(a) for a in args)
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(argv)
        data = json.loads(out.getvalue()) if out.getvalue() else None
        return code, data, err.getvalue()

    def setup_book(self):
        _, owner, _ = self.khata("add-owner", "--name", "Asha", "--shop-name", "Asha General Store")
        _, customer, _ = self.khata("add-customer", "--owner", owner["id"], "--name", "Ravi")
        _, loan, _ = self.khata("issue-loan", "--owner", owner["id"], "--customer", customer["id"],
                                "--description", "Groceries", "--amount", 1000,
                                "--frequency", "monthly", "--issue-date", "2026-01-01")
        return owner["id"], customer["id"], loan

    def test_issue_and_repay(self):
        owner_id, customer_id, loan = self.setup_book()
        self.assertEqual(loan["due_date"], "2026-02-01")
        self.assertEqual(loan["remaining_amount"], 1000)

        code, result, _ = self.khata("repay", "--owner", owner_id, "--loan", loan["id"],
                                     "--amount", 400, "--date", "2026-01-15", "--notes", "cash")
        self.assertEqual(code, 0)
        self.assertEqual(result["loan"]["remaining_amount"], 600)
        self.assertEqual(result["repayment"]["balance_after"], 600)
        self.assertEqual(result["receiptUrl"], f"/receipts/{result['repayment']['id']}.pdf")
        self.assertTrue(os.path.exists(result["receiptFile"]))
        self.assertIsNone(result["receiptError"])

        code, history, _ = self.khata("repayments", "--owner", owner_id, "--customer", customer_id)
        self.assertEqual(code, 0)
        self.assertEqual([r["amount"] for r in history], [400])

    def test_overpayment_exits_with_error(self):
        owner_id, _, loan = self.setup_book()
        code, result, err = self.khata("repay", "--owner", owner_id, "--loan", loan["id"], "--amount", 5000)
        self.assertEqual(code, 1)
        self.assertIsNone(result)
        self.assertIn("Invalid repayment amount", err)

    def test_other_owner_cannot_see_loan(self):
        _, _, loan = self.setup_book()
        _, intruder, _ = self.khata("add-owner", "--name", "Bala", "--shop-name", "Bala Stores")
        code, _, err = self.khata("show-loan", "--owner", intruder["id"], loan["id"])
        self.assertEqual(code, 1)
        self.assertIn("not found", err)

    def test_summary_and_close(self):
        owner_id, _, loan = self.setup_book()
        code, summary, _ = self.khata("summary", "--owner", owner_id)
        self.assertEqual(code, 0)
        self.assertEqual(summary["totalLoaned"], 1000)
        self.assertEqual(summary["activeLoans"], 1)

        code, closed, _ = self.khata("close-loan", "--owner", owner_id, loan["id"])
        self.assertEqual(closed["status"], "paid")
        self.assertFalse(closed["is_active"])

        _, loans, _ = self.khata("loans", "--owner", owner_id)
        self.assertEqual(loans, [])
        _, loans, _ = self.khata("loans", "--owner", owner_id, "--all")
        self.assertEqual([item["id"] for item in loans], [loan["id"]])

    def test_update_loan(self):
        owner_id, _, loan = self.setup_book()
        code, updated, _ = self.khata("update-loan", "--owner", owner_id, loan["id"],
                                      "--description", "Rice", "--grace-days", 3)
        self.assertEqual(code, 0)
        self.assertEqual(updated["description"], "Rice")
        self.assertEqual(updated["grace_days"], 3)

    def test_receipt_command(self):
        owner_id, _, loan = self.setup_book()
        _, result, _ = self.khata("repay", "--owner", owner_id, "--loan", loan["id"], "--amount", 100,
                                  "--date", "2026-01-10")
        out_dir = os.path.join(self.tmpdir, "downloads")
        code, receipt, _ = self.khata("receipt", "--owner", owner_id, result["repayment"]["id"],
                                      "--out", out_dir)
        self.assertEqual(code, 0)
        self.assertEqual(receipt["contentType"], "application/pdf")
        with open(receipt["file"], "rb") as f:
            self.assertEqual(f.read(4), b"%PDF")

    def test_receipt_settings(self):
        code, settings, _ = self.khata("receipt-settings")
        self.assertEqual(code, 0)
        self.assertEqual(settings["currency_symbol"], "Rs.")

        code, settings, _ = self.khata("receipt-settings", "--footer", "Come again", "--currency", "INR")
        self.assertEqual(settings["footer"], "Come again")
        self.assertEqual(settings["currency_symbol"], "INR")

        _, settings, _ = self.khata("receipt-settings")
        self.assertEqual(settings["footer"], "Come again")

    def test_repayments_scope_is_required(self):
        with redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["repayments", "--owner", "1"])


class TestSerializeValue(unittest.TestCase):

    def test_nested(self):
        value = {"items": [LoanSummary(total_loaned=5)], "n": (1, 2)}
        data = serialize_value(value)
        self.assertEqual(data["items"][0]["totalLoaned"], 5)
        self.assertEqual(data["n"], [1, 2])


if __name__ == "__main__":
    unittest.main(verbosity=2)
