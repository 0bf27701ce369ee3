"""Command line front end for Khata.

Every data command acts on behalf of one shop owner (``--owner``) and
prints JSON to stdout.
"""
import argparse
import json
import logging
import os
import sys

from .config import load_settings
from .database import DatabaseManager
from .engine import KhataEngine
from .exceptions import KhataError
from .logging import setup_logging

logger = logging.getLogger(__name__)


def serialize_value(obj):
    """Serialize Khata objects to JSON-compatible types."""
    if hasattr(obj, "to_dict"):
        return serialize_value(obj.to_dict())
    if hasattr(obj, "__dataclass_fields__"):
        return {k: serialize_value(v) for k, v in obj.__dict__.items()}
    if isinstance(obj, dict):
        return {k: serialize_value(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [serialize_value(item) for item in obj]
    return obj


def build_parser():
    settings = load_settings()
    parser = argparse.ArgumentParser(prog="khata", description="Track shop credit: customers, loans and repayments")
    parser.add_argument("--db", default=settings.db_name, help=f"Database file (default: {settings.db_name})")
    parser.add_argument("--receipts-dir", default=settings.receipts_dir,
                        help=f"Folder for receipt PDFs (default: {settings.receipts_dir})")
    parser.add_argument("--log-level", default=settings.log_level, help="Log level (default: INFO)")
    parser.add_argument("--log-format", choices=["standard", "json"], default="standard")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add-owner", help="Register a shop owner")
    p.add_argument("--name", required=True)
    p.add_argument("--shop-name", required=True)
    p.add_argument("--phone", default="")

    p = sub.add_parser("receipt-settings", help="Show or change the receipt footer and currency")
    p.add_argument("--footer", help="Footer line; an empty string prints none")
    p.add_argument("--currency", help="Currency symbol printed before amounts")

    def owner_command(name, help_text):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--owner", type=int, required=True, help="Acting owner id")
        return cmd

    p = owner_command("add-customer", "Add a customer")
    p.add_argument("--name", required=True)
    p.add_argument("--phone", default="")
    p.add_argument("--address", default="")
    p.add_argument("--trust-score", type=float, default=0)
    p.add_argument("--credit-limit", type=float, default=0)

    owner_command("customers", "List customers")

    p = owner_command("issue-loan", "Issue a loan to a customer")
    p.add_argument("--customer", type=int, required=True)
    p.add_argument("--description", required=True)
    p.add_argument("--amount", type=float, required=True)
    p.add_argument("--frequency", required=True, help="bi-weekly or monthly")
    p.add_argument("--issue-date", help="YYYY-MM-DD (default: today)")
    p.add_argument("--due-date", help="YYYY-MM-DD (default: derived from frequency)")
    p.add_argument("--interest-rate", type=float)
    p.add_argument("--grace-days", type=int)

    p = owner_command("loans", "List loans")
    p.add_argument("--status", choices=["pending", "overdue", "paid"])
    p.add_argument("--all", action="store_true", help="Include closed and paid loans")

    p = owner_command("show-loan", "Show one loan")
    p.add_argument("loan_id", type=int)

    p = owner_command("update-loan", "Edit loan terms")
    p.add_argument("loan_id", type=int)
    p.add_argument("--description")
    p.add_argument("--due-date")
    p.add_argument("--frequency")
    p.add_argument("--interest-rate", type=float)
    p.add_argument("--grace-days", type=int)

    p = owner_command("close-loan", "Close a loan regardless of balance")
    p.add_argument("loan_id", type=int)

    owner_command("overdue", "List overdue loans")
    owner_command("summary", "Portfolio summary")
    owner_command("refresh", "Re-evaluate loan statuses")

    p = owner_command("repay", "Record a repayment")
    p.add_argument("--loan", type=int, required=True)
    p.add_argument("--amount", type=float, required=True)
    p.add_argument("--date", help="Payment date YYYY-MM-DD (default: today)")
    p.add_argument("--notes")

    p = owner_command("repayments", "List repayments of a loan or customer")
    scope = p.add_mutually_exclusive_group(required=True)
    scope.add_argument("--loan", type=int)
    scope.add_argument("--customer", type=int)

    p = owner_command("receipt", "Write a repayment receipt PDF")
    p.add_argument("repayment_id", type=int)
    p.add_argument("--out", help="Output folder (default: receipts dir)")

    return parser


def _optional_terms(args, names):
    return {name: getattr(args, name) for name in names if getattr(args, name) is not None}


def run(args, engine):
    """Dispatch a parsed command to the engine and return what to print."""
    cmd = args.command

    if cmd == "add-owner":
        return engine.add_owner(args.name, args.shop_name, args.phone)
    if cmd == "receipt-settings":
        return engine.update_receipt_settings(footer=args.footer, currency_symbol=args.currency)
    if cmd == "add-customer":
        return engine.create_customer(args.owner, args.name, args.phone, args.address,
                                      args.trust_score, args.credit_limit)
    if cmd == "customers":
        return engine.list_customers(args.owner)
    if cmd == "issue-loan":
        terms = _optional_terms(args, ("issue_date", "due_date", "interest_rate", "grace_days"))
        return engine.issue_loan(args.owner, args.customer, args.description, args.amount,
                                 args.frequency, **terms)
    if cmd == "loans":
        return engine.list_loans(args.owner, status=args.status, include_inactive=args.all)
    if cmd == "show-loan":
        return engine.get_loan(args.owner, args.loan_id)
    if cmd == "update-loan":
        fields = _optional_terms(args, ("description", "due_date", "frequency", "interest_rate", "grace_days"))
        return engine.update_loan(args.owner, args.loan_id, **fields)
    if cmd == "close-loan":
        return engine.close_loan(args.owner, args.loan_id)
    if cmd == "overdue":
        return engine.list_overdue(args.owner)
    if cmd == "summary":
        return engine.get_summary(args.owner)
    if cmd == "refresh":
        return {"changed": engine.refresh_statuses(args.owner)}
    if cmd == "repay":
        outcome = engine.record_repayment(args.owner, args.loan, args.amount, args.date, args.notes)
        return {
            "repayment": outcome.repayment,
            "loan": outcome.loan,
            "receiptUrl": outcome.receipt_url,
            "receiptFile": outcome.receipt.value,
            "receiptError": outcome.receipt.error,
        }
    if cmd == "repayments":
        return engine.list_repayments(args.owner, loan_id=args.loan, customer_id=args.customer)
    if cmd == "receipt":
        document = engine.fetch_receipt(args.owner, args.repayment_id)
        folder = args.out or engine.receipts_dir
        os.makedirs(folder, exist_ok=True)
        path = os.path.join(folder, document.filename)
        with open(path, "wb") as f:
            f.write(document.stream.read())
        return {"file": path, "contentType": document.content_type}

    raise ValueError(f"Unknown command {cmd}")


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_format)

    with DatabaseManager(args.db) as db:
        engine = KhataEngine(db, receipts_dir=args.receipts_dir)
        try:
            result = run(args, engine)
        except KhataError as e:
            logger.debug("Command %s failed", args.command, exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 1

    print(json.dumps(serialize_value(result), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
