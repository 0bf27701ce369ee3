"""Customer register for Khata.

Customers carry no lifecycle of their own; loans point at them and receipts
print their name.
"""
import logging

from ..data_structures import Customer
from ..database import CUSTOMER_COLUMNS
from ..exceptions import CustomerNotFoundError, ValidationError

logger = logging.getLogger(__name__)


class CustomerService:
    """Creates, edits and removes an owner's customers."""

    def __init__(self, db_manager):
        self.db = db_manager

    def create_customer(self, owner_id, name, phone="", address="", trust_score=0, credit_limit=0):
        name = self._validate_name(name)
        trust_score = self._validate_non_negative("trust_score", trust_score)
        credit_limit = self._validate_non_negative("credit_limit", credit_limit)

        customer_id = self.db.add_customer(owner_id, name, phone or "", address or "",
                                           trust_score, credit_limit)
        logger.info("Customer %s created for owner %s", customer_id, owner_id)
        return self.get_customer(owner_id, customer_id)

    def get_customer(self, owner_id, customer_id):
        """Get a customer owned by ``owner_id``.

        Raises:
            CustomerNotFoundError: If missing or owned by someone else.
        """
        row = self.db.get_customer(owner_id, customer_id)
        if not row:
            raise CustomerNotFoundError(customer_id, owner_id)
        return Customer.from_row(row)

    def list_customers(self, owner_id):
        return [Customer.from_row(row) for row in self.db.get_customers(owner_id)]

    def update_customer(self, owner_id, customer_id, **fields):
        self.get_customer(owner_id, customer_id)

        unknown = set(fields) - set(CUSTOMER_COLUMNS)
        if unknown:
            raise ValidationError(sorted(unknown)[0], f"Cannot update customer field(s): {', '.join(sorted(unknown))}")

        if "name" in fields:
            fields["name"] = self._validate_name(fields["name"])
        for key in ("trust_score", "credit_limit"):
            if key in fields:
                fields[key] = self._validate_non_negative(key, fields[key])

        self.db.update_customer(owner_id, customer_id, fields)
        return self.get_customer(owner_id, customer_id)

    def delete_customer(self, owner_id, customer_id):
        """Remove a customer that has no loans on the book.

        Raises:
            ValidationError: If loans still reference the customer.
        """
        self.get_customer(owner_id, customer_id)
        loan_count = self.db.count_customer_loans(owner_id, customer_id)
        if loan_count:
            raise ValidationError("customer_id", f"Customer {customer_id} still has {loan_count} loan(s)")

        self.db.delete_customer(owner_id, customer_id)
        logger.info("Customer %s removed for owner %s", customer_id, owner_id)

    @staticmethod
    def _validate_name(name):
        if not name or not str(name).strip():
            raise ValidationError("name", "Customer name is required")
        return str(name).strip()

    @staticmethod
    def _validate_non_negative(field, value):
        try:
            number = float(value or 0)
        except (TypeError, ValueError):
            raise ValidationError(field, f"{field} must be a number")
        if number < 0:
            raise ValidationError(field, f"{field} cannot be negative")
        return number
