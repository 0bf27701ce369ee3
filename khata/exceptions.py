"""Custom exceptions for Khata."""


class KhataError(Exception):
    """Base exception for all Khata errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(KhataError):
    """Raised when a database operation fails."""
    pass


class TransactionError(DatabaseError):
    """Raised when a database transaction fails to complete."""
    pass


class ConflictOnUpdateError(TransactionError):
    """Raised when a loan balance changed between validation and update."""

    def __init__(self, loan_id: int, expected_remaining: float):
        details = {
            'loan_id': loan_id,
            'expected_remaining': expected_remaining
        }
        message = f"Loan {loan_id} was modified concurrently, please retry"
        super().__init__(message, details)


class NotFoundError(KhataError):
    """Raised when an entity is absent or not owned by the caller."""

    entity = "Record"

    def __init__(self, entity_id=None, owner_id: int = None):
        details = {}
        if entity_id is not None:
            details['id'] = entity_id
        if owner_id is not None:
            details['owner_id'] = owner_id

        message = f"{self.entity} not found"
        if entity_id is not None:
            message = f"{self.entity} {entity_id} not found"

        super().__init__(message, details)


class OwnerNotFoundError(NotFoundError):
    """Raised when a shop owner cannot be found."""
    entity = "Owner"


class CustomerNotFoundError(NotFoundError):
    """Raised when a customer cannot be found."""
    entity = "Customer"


class LoanNotFoundError(NotFoundError):
    """Raised when a loan cannot be found."""
    entity = "Loan"


class RepaymentNotFoundError(NotFoundError):
    """Raised when a repayment cannot be found."""
    entity = "Repayment"


class InvalidAmountError(KhataError):
    """Raised when a repayment is non-positive or exceeds the remaining balance."""

    def __init__(self, amount, remaining: float, loan_id: int = None):
        details = {
            'amount': amount,
            'remaining': remaining
        }
        if loan_id is not None:
            details['loan_id'] = loan_id

        message = f"Invalid repayment amount {amount}: must be above 0 and at most {remaining}"
        super().__init__(message, details)


class ValidationError(KhataError):
    """Raised when a required field is missing or malformed."""

    def __init__(self, field: str, message: str):
        super().__init__(message, {'field': field})
        self.field = field


class LoanInactiveError(KhataError):
    """Raised when an operation requires an active loan but the loan is closed."""

    def __init__(self, loan_id: int, status: str):
        details = {
            'loan_id': loan_id,
            'status': status
        }
        message = f"Loan {loan_id} is not active (status: {status})"
        super().__init__(message, details)
