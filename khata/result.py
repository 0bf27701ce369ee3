"""Outcomes that are reported to the caller instead of raised.

A receipt is written only after its repayment is committed, so a failed
receipt cannot undo the payment. The failure travels back in a Result next
to the committed repayment.
"""
from dataclasses import dataclass
from typing import Optional, TypeVar, Generic

T = TypeVar('T')


class ErrorType:
    """Why a receipt could not be produced."""
    RENDER = "RENDER"
    STORAGE = "STORAGE"


@dataclass
class Result(Generic[T]):
    """Value of a best-effort step, or the reason it has none.

    Usage:
        receipt = Result.ok("receipts/12.pdf")
        if not receipt:
            print(receipt.error_type, receipt.error)
    """
    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, value: T = None) -> 'Result[T]':
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: str, error_type: str = None) -> 'Result[T]':
        return cls(success=False, error=error, error_type=error_type)

    def __bool__(self) -> bool:
        return self.success
