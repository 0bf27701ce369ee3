"""Khata: a shop owner's book of customer loans and repayments."""

from .database import DatabaseManager
from .engine import KhataEngine

__version__ = "1.0.0"

__all__ = ["DatabaseManager", "KhataEngine", "__version__"]
