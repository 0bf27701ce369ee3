"""Centralized configuration for Khata.

This module contains the default values and business rule constants used
across the loan book, plus the environment overrides for file locations.
"""
import os
from dataclasses import dataclass

# =============================================================================
# LOAN DEFAULTS
# =============================================================================

# Interest is stored on the loan but never accrued
DEFAULT_INTEREST_RATE = 0

# Days after the due date before a loan counts as overdue
DEFAULT_GRACE_DAYS = 0

# =============================================================================
# BUSINESS RULES
# =============================================================================

MIN_INTEREST_RATE = 0
MAX_INTEREST_RATE = 100

# Term lengths used when deriving a due date from the repayment frequency
BI_WEEKLY_DAYS = 14
FALLBACK_TERM_DAYS = 30

# Money is kept to paise/cents
MONEY_PLACES = 2

# =============================================================================
# FORMATS
# =============================================================================

# Date format for storage (ISO 8601)
DATE_FORMAT_STORAGE = "%Y-%m-%d"

# Timestamp format for created/updated/completion stamps
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Date format for display on receipts
DATE_FORMAT_DISPLAY = "%B %d, %Y"

# Standard PDF fonts have no rupee glyph
CURRENCY_SYMBOL = "Rs."

# =============================================================================
# RECEIPTS
# =============================================================================

RECEIPT_PAGE_SIZE = "A5"

# PDF margins in mm
RECEIPT_MARGIN_MM = 18

RECEIPT_FOOTER = "Thank you for your payment!"

RECEIPT_URL_TEMPLATE = "/receipts/{repayment_id}.pdf"

RECEIPT_CONTENT_TYPE = "application/pdf"

# Keys in the settings table that override the receipt defaults above
SETTING_RECEIPT_FOOTER = "receipt_footer"
SETTING_CURRENCY_SYMBOL = "currency_symbol"

# =============================================================================
# ENVIRONMENT
# =============================================================================

DEFAULT_DB_NAME = "khata.db"

# Seconds a connection waits for another writer before giving up
DB_LOCK_TIMEOUT = 5.0
DEFAULT_RECEIPTS_DIR = "receipts"
DEFAULT_LOG_LEVEL = "INFO"


@dataclass
class Settings:
    """File locations and log level, resolved from the environment."""

    db_name: str = DEFAULT_DB_NAME
    receipts_dir: str = DEFAULT_RECEIPTS_DIR
    log_level: str = DEFAULT_LOG_LEVEL


def load_settings() -> Settings:
    """Create settings from environment variables."""
    return Settings(
        db_name=os.getenv("KHATA_DB", DEFAULT_DB_NAME),
        receipts_dir=os.getenv("KHATA_RECEIPTS_DIR", DEFAULT_RECEIPTS_DIR),
        log_level=os.getenv("KHATA_LOG_LEVEL", DEFAULT_LOG_LEVEL),
    )
