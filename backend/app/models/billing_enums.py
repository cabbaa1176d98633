"""
Ledger enumerations.
"""

import enum


class LedgerEntryType(str, enum.Enum):
    """Ledger entry type enumeration."""
    DEBIT = "debit"  # Money leaving the user balance
    CREDIT = "credit"  # Money entering the user balance


class LedgerSource(str, enum.Enum):
    """Where a balance mutation originated."""
    ADMIN = "admin"
    ORDER = "order"
    PROMO = "promo"
    BOT = "bot"
    QR_PAYMENT = "qr_payment"
    SYSTEM = "system"
