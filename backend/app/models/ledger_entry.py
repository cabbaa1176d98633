"""
Ledger Entry database model.

Append-only record of every balance mutation.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import LedgerEntryType, LedgerSource


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Immutable record of financial movement on a user balance.
    Each entry snapshots the balance before and after it was applied.
    NO updates or deletions allowed.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Entry details
    entry_type = Column(Enum(LedgerEntryType), nullable=False)  # DEBIT or CREDIT
    source = Column(Enum(LedgerSource), nullable=False, default=LedgerSource.SYSTEM)
    description = Column(String(255), nullable=True)

    # Idempotency key, e.g. "order:<order_id>"
    reference = Column(String(128), unique=True, nullable=True)

    # Financials
    amount = Column(Numeric(12, 2), nullable=False)
    balance_before = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.entry_type.value}', amount={self.amount})>"
