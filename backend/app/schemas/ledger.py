"""
Ledger Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.billing_enums import LedgerEntryType, LedgerSource


class BalanceAdjustment(BaseModel):
    """Admin request to credit or debit a user balance."""
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)
    source: LedgerSource = LedgerSource.ADMIN
    reference: Optional[str] = Field(None, max_length=128, description="Idempotency key")


class LedgerEntryResponse(BaseModel):
    """Schema for displaying ledger entries."""
    id: int
    user_id: int
    entry_type: LedgerEntryType
    source: LedgerSource
    amount: Decimal
    description: Optional[str]
    reference: Optional[str]
    balance_before: Decimal
    balance_after: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerEntryListResponse(BaseModel):
    entries: List[LedgerEntryResponse]
    total: int
    page: int
    limit: int


class BalanceResponse(BaseModel):
    user_id: int
    balance: Decimal


class LedgerVerificationResponse(BaseModel):
    user_id: int
    balance: Decimal
    calculated_balance: Decimal
    matches: bool


class LedgerStatisticsResponse(BaseModel):
    total_transactions: int
    total_credits: Decimal
    total_debits: Decimal
    recent_transactions: int
