"""
Wallet API Endpoints.

Read-only view of the caller's balance and ledger.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_current_user
from backend.app.db.session import get_db
from backend.app.schemas.ledger import (
    BalanceResponse, LedgerEntryListResponse, LedgerEntryResponse, LedgerVerificationResponse
)
from backend.app.services.ledger import Ledger

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    balance = await Ledger(db).get_balance(current_user["user_id"])
    return BalanceResponse(user_id=current_user["user_id"], balance=balance)


@router.get("/transactions", response_model=LedgerEntryListResponse)
async def list_transactions(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Caller's ledger entries, newest first."""
    entries, total = await Ledger(db).list_entries(current_user["user_id"], limit=limit, page=page)
    return LedgerEntryListResponse(
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/verify", response_model=LedgerVerificationResponse)
async def verify_balance(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    result = await Ledger(db).verify(current_user["user_id"])
    return LedgerVerificationResponse(**result)
