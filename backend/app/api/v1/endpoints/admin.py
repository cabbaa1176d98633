"""
Admin API Endpoints.

Balance adjustments, ledger diagnostics and operator-wide order and
transaction listings. All balance changes go through the Ledger service;
nothing here writes ``User.balance`` directly.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.guards import require_admin
from backend.app.db.session import get_db
from backend.app.api.v1.endpoints.numbers import get_order_coordinator
from backend.app.domain.orders.coordinator import OrderCoordinator
from backend.app.models.billing_enums import LedgerEntryType, LedgerSource
from backend.app.models.order_enums import OrderStatus, ProviderName
from backend.app.schemas.order import OrderListResponse, OrderResponse
from backend.app.schemas.ledger import (
    BalanceAdjustment, LedgerEntryResponse, LedgerEntryListResponse,
    LedgerVerificationResponse, LedgerStatisticsResponse
)
from backend.app.services.ledger import Ledger

logger = logging.getLogger("otp_numbers.admin")

router = APIRouter(prefix="/admin", tags=["Admin"])


async def _adjust(db: AsyncSession, user_id: int, request: BalanceAdjustment, admin: dict, credit: bool):
    ledger = Ledger(db)
    apply = ledger.credit if credit else ledger.debit
    try:
        entry = await apply(
            user_id,
            request.amount,
            request.source,
            request.description,
            reference=request.reference,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Admin %s %s user %s by %s",
        admin.get("sub") or admin["user_id"], "credited" if credit else "debited", user_id, request.amount
    )
    return LedgerEntryResponse.model_validate(entry)


@router.post("/users/{user_id}/credit", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def credit_user(
    user_id: int,
    request: BalanceAdjustment,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Add balance to a user (admin-only)."""
    return await _adjust(db, user_id, request, admin, credit=True)


@router.post("/users/{user_id}/debit", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def debit_user(
    user_id: int,
    request: BalanceAdjustment,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Remove balance from a user (admin-only).

    Fails with 402 instead of clamping when the balance is too low.
    """
    return await _adjust(db, user_id, request, admin, credit=False)


@router.get("/users/{user_id}/ledger", response_model=LedgerEntryListResponse)
async def user_ledger(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    entries, total = await Ledger(db).list_entries(user_id, limit=limit, page=page)
    return LedgerEntryListResponse(
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/users/{user_id}/ledger/verify", response_model=LedgerVerificationResponse)
async def verify_user_ledger(
    user_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    result = await Ledger(db).verify(user_id)
    return LedgerVerificationResponse(**result)


@router.get("/transactions/statistics", response_model=LedgerStatisticsResponse)
async def transaction_statistics(
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return LedgerStatisticsResponse(**await Ledger(db).statistics())


@router.get("/orders", response_model=OrderListResponse)
async def list_all_orders(
    user_id: Optional[int] = Query(None),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    provider: Optional[ProviderName] = Query(None),
    q: Optional[str] = Query(None, min_length=1, max_length=64, description="Phone, product, provider or order id"),
    limit: int = Query(50, ge=1, le=100),
    page: int = Query(1, ge=1),
    admin: dict = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_order_coordinator)
):
    """Every user's orders, newest first, with filters and free-text search."""
    orders, total = await coordinator.search_orders(
        user_id=user_id, status=order_status, provider=provider, query=q, limit=limit, page=page
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/transactions", response_model=LedgerEntryListResponse)
async def list_transactions(
    user_id: Optional[int] = Query(None),
    entry_type: Optional[LedgerEntryType] = Query(None, alias="type"),
    source: Optional[LedgerSource] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    page: int = Query(1, ge=1),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """All ledger entries across users, newest first."""
    entries, total = await Ledger(db).list_entries(
        user_id, limit=limit, page=page, entry_type=entry_type, source=source
    )
    return LedgerEntryListResponse(
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        limit=limit
    )
