"""
Ledger Service.

The only component allowed to change ``User.balance``. Every balance change
is paired with an append-only ``LedgerEntry`` written in the same database
transaction; the caller owns the commit so that a ledger mutation can be
bundled with the business write that caused it (e.g. order creation).
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Tuple, List

from sqlalchemy import select, func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InsufficientFundsError, LedgerReferenceConflictError, NotFoundError
from backend.app.models.billing_enums import LedgerEntryType, LedgerSource
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.user import User

logger = logging.getLogger("otp_numbers.ledger")

# Floating rounding tolerance when reconciling cached balance vs entries
BALANCE_TOLERANCE = Decimal("0.01")
CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


class Ledger:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def debit(
        self,
        user_id: int,
        amount,
        source: LedgerSource,
        description: str,
        reference: Optional[str] = None
    ) -> LedgerEntry:
        """
        Take ``amount`` from the user balance.

        Raises:
            InsufficientFundsError: amount exceeds the current balance
            NotFoundError: unknown user
        """
        return await self._apply(user_id, LedgerEntryType.DEBIT, amount, source, description, reference)

    async def credit(
        self,
        user_id: int,
        amount,
        source: LedgerSource,
        description: str,
        reference: Optional[str] = None
    ) -> LedgerEntry:
        """Add ``amount`` to the user balance."""
        return await self._apply(user_id, LedgerEntryType.CREDIT, amount, source, description, reference)

    async def _apply(
        self,
        user_id: int,
        entry_type: LedgerEntryType,
        amount,
        source: LedgerSource,
        description: str,
        reference: Optional[str]
    ) -> LedgerEntry:
        amount = _money(amount)
        if amount <= 0:
            raise ValueError(f"Ledger amount must be positive, got {amount}")

        user = await self._lock_user(user_id)

        # Idempotency: the same reference is only ever applied once. Checked
        # under the user row lock so a concurrent retry sees the first entry.
        if reference:
            existing = await self.find_by_reference(reference)
            if existing is not None:
                return self._replayed(existing, user_id, entry_type, amount)

        balance_before = _money(user.balance or 0)

        if entry_type == LedgerEntryType.DEBIT:
            if amount > balance_before:
                raise InsufficientFundsError(user_id, balance_before, amount)
            balance_after = balance_before - amount
        else:
            balance_after = balance_before + amount

        entry = LedgerEntry(
            user_id=user_id,
            entry_type=entry_type,
            source=source,
            description=description,
            reference=reference,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            created_at=datetime.now(timezone.utc),
        )
        user.balance = balance_after
        self.db.add(entry)
        try:
            await self.db.flush()
        except IntegrityError:
            # Unique reference taken by a concurrent writer; the caller rolls back
            if not reference:
                raise
            raise LedgerReferenceConflictError(reference, {"user_id": user_id})

        logger.info(
            "Ledger %s user=%s amount=%s source=%s balance %s -> %s",
            entry_type.value, user_id, amount, source.value, balance_before, balance_after
        )
        return entry

    @staticmethod
    def _replayed(
        existing: LedgerEntry,
        user_id: int,
        entry_type: LedgerEntryType,
        amount: Decimal
    ) -> LedgerEntry:
        """Return the earlier entry for a retried mutation, reject a different one."""
        if (
            existing.user_id != user_id
            or existing.entry_type != entry_type
            or _money(existing.amount) != amount
        ):
            raise LedgerReferenceConflictError(
                existing.reference,
                {"user_id": user_id, "entry_type": entry_type.value, "amount": str(amount)}
            )
        logger.info("Ledger reference %s already applied (entry %s)", existing.reference, existing.id)
        return existing

    async def _lock_user(self, user_id: int) -> User:
        # FOR UPDATE serialises concurrent mutations of one balance (no-op on SQLite)
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def find_by_reference(self, reference: str) -> Optional[LedgerEntry]:
        result = await self.db.execute(
            select(LedgerEntry).where(LedgerEntry.reference == reference)
        )
        return result.scalar_one_or_none()

    async def get_balance(self, user_id: int) -> Decimal:
        result = await self.db.execute(select(User.balance).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError("User", user_id)
        return _money(balance)

    async def calculated_balance(self, user_id: int) -> Decimal:
        signed = case(
            (LedgerEntry.entry_type == LedgerEntryType.CREDIT, LedgerEntry.amount),
            else_=-LedgerEntry.amount
        )
        result = await self.db.execute(
            select(func.coalesce(func.sum(signed), 0)).where(LedgerEntry.user_id == user_id)
        )
        return _money(result.scalar() or 0)

    async def verify(self, user_id: int) -> dict:
        """
        Reconcile the cached balance against the sum of ledger entries.

        Diagnostic query; not used on the purchase path.
        """
        balance = await self.get_balance(user_id)
        calculated = await self.calculated_balance(user_id)
        matches = abs(balance - calculated) <= BALANCE_TOLERANCE
        if not matches:
            logger.error("Balance mismatch for user %s: cached=%s ledger=%s", user_id, balance, calculated)
        return {
            "user_id": user_id,
            "balance": balance,
            "calculated_balance": calculated,
            "matches": matches,
        }

    async def list_entries(
        self,
        user_id: Optional[int] = None,
        limit: int = 50,
        page: int = 1,
        entry_type: Optional[LedgerEntryType] = None,
        source: Optional[LedgerSource] = None
    ) -> Tuple[List[LedgerEntry], int]:
        """Newest-first page of entries; without ``user_id`` across all users."""
        conditions = []
        if user_id is not None:
            conditions.append(LedgerEntry.user_id == user_id)
        if entry_type is not None:
            conditions.append(LedgerEntry.entry_type == entry_type)
        if source is not None:
            conditions.append(LedgerEntry.source == source)

        total_result = await self.db.execute(
            select(func.count(LedgerEntry.id)).where(*conditions)
        )
        total = total_result.scalar() or 0

        offset = (page - 1) * limit
        result = await self.db.execute(
            select(LedgerEntry)
            .where(*conditions)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def statistics(self) -> dict:
        """Platform-wide totals plus the number of entries in the last 24 hours."""
        result = await self.db.execute(
            select(
                func.count(LedgerEntry.id),
                func.coalesce(func.sum(case(
                    (LedgerEntry.entry_type == LedgerEntryType.CREDIT, LedgerEntry.amount), else_=0
                )), 0),
                func.coalesce(func.sum(case(
                    (LedgerEntry.entry_type == LedgerEntryType.DEBIT, LedgerEntry.amount), else_=0
                )), 0),
            )
        )
        total, credits, debits = result.one()

        since = datetime.now(timezone.utc) - timedelta(hours=24)
        recent_result = await self.db.execute(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.created_at >= since)
        )
        return {
            "total_transactions": total or 0,
            "total_credits": _money(credits or 0),
            "total_debits": _money(debits or 0),
            "recent_transactions": recent_result.scalar() or 0,
        }
