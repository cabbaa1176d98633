"""
Order Store.

Persistence for ``Order`` rows. The store flushes but never commits: the
order coordinator decides the transaction boundary so that an order write
and its ledger mutation land together.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import DuplicateOrderError, NotFoundError, OrderTerminalError
from backend.app.models.order import Order
from backend.app.models.order_enums import OrderStatus, ProviderName

# Columns fixed at purchase time
IMMUTABLE_FIELDS = frozenset({
    "order_id", "provider", "user_id", "phone", "country",
    "product", "operator", "cost", "created_at",
})

# Transition timestamps: the first write wins
SET_ONCE_FIELDS = frozenset({"received_at", "completed_at", "cancelled_at", "expired_at"})

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class OrderStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, order: Order) -> Order:
        """
        Insert a new order.

        Raises:
            DuplicateOrderError: an order with the same id already exists
        """
        if await self.db.get(Order, order.order_id) is not None:
            raise DuplicateOrderError(order.order_id)

        now = datetime.now(timezone.utc)
        order.created_at = order.created_at or now
        order.updated_at = now
        if order.sms is None:
            order.sms = []

        self.db.add(order)
        await self.db.flush()
        return order

    async def get(self, order_id: str) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update(
        self,
        order_id: str,
        fields: Dict[str, Any],
        only_if_status: Optional[Iterable[OrderStatus]] = None
    ) -> Order:
        """
        Merge ``fields`` into an order and bump ``updated_at``.

        With ``only_if_status`` the write is a compare-and-swap on the
        current status, so two racing transitions cannot both succeed.

        Raises:
            ValueError: an immutable column was passed
            NotFoundError: no order with this id
            OrderTerminalError: the status precondition no longer holds
        """
        forbidden = IMMUTABLE_FIELDS.intersection(fields)
        if forbidden:
            raise ValueError(f"Immutable order fields cannot be updated: {sorted(forbidden)}")

        values: Dict[str, Any] = {}
        for key, value in fields.items():
            column = getattr(Order, key)
            if key in SET_ONCE_FIELDS:
                values[key] = func.coalesce(column, value)
            else:
                values[key] = value
        values["updated_at"] = datetime.now(timezone.utc)

        stmt = update(Order).where(Order.order_id == order_id)
        expected = list(only_if_status) if only_if_status is not None else None
        if expected is not None:
            stmt = stmt.where(Order.status.in_(expected))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            current = await self.get(order_id)
            if current is None:
                raise NotFoundError("Order", order_id)
            raise OrderTerminalError(order_id, current.status.value)

        await self.db.flush()
        return await self.get(order_id)

    async def list_by_user(
        self,
        user_id: int,
        limit: int = DEFAULT_PAGE_SIZE,
        page: int = 1,
        status: Optional[OrderStatus] = None,
        provider: Optional[ProviderName] = None
    ) -> Tuple[List[Order], int]:
        """Newest-first page of a user's orders plus the filtered total."""
        return await self.list_orders(user_id=user_id, limit=limit, page=page, status=status, provider=provider)

    async def list_orders(
        self,
        user_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        provider: Optional[ProviderName] = None,
        query: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        page: int = 1
    ) -> Tuple[List[Order], int]:
        """
        Newest-first page of orders across users plus the filtered total.

        ``query`` is a case-insensitive substring match on phone, product,
        provider or order id.
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)

        conditions = []
        if user_id is not None:
            conditions.append(Order.user_id == user_id)
        if status is not None:
            conditions.append(Order.status == status)
        if provider is not None:
            conditions.append(Order.provider == provider)
        if query:
            conditions.append(self._search_condition(query))

        total_result = await self.db.execute(select(func.count(Order.order_id)).where(*conditions))
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    def _search_condition(query: str):
        needle = query.strip().lower()
        matches = [
            func.lower(Order.phone).contains(needle, autoescape=True),
            func.lower(Order.product).contains(needle, autoescape=True),
            func.lower(Order.order_id).contains(needle, autoescape=True),
        ]
        # Provider is an enum column; match against the public identifiers
        providers = [p for p in ProviderName if needle in p.value]
        if providers:
            matches.append(Order.provider.in_(providers))
        return or_(*matches)

    async def aggregate_statistics(self, user_id: Optional[int] = None) -> dict:
        query = select(Order.status, func.count(Order.order_id), func.coalesce(func.sum(Order.cost), 0))
        if user_id is not None:
            query = query.where(Order.user_id == user_id)
        result = await self.db.execute(query.group_by(Order.status))

        by_status = {status.value: 0 for status in OrderStatus}
        total = 0
        total_cost = Decimal("0")
        for status, count, cost in result.all():
            by_status[status.value] = count
            total += count
            total_cost += Decimal(str(cost))

        return {
            "total": total,
            "by_status": by_status,
            "total_cost": total_cost.quantize(Decimal("0.01")),
        }
