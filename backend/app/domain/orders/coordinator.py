"""
Order Lifecycle Coordinator (Domain Logic).

Drives a purchased number through its state machine:

    pending → waiting → received → completed
    pending / waiting / received → cancelled
    any non-terminal → expired (reported by the provider)

Each transition calls the provider gateway first and only then writes the
order (and, on purchase, the ledger debit) in a single database
transaction. A failed provider call leaves the order untouched.

Operations on one order id are serialised with a per-order asyncio lock,
and every write is also a compare-and-swap on status in the Order Store.
"""

import asyncio
import logging
import re
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AccessDeniedError,
    DuplicateOrderError,
    NotFoundError,
    OrderTerminalError,
    ProviderError,
    ProviderUnavailable,
)
from backend.app.models.billing_enums import LedgerSource
from backend.app.models.order import Order
from backend.app.models.order_enums import OPEN_STATUSES, OrderStatus, ProviderName
from backend.app.models.user import User
from backend.app.services.active_orders import ActiveOrderRegistry
from backend.app.services.ledger import Ledger
from backend.app.services.order_store import OrderStore
from backend.app.services.providers.base import ProviderGateway, PurchasedNumber, SmsMessage
from backend.app.services.providers.registry import ProviderRegistry

logger = logging.getLogger("otp_numbers.orders")

T = TypeVar("T")

# ASCII digits and word boundaries only, so a code glued to Cyrillic text still matches
CODE_PATTERN = re.compile(r"\b\d{4,6}\b", re.ASCII)

# Statuses from which an SMS check may still move the order to waiting
_POLLABLE = (OrderStatus.PENDING, OrderStatus.WAITING)

# Held locks stay referenced by their holders and waiters; idle ones are collected
_order_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def extract_code(text: Optional[str]) -> Optional[str]:
    """Return the first run of 4-6 digits in ``text``, or None."""
    if not text:
        return None
    match = CODE_PATTERN.search(text)
    return match.group(0) if match else None


def first_code(messages: Iterable[dict]) -> Optional[str]:
    for message in messages:
        code = extract_code(message.get("text"))
        if code:
            return code
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@asynccontextmanager
async def order_lock(order_id: str):
    lock = _order_locks.get(order_id)
    if lock is None:
        lock = asyncio.Lock()
        _order_locks[order_id] = lock
    async with lock:
        yield


class OrderCoordinator:

    def __init__(
        self,
        db: AsyncSession,
        providers: ProviderRegistry,
        active_orders: ActiveOrderRegistry,
        refund_on_cancel: Optional[bool] = None
    ):
        self.db = db
        self.providers = providers
        self.active_orders = active_orders
        self.store = OrderStore(db)
        self.ledger = Ledger(db)
        self.refund_on_cancel = settings.refund_on_cancel if refund_on_cancel is None else refund_on_cancel

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    async def buy_number(
        self,
        user_id: int,
        country: str,
        product: str,
        operator: str = "any",
        provider: str = ProviderName.FIVESIM.value
    ) -> Order:
        """
        Buy a number upstream, persist it as ``pending`` and debit the user.

        Flow:
        1. Resolve gateway (UnsupportedProviderError before any network call)
        2. Check the customer exists and may buy
        3. Provider buy (errors propagate, nothing persisted)
        4. Idempotency: a provider order id already stored is returned as-is
        5. Order Store.create + Ledger.debit, one commit
        6. Active-Order Registry.add

        If step 5 fails after the vendor already charged us (e.g.
        InsufficientFundsError) the transaction is rolled back and the
        number is cancelled upstream as compensation.
        """
        gateway = self.providers.get(provider)
        await self._ensure_customer(user_id)

        purchased = await gateway.buy(country, product, operator)
        order_id = purchased.provider_order_id

        async with order_lock(order_id):
            existing = await self.store.get(order_id)
            if existing is not None:
                if existing.user_id != user_id:
                    raise DuplicateOrderError(order_id)
                logger.info("Purchase retry for order %s returned existing order", order_id)
                return existing

            order = Order(
                order_id=order_id,
                provider=ProviderName(gateway.name),
                user_id=user_id,
                phone=purchased.phone,
                country=country,
                product=product,
                operator=purchased.operator or operator or "any",
                cost=purchased.cost,
                status=OrderStatus.PENDING,
                sms=[],
                expires_at=purchased.expires_at,
            )

            try:
                await self.store.create(order)
                if purchased.cost > 0:
                    await self.ledger.debit(
                        user_id,
                        purchased.cost,
                        LedgerSource.ORDER,
                        f"Number {purchased.phone} for {product} ({country}) via {gateway.name}",
                        reference=f"order:{order_id}",
                    )
                await self.db.commit()
            except DuplicateOrderError:
                await self.db.rollback()
                raise
            except Exception:
                await self.db.rollback()
                await self._compensate_purchase(gateway, purchased)
                raise

        self.active_orders.add(order_id, user_id, gateway.name, OrderStatus.PENDING, purchased.expires_at)
        logger.info(
            "Order %s created: user=%s provider=%s phone=%s cost=%s",
            order_id, user_id, gateway.name, purchased.phone, purchased.cost
        )
        return order

    async def _ensure_customer(self, user_id: int) -> None:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        if user.is_banned or not user.is_active:
            raise AccessDeniedError("User account is not allowed to buy numbers", {"user_id": user_id})

    async def _compensate_purchase(self, gateway: ProviderGateway, purchased: PurchasedNumber) -> None:
        try:
            await gateway.cancel(purchased.provider_order_id)
        except (ProviderError, ProviderUnavailable) as exc:
            logger.error(
                "Compensating cancel failed for %s order %s: %s",
                gateway.name, purchased.provider_order_id, exc.message
            )
        else:
            logger.warning(
                "Cancelled %s order %s upstream after local purchase failure",
                gateway.name, purchased.provider_order_id
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def check_sms(self, order_id: str, user_id: int) -> Order:
        """
        Poll the provider for messages.

        Never raises for "no SMS yet": the order simply moves to (or stays in)
        ``waiting``. Only provider/network failures propagate.
        """
        async with order_lock(order_id):
            order = await self._load_open_order(order_id, user_id)
            gateway = self.providers.get(order.provider)
            check = await self._call_provider(order, "check", lambda: gateway.check_sms(order_id))

            if check.expired:
                return await self._expire(order, check.messages, check.provider_status)

            if check.messages:
                return await self._record_messages(order, check.messages)

            status = OrderStatus.WAITING if order.status in _POLLABLE else order.status
            updated = await self._write(order_id, {"status": status}, [order.status])
            self.active_orders.touch(updated)
            return updated

    async def finish_order(self, order_id: str, user_id: int) -> Order:
        async with order_lock(order_id):
            order = await self._load_open_order(order_id, user_id)
            gateway = self.providers.get(order.provider)
            await self._call_provider(order, "finish", lambda: gateway.finish(order_id))

            updated = await self._write(
                order_id,
                {"status": OrderStatus.COMPLETED, "completed_at": _utcnow()},
                OPEN_STATUSES,
            )
            self.active_orders.remove(order_id)
            logger.info("Order %s completed", order_id)
            return updated

    async def cancel_order(self, order_id: str, user_id: int) -> Order:
        """
        Cancel an open order upstream and mark it ``cancelled``.

        The purchase debit stands unless ``refund_on_cancel`` is enabled, in
        which case an order that never received an SMS is credited back in
        the same transaction as the status write.
        """
        async with order_lock(order_id):
            order = await self._load_open_order(order_id, user_id)
            gateway = self.providers.get(order.provider)
            await self._call_provider(order, "cancel", lambda: gateway.cancel(order_id))

            refund = self.refund_on_cancel and order.status in _POLLABLE and order.cost > 0

            async def refund_cost():
                await self.ledger.credit(
                    order.user_id,
                    order.cost,
                    LedgerSource.ORDER,
                    f"Refund for cancelled order {order_id}",
                    reference=f"refund:{order_id}",
                )

            updated = await self._write(
                order_id,
                {"status": OrderStatus.CANCELLED, "cancelled_at": _utcnow()},
                OPEN_STATUSES,
                also=refund_cost if refund else None,
            )
            self.active_orders.remove(order_id)
            logger.info("Order %s cancelled (refunded=%s)", order_id, refund)
            return updated

    async def _record_messages(self, order: Order, messages: List[SmsMessage]) -> Order:
        merged = self._merge_sms(order.sms or [], messages)
        if len(merged) == len(order.sms or []) and order.status == OrderStatus.RECEIVED:
            updated = await self._write(order.order_id, {}, [OrderStatus.RECEIVED])
            self.active_orders.touch(updated)
            return updated

        fields = {
            "status": OrderStatus.RECEIVED,
            "sms": merged,
            "extracted_code": order.extracted_code or first_code(merged),
            "received_at": _utcnow(),
        }
        updated = await self._write(order.order_id, fields, OPEN_STATUSES)
        if self.active_orders.update(order.order_id, OrderStatus.RECEIVED) is None:
            self.active_orders.touch(updated)
        logger.info("Order %s received SMS (code=%s)", order.order_id, updated.extracted_code)
        return updated

    async def _expire(self, order: Order, messages: List[SmsMessage], provider_status: Optional[str]) -> Order:
        fields = {"status": OrderStatus.EXPIRED, "expired_at": _utcnow()}
        if messages:
            merged = self._merge_sms(order.sms or [], messages)
            fields["sms"] = merged
            fields["extracted_code"] = order.extracted_code or first_code(merged)

        updated = await self._write(order.order_id, fields, OPEN_STATUSES)
        self.active_orders.remove(order.order_id)
        logger.info("Order %s expired (provider status %s)", order.order_id, provider_status)
        return updated

    @staticmethod
    def _merge_sms(existing: List[dict], messages: List[SmsMessage]) -> List[dict]:
        merged = list(existing)
        seen = {(m.get("text"), m.get("sender"), m.get("received_at")) for m in existing}
        for message in messages:
            record = message.to_record()
            key = (record["text"], record["sender"], record["received_at"])
            if key not in seen:
                seen.add(key)
                merged.append(record)
        return merged

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: str, user_id: Optional[int] = None) -> Order:
        """Load an order; when ``user_id`` is given, ownership is enforced."""
        order = await self.store.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        if user_id is not None and order.user_id != user_id:
            raise AccessDeniedError("You can only access your own orders", {"order_id": order_id})
        return order

    async def list_orders(
        self,
        user_id: int,
        limit: int = 50,
        page: int = 1,
        status: Optional[OrderStatus] = None,
        provider: Optional[ProviderName] = None
    ):
        return await self.store.list_by_user(user_id, limit=limit, page=page, status=status, provider=provider)

    async def search_orders(
        self,
        user_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        provider: Optional[ProviderName] = None,
        query: Optional[str] = None,
        limit: int = 50,
        page: int = 1
    ):
        """Operator view over every user's orders. No ownership filter."""
        return await self.store.list_orders(
            user_id=user_id, status=status, provider=provider, query=query, limit=limit, page=page
        )

    async def statistics(self, user_id: Optional[int] = None) -> dict:
        return await self.store.aggregate_statistics(user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_open_order(self, order_id: str, user_id: int) -> Order:
        # Ownership comes from the store, never from the in-memory registry
        order = await self.get_order(order_id, user_id)
        if order.status.is_terminal:
            self.active_orders.remove(order_id)
            raise OrderTerminalError(order_id, order.status.value)
        return order

    async def _call_provider(self, order: Order, action: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except (ProviderError, ProviderUnavailable) as exc:
            exc.details.setdefault("order_id", order.order_id)
            exc.details.setdefault("action", action)
            logger.warning(
                "Provider %s failed to %s order %s: %s",
                order.provider.value, action, order.order_id, exc.message
            )
            raise

    async def _write(
        self,
        order_id: str,
        fields: dict,
        only_if_status: Iterable[OrderStatus],
        also: Optional[Callable[[], Awaitable[None]]] = None
    ) -> Order:
        try:
            updated = await self.store.update(order_id, fields, only_if_status=only_if_status)
            if also is not None:
                await also()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return updated
