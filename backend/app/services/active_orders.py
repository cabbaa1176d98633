"""
Active-Order Registry.

In-memory index of in-flight orders used for dashboards and "how many
orders are open" queries. It is a cache: the Order Store is authoritative,
the registry starts empty and is repopulated as orders are touched.

Entries are time-boxed to the provider number-expiry window and the
registry is size-bounded (oldest entries are evicted first).
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional

from backend.app.core.config import settings
from backend.app.models.order_enums import OrderStatus


@dataclass(frozen=True)
class ActiveOrderSnapshot:
    order_id: str
    user_id: int
    provider: str
    status: OrderStatus
    last_checked_at: float
    expires_at: Optional[datetime] = None


class ActiveOrderRegistry:

    def __init__(self, max_size: int = 10000, ttl_seconds: int = 1200, clock=time.monotonic):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, ActiveOrderSnapshot]" = OrderedDict()
        self._lock = threading.Lock()

    def add(
        self,
        order_id: str,
        user_id: int,
        provider: str,
        status: OrderStatus,
        expires_at: Optional[datetime] = None
    ) -> ActiveOrderSnapshot:
        snapshot = ActiveOrderSnapshot(
            order_id=order_id,
            user_id=user_id,
            provider=provider,
            status=status,
            last_checked_at=self._clock(),
            expires_at=expires_at,
        )
        with self._lock:
            self._entries[order_id] = snapshot
            self._entries.move_to_end(order_id)
            self._evict_locked()
        return snapshot

    def touch(self, order) -> Optional[ActiveOrderSnapshot]:
        """Register or refresh an order loaded from the store (lazy repopulation)."""
        if order.status.is_terminal:
            self.remove(order.order_id)
            return None
        return self.add(
            order.order_id,
            order.user_id,
            order.provider.value,
            order.status,
            order.expires_at,
        )

    def update(self, order_id: str, status: OrderStatus) -> Optional[ActiveOrderSnapshot]:
        with self._lock:
            current = self._entries.get(order_id)
            if current is None:
                return None
            snapshot = replace(current, status=status, last_checked_at=self._clock())
            self._entries[order_id] = snapshot
            self._entries.move_to_end(order_id)
            return snapshot

    def remove(self, order_id: str) -> None:
        with self._lock:
            self._entries.pop(order_id, None)

    def get(self, order_id: str) -> Optional[ActiveOrderSnapshot]:
        with self._lock:
            snapshot = self._entries.get(order_id)
            if snapshot is not None and self._is_stale(snapshot):
                del self._entries[order_id]
                return None
            return snapshot

    def count(self) -> int:
        with self._lock:
            self._purge_locked()
            return len(self._entries)

    def snapshot(self) -> List[ActiveOrderSnapshot]:
        with self._lock:
            self._purge_locked()
            return list(self._entries.values())

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _is_stale(self, snapshot: ActiveOrderSnapshot) -> bool:
        return self._clock() - snapshot.last_checked_at >= self.ttl_seconds

    def _purge_locked(self) -> int:
        stale = [order_id for order_id, snap in self._entries.items() if self._is_stale(snap)]
        for order_id in stale:
            del self._entries[order_id]
        return len(stale)

    def _evict_locked(self) -> None:
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)


active_orders = ActiveOrderRegistry(
    max_size=settings.active_orders_max_size,
    ttl_seconds=settings.order_ttl_seconds,
)


def get_active_orders() -> ActiveOrderRegistry:
    """FastAPI dependency returning the process-wide registry."""
    return active_orders
