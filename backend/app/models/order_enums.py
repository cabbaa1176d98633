"""
Order and provider enumerations.
"""

import enum


class OrderStatus(str, enum.Enum):
    """
    Order status enumeration.

    Status flow:
        PENDING → WAITING → RECEIVED → COMPLETED
        PENDING / WAITING / RECEIVED → CANCELLED
        Any non-terminal status → EXPIRED (reported by the provider)
    """
    PENDING = "pending"
    WAITING = "waiting"
    RECEIVED = "received"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.EXPIRED})
OPEN_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.WAITING, OrderStatus.RECEIVED})


class ProviderName(str, enum.Enum):
    """Upstream OTP vendors known to the platform."""
    FIVESIM = "5sim"
    SMS_ACTIVATE = "sms-activate"
    SMSHUB = "smshub"
