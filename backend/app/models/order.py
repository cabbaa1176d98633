"""
Order database model.

One row per purchased number. Rows are never deleted, only moved to a
terminal status.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Numeric, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.order_enums import OrderStatus, ProviderName


class Order(Base):
    """
    Order model.

    Purchase parameters (phone, country, product, operator, cost) are
    immutable. ``sms`` is append-only and each transition timestamp is
    written once.
    """
    __tablename__ = "orders"

    # Provider-assigned activation id
    order_id = Column(String(64), primary_key=True)
    provider = Column(Enum(ProviderName), nullable=False, index=True)

    # Ownership
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Purchase parameters
    phone = Column(String(32), nullable=False)
    country = Column(String(64), nullable=False)
    product = Column(String(64), nullable=False)
    operator = Column(String(64), nullable=False, default="any")
    cost = Column(Numeric(12, 2), nullable=False)

    # State
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    sms = Column(JSON, nullable=False, default=list)
    extracted_code = Column(String(16), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Order(order_id='{self.order_id}', provider='{self.provider.value}', status='{self.status.value}')>"
