"""
Order Pydantic schemas.

Defines request and response models for number purchase and order tracking.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict
from backend.app.models.order_enums import OrderStatus, ProviderName


class BuyNumberRequest(BaseModel):
    """Schema for buying a number."""
    country: str = Field(..., min_length=1, max_length=64, description="Provider country code, e.g. russia")
    product: str = Field(..., min_length=1, max_length=64, description="Service the number is for, e.g. telegram")
    operator: str = Field(default="any", min_length=1, max_length=64)
    provider: str = Field(default=ProviderName.FIVESIM.value, description="Provider identifier")


class OrderActionRequest(BaseModel):
    """Optional body for finish/cancel; the stored order's provider is authoritative."""
    provider: Optional[str] = None


class SmsRecord(BaseModel):
    text: str
    sender: Optional[str] = None
    received_at: Optional[str] = None


class BuyNumberResponse(BaseModel):
    """Schema returned after a successful purchase."""
    order_id: str
    phone: str
    cost: Decimal
    provider: ProviderName
    status: OrderStatus
    expires_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Schema for order response."""
    order_id: str
    provider: ProviderName
    user_id: int
    phone: str
    country: str
    product: str
    operator: str
    cost: Decimal
    status: OrderStatus
    sms: List[SmsRecord]
    extracted_code: Optional[str]
    expires_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    received_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    expired_at: Optional[datetime]

    class Config:
        from_attributes = True


class CheckSmsResponse(BaseModel):
    """Result of polling an order for SMS."""
    order_id: str
    status: OrderStatus
    messages: List[SmsRecord]
    code: Optional[str]
    waiting: bool


class OrderListResponse(BaseModel):
    """Schema for paginated order list."""
    orders: List[OrderResponse]
    total: int
    page: int
    limit: int


class OrderStatisticsResponse(BaseModel):
    user_id: Optional[int]
    total: int
    by_status: Dict[str, int]
    total_cost: Decimal
