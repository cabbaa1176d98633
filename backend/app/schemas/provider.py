"""
Provider catalogue and account schemas.
"""

from pydantic import BaseModel
from decimal import Decimal
from typing import Optional, List


class ProviderBalanceResponse(BaseModel):
    provider: str
    balance: Decimal
    currency: str


class CountryResponse(BaseModel):
    code: str
    name: str
    prefix: Optional[str] = None


class CountryListResponse(BaseModel):
    provider: str
    countries: List[CountryResponse]
    total: int


class ProductResponse(BaseModel):
    name: str
    count: int
    price: Decimal


class ProductListResponse(BaseModel):
    provider: str
    country: str
    products: List[ProductResponse]
    total: int


class ProviderInfo(BaseModel):
    id: str
    base_url: str
    has_api_key: bool
    integrated: bool


class ServiceStatusResponse(BaseModel):
    provider: str
    balance: Decimal
    currency: str
    active_orders: int
    status: str
