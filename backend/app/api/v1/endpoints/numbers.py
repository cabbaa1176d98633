"""
Number Selling API Endpoints.

Thin HTTP mapping over the order coordinator. Ownership of every order is
enforced by the coordinator against the stored order.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_current_user
from backend.app.core.exceptions import AccessDeniedError
from backend.app.core.guards import require_admin, is_admin
from backend.app.db.session import get_db
from backend.app.domain.orders.coordinator import OrderCoordinator
from backend.app.models.order_enums import OrderStatus, ProviderName
from backend.app.schemas.order import (
    BuyNumberRequest, BuyNumberResponse, OrderActionRequest, OrderResponse,
    CheckSmsResponse, OrderListResponse, OrderStatisticsResponse
)
from backend.app.schemas.provider import (
    ProviderBalanceResponse, CountryListResponse, CountryResponse,
    ProductListResponse, ProductResponse, ProviderInfo, ServiceStatusResponse
)
from backend.app.services.active_orders import ActiveOrderRegistry, get_active_orders
from backend.app.services.providers.registry import ProviderRegistry, get_provider_registry

router = APIRouter(prefix="/numbers", tags=["Numbers"])


def get_order_coordinator(
    db: AsyncSession = Depends(get_db),
    providers: ProviderRegistry = Depends(get_provider_registry),
    active_orders: ActiveOrderRegistry = Depends(get_active_orders)
) -> OrderCoordinator:
    return OrderCoordinator(db, providers, active_orders)


@router.post("/buy", response_model=BuyNumberResponse, status_code=status.HTTP_201_CREATED)
async def buy_number(
    request: BuyNumberRequest,
    current_user: dict = Depends(get_current_user),
    coordinator: OrderCoordinator = Depends(get_order_coordinator)
):
    """
    Buy a phone number for OTP.

    The order cost is debited from the caller's balance.
    """
    order = await coordinator.buy_number(
        user_id=current_user["user_id"],
        country=request.country,
        product=request.product,
        operator=request.operator,
        provider=request.provider,
    )
    return BuyNumberResponse.model_validate(order)


@router.get("/check/{order_id}", response_model=CheckSmsResponse)
async def check_sms(
    order_id: str = Path(..., description="Order ID"),
    current_user: dict = Depends(get_current_user),
    coordinator: OrderCoordinator = Depends(get_order_coordinator)
):
    """
    Check an order for received SMS.

    ``waiting`` is true while no message has arrived; that is not an error.
    """
    order = await coordinator.check_sms(order_id, current_user["user_id"])
    return CheckSmsResponse(
        order_id=order.order_id,
        status=order.status,
        messages=order.sms or [],
        code=order.extracted_code,
        waiting=order.status in (OrderStatus.PENDING, OrderStatus.WAITING),
    )


@router.post("/finish/{order_id}", response_model=OrderResponse)
async def finish_order(
    order_id: str = Path(..., description="Order ID"),
    body: Optional[OrderActionRequest] = None,
    current_user: dict = Depends(get_current_user),
    coordinator: OrderCoordinator = Depends(get_order_coordinator)
):
    """Mark an order as completed (owner only)."""
    order = await coordinator.finish_order(order_id, current_user["user_id"])
    return OrderResponse.model_validate(order)


@router.post("/cancel/{order_id}", response_model=OrderResponse)
async def cancel_order(
    order_id: str = Path(..., description="Order ID"),
    body: Optional[OrderActionRequest] = None,
    current_user: dict = Depends(get_current_user),
    coordinator: OrderCoordinator = Depends(get_order_coordinator)
):
    """Cancel an order (owner only)."""
    order = await coordinator.cancel_order(order_id, current_user["user_id"])
    return OrderResponse.model_validate(order)


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    provider: Optional[ProviderName] = Query(None),
    limit: int = Query(50, ge=1, le=100, description="Items per page"),
    page: int = Query(1, ge=1, description="Page number"),
    current_user: dict = Depends(get_current_user),
    coordinator: OrderCoordinator = Depends(get_order_coordinator)
):
    """List the caller's orders, newest first."""
    orders, total = await coordinator.list_orders(
        current_user["user_id"], limit=limit, page=page, status=order_status, provider=provider
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str = Path(..., description="Order ID"),
    current_user: dict = Depends(get_current_user),
    coordinator: OrderCoordinator = Depends(get_order_coordinator)
):
    """Order details. Admins may view any order."""
    owner = None if is_admin(current_user) else current_user["user_id"]
    order = await coordinator.get_order(order_id, owner)
    return OrderResponse.model_validate(order)


@router.get("/statistics", response_model=OrderStatisticsResponse)
async def order_statistics(
    user_id: Optional[int] = Query(None, description="Admin only: another user's statistics"),
    current_user: dict = Depends(get_current_user),
    coordinator: OrderCoordinator = Depends(get_order_coordinator)
):
    """
    Order counts by status and total cost.

    Users get their own figures. Admins get platform-wide figures unless
    ``user_id`` narrows them to one user.
    """
    if is_admin(current_user):
        target = user_id
    elif user_id is None or user_id == current_user["user_id"]:
        target = current_user["user_id"]
    else:
        raise AccessDeniedError("Only admins can view other users' statistics")

    stats = await coordinator.statistics(target)
    return OrderStatisticsResponse(user_id=target, **stats)


@router.get("/balance", response_model=ProviderBalanceResponse)
async def provider_balance(
    provider: str = Query(ProviderName.FIVESIM.value),
    admin: dict = Depends(require_admin),
    providers: ProviderRegistry = Depends(get_provider_registry)
):
    """Balance of the platform's account at the provider."""
    balance = await providers.get(provider).get_balance()
    return ProviderBalanceResponse(provider=provider, balance=balance.amount, currency=balance.currency)


@router.get("/countries", response_model=CountryListResponse)
async def list_countries(
    provider: str = Query(ProviderName.FIVESIM.value),
    providers: ProviderRegistry = Depends(get_provider_registry)
):
    countries = await providers.get(provider).list_countries()
    return CountryListResponse(
        provider=provider,
        countries=[CountryResponse(code=c.code, name=c.name, prefix=c.prefix) for c in countries],
        total=len(countries)
    )


@router.get("/products", response_model=ProductListResponse)
async def list_products(
    provider: str = Query(ProviderName.FIVESIM.value),
    country: str = Query("russia"),
    providers: ProviderRegistry = Depends(get_provider_registry)
):
    products = await providers.get(provider).list_products(country)
    return ProductListResponse(
        provider=provider,
        country=country,
        products=[ProductResponse(name=p.name, count=p.count, price=p.price) for p in products],
        total=len(products)
    )


@router.get("/providers", response_model=list[ProviderInfo])
async def list_providers(providers: ProviderRegistry = Depends(get_provider_registry)):
    return [ProviderInfo(**info) for info in providers.describe()]


@router.get("/status", response_model=ServiceStatusResponse)
async def service_status(
    provider: str = Query(ProviderName.FIVESIM.value),
    admin: dict = Depends(require_admin),
    providers: ProviderRegistry = Depends(get_provider_registry),
    active_orders: ActiveOrderRegistry = Depends(get_active_orders)
):
    """Provider balance plus the number of in-flight orders in this process."""
    balance = await providers.get(provider).get_balance()
    return ServiceStatusResponse(
        provider=provider,
        balance=balance.amount,
        currency=balance.currency,
        active_orders=active_orders.count(),
        status="operational"
    )
