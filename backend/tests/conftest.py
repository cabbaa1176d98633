"""
Centralized Test Configuration.
"""

import asyncio
from collections import deque
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy import select
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.jwt import create_access_token
from backend.app.models.enums import UserRole
from backend.app.models.user import User
from backend.app.models.order import Order
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.domain.orders.coordinator import OrderCoordinator
from backend.app.services.active_orders import ActiveOrderRegistry, get_active_orders
from backend.app.services.ledger import Ledger
from backend.app.models.billing_enums import LedgerSource
from backend.app.services.providers.base import (
    Country, Product, ProviderBalance, ProviderGateway, PurchasedNumber, SmsCheck, SmsMessage
)
from backend.app.services.providers.registry import ProviderRegistry, get_provider_registry

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class FakeGateway(ProviderGateway):
    """
    Scripted in-process provider.

    Purchases and SMS checks are served from queues; ``fail_on`` makes the
    named operation raise the given exception. Every call is recorded.
    """

    name = "5sim"

    def __init__(self):
        self.calls = []
        self.fail_on = {}
        self._purchases = deque()
        self._checks = {}
        self._next_id = 1000
        self.yield_on_call = False

    def queue_purchase(self, cost="10", phone="+79990001122", order_id=None, operator="virtual21"):
        self._next_id += 1
        purchase = PurchasedNumber(
            provider_order_id=order_id or str(self._next_id),
            phone=phone,
            cost=Decimal(cost),
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=20),
            operator=operator,
        )
        self._purchases.append(purchase)
        return purchase

    def queue_sms(self, order_id, *texts, sender="Telegram"):
        self._checks[order_id] = SmsCheck(
            messages=[
                SmsMessage(text=text, sender=sender, received_at=datetime(2026, 1, 1, 12, 0, i, tzinfo=timezone.utc))
                for i, text in enumerate(texts)
            ],
            provider_status="RECEIVED",
        )

    def queue_expiry(self, order_id):
        self._checks[order_id] = SmsCheck(messages=[], provider_status="TIMEOUT", expired=True)

    async def _record(self, name, *args):
        self.calls.append((name,) + args)
        if self.yield_on_call:
            await asyncio.sleep(0)
        if name in self.fail_on:
            raise self.fail_on[name]

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    async def buy(self, country, product, operator="any"):
        await self._record("buy", country, product, operator)
        if not self._purchases:
            self.queue_purchase()
        return self._purchases.popleft()

    async def check_sms(self, provider_order_id):
        await self._record("check", provider_order_id)
        return self._checks.get(provider_order_id, SmsCheck(messages=[], provider_status="PENDING"))

    async def finish(self, provider_order_id):
        await self._record("finish", provider_order_id)

    async def cancel(self, provider_order_id):
        await self._record("cancel", provider_order_id)

    async def get_balance(self):
        await self._record("balance")
        return ProviderBalance(amount=Decimal("123.45"), currency="RUB")

    async def list_countries(self):
        await self._record("countries")
        return [Country(code="russia", name="Russia", prefix="+7")]

    async def list_products(self, country):
        await self._record("products", country)
        return [Product(name="telegram", count=120, price=Decimal("10"))]


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def providers(gateway):
    registry = ProviderRegistry()
    registry.register(gateway)
    return registry


@pytest.fixture
def active_orders():
    return ActiveOrderRegistry(max_size=100, ttl_seconds=1200)


@pytest.fixture(autouse=True)
def apply_overrides(providers, active_orders):
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_registry] = lambda: providers
    app.dependency_overrides[get_active_orders] = lambda: active_orders
    yield
    app.dependency_overrides = {}


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def coordinator(db_session, providers, active_orders):
    return OrderCoordinator(db_session, providers, active_orders)


async def _create_user(username, balance="0", role=UserRole.USER, **kwargs):
    async with TestingSessionLocal() as session:
        user = User(username=username, role=role, balance=0, **kwargs)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        if Decimal(balance) > 0:
            await Ledger(session).credit(user.id, Decimal(balance), LedgerSource.ADMIN, "Opening balance")
            await session.commit()
        return user.id


@pytest.fixture
def make_user():
    """Create a user; an opening balance is granted through the ledger."""
    return _create_user


@pytest.fixture
def auth_headers():
    def build(user_id, username, role=UserRole.USER):
        token = create_access_token({"sub": username, "user_id": user_id, "role": role.value})
        return {"Authorization": f"Bearer {token}"}
    return build


@pytest.fixture
async def customer():
    """User with a balance of 50."""
    return await _create_user("alice", balance="50")


@pytest.fixture
async def other_customer():
    return await _create_user("bob", balance="50")


@pytest.fixture
async def admin_user():
    return await _create_user("admin", role=UserRole.ADMIN)


@pytest.fixture
def load_order():
    async def load(order_id):
        async with TestingSessionLocal() as session:
            return await session.get(Order, order_id)
    return load


@pytest.fixture
def load_ledger():
    async def load(user_id):
        async with TestingSessionLocal() as session:
            result = await session.execute(
                select(LedgerEntry).where(LedgerEntry.user_id == user_id).order_by(LedgerEntry.id)
            )
            return list(result.scalars().all())
    return load


@pytest.fixture
def session_factory():
    """Sessionmaker bound to the test engine, for tests that need several sessions."""
    return TestingSessionLocal
