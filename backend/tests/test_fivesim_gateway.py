"""
5sim gateway tests.

The vendor is replaced by ``httpx.MockTransport`` so request paths, headers
and error mapping are exercised without network access.
"""

import pytest
import httpx
from decimal import Decimal

from backend.app.core.exceptions import ProviderError, ProviderUnavailable, UnsupportedProviderError
from backend.app.core.reliability import CircuitBreaker
from backend.app.services.providers.base import parse_timestamp
from backend.app.services.providers.fivesim import FiveSimGateway
from backend.app.services.providers.registry import ProviderRegistry, build_default_registry


def make_gateway(handler, breaker=None):
    return FiveSimGateway(
        base_url="https://5sim.test/v1",
        api_key="secret",
        timeout=2.0,
        transport=httpx.MockTransport(handler),
        breaker=breaker,
    )


@pytest.mark.asyncio
async def test_buy_parses_activation():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={
            "id": 11631253,
            "phone": "+79000381454",
            "operator": "beeline",
            "product": "vkontakte",
            "price": 21,
            "status": "PENDING",
            "expires": "2018-10-13T08:28:38.809469028Z",
            "sms": None,
        })

    gateway = make_gateway(handler)
    purchased = await gateway.buy("russia", "vkontakte")
    await gateway.aclose()

    assert seen["path"] == "/v1/user/buy/activation/russia/any/vkontakte"
    assert seen["auth"] == "Bearer secret"
    assert purchased.provider_order_id == "11631253"
    assert purchased.phone == "+79000381454"
    assert purchased.cost == Decimal("21")
    assert purchased.operator == "beeline"
    assert purchased.expires_at.year == 2018
    assert purchased.expires_at.microsecond == 809469


@pytest.mark.asyncio
async def test_buy_rejects_malformed_body():
    gateway = make_gateway(lambda request: httpx.Response(200, json={"status": "ok"}))

    with pytest.raises(ProviderError):
        await gateway.buy("russia", "telegram")


@pytest.mark.asyncio
async def test_vendor_4xx_is_not_retryable():
    gateway = make_gateway(lambda request: httpx.Response(400, text="no free phones"))

    with pytest.raises(ProviderError) as exc_info:
        await gateway.buy("russia", "telegram")

    assert exc_info.value.upstream_status == 400
    assert exc_info.value.vendor_message == "no free phones"
    assert exc_info.value.retryable is False
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_vendor_5xx_is_retryable():
    gateway = make_gateway(lambda request: httpx.Response(503, text="maintenance"))

    with pytest.raises(ProviderError) as exc_info:
        await gateway.finish("1")

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_timeout_maps_to_unavailable():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    gateway = make_gateway(handler)

    with pytest.raises(ProviderUnavailable) as exc_info:
        await gateway.cancel("1")

    assert exc_info.value.status_code == 503
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_invalid_json_is_provider_error():
    gateway = make_gateway(lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(ProviderError) as exc_info:
        await gateway.get_balance()

    assert "Invalid JSON" in exc_info.value.vendor_message


@pytest.mark.asyncio
async def test_check_sms_messages_and_expiry():
    responses = {
        "/v1/user/check/1": {
            "id": 1,
            "status": "RECEIVED",
            "sms": [{"created_at": "2026-01-01T10:00:00Z", "date": "2026-01-01T10:00:01.123456789Z",
                     "sender": "Telegram", "text": "Telegram code 54321", "code": "54321"}],
        },
        "/v1/user/check/2": {"id": 2, "status": "TIMEOUT", "sms": []},
        "/v1/user/check/3": {"id": 3, "status": "PENDING", "sms": None},
    }
    gateway = make_gateway(lambda request: httpx.Response(200, json=responses[request.url.path]))

    received = await gateway.check_sms("1")
    expired = await gateway.check_sms("2")
    pending = await gateway.check_sms("3")

    assert received.provider_status == "RECEIVED"
    assert received.expired is False
    assert received.messages[0].text == "Telegram code 54321"
    assert received.messages[0].sender == "Telegram"
    assert received.messages[0].received_at.second == 1
    assert expired.expired is True
    assert pending.messages == []
    assert pending.expired is False


@pytest.mark.asyncio
async def test_balance_countries_and_products():
    responses = {
        "/v1/user/profile": {"id": 1, "email": "a@b.c", "balance": 100.5, "rating": 96},
        "/v1/guest/countries": {
            "russia": {"iso": {"ru": 1}, "prefix": {"+7": 1}, "text_en": "Russia"},
            "england": {"prefix": {"+44": 1}, "text_en": "England"},
        },
        "/v1/guest/products/russia/any": {
            "telegram": {"Category": "activation", "Qty": 120, "Price": 18},
            "broken": "n/a",
        },
    }
    gateway = make_gateway(lambda request: httpx.Response(200, json=responses[request.url.path]))

    balance = await gateway.get_balance()
    countries = await gateway.list_countries()
    products = await gateway.list_products("russia")

    assert balance.amount == Decimal("100.5")
    assert balance.currency == "RUB"
    assert {(c.code, c.name, c.prefix) for c in countries} == {("russia", "Russia", "+7"), ("england", "England", "+44")}
    assert len(products) == 1
    assert products[0].name == "telegram"
    assert products[0].count == 120
    assert products[0].price == Decimal("18")


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[1, 2, 3], "maintenance", 42])
@pytest.mark.parametrize("operation", [
    lambda gateway: gateway.check_sms("1"),
    lambda gateway: gateway.get_balance(),
    lambda gateway: gateway.list_countries(),
    lambda gateway: gateway.list_products("russia"),
], ids=["check_sms", "get_balance", "list_countries", "list_products"])
async def test_non_object_body_is_provider_error(operation, body):
    gateway = make_gateway(lambda request: httpx.Response(200, json=body))

    with pytest.raises(ProviderError) as exc_info:
        await operation(gateway)

    assert exc_info.value.status_code == 502
    assert "Expected a JSON object" in exc_info.value.vendor_message


@pytest.mark.asyncio
async def test_check_sms_rejects_malformed_sms_list():
    body = {"id": 1, "status": "RECEIVED", "sms": "code 12345"}
    gateway = make_gateway(lambda request: httpx.Response(200, json=body))

    with pytest.raises(ProviderError) as exc_info:
        await gateway.check_sms("1")

    assert "Malformed sms list" in exc_info.value.vendor_message


@pytest.mark.asyncio
async def test_check_sms_skips_non_object_messages():
    body = {"id": 1, "status": "RECEIVED", "sms": ["junk", {"text": "code 12345", "sender": "Telegram"}]}
    gateway = make_gateway(lambda request: httpx.Response(200, json=body))

    check = await gateway.check_sms("1")

    assert [m.text for m in check.messages] == ["code 12345"]


@pytest.mark.asyncio
async def test_open_circuit_fails_fast():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(502, text="bad gateway")

    breaker = CircuitBreaker(name="5sim", failure_threshold=2, reset_timeout=60, trip_on=(ProviderError, ProviderUnavailable))
    gateway = make_gateway(handler, breaker=breaker)

    for _ in range(2):
        with pytest.raises(ProviderError):
            await gateway.finish("1")

    with pytest.raises(ProviderUnavailable):
        await gateway.finish("1")
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_vendor_4xx_does_not_open_circuit():
    breaker = CircuitBreaker(name="5sim", failure_threshold=1, reset_timeout=60, trip_on=(ProviderError, ProviderUnavailable))
    gateway = make_gateway(lambda request: httpx.Response(400, text="not enough product"), breaker=breaker)

    for _ in range(3):
        with pytest.raises(ProviderError):
            await gateway.buy("russia", "telegram")

    assert breaker.state == "CLOSED"


def test_registry_resolves_only_integrated_providers():
    registry = build_default_registry()

    assert registry.get("5sim").name == "5sim"
    assert registry.is_integrated("5sim")
    assert not registry.is_integrated("smshub")
    with pytest.raises(UnsupportedProviderError):
        registry.get("sms-activate")
    with pytest.raises(UnsupportedProviderError):
        ProviderRegistry().get("5sim")

    described = {p["id"]: p for p in registry.describe()}
    assert described["5sim"]["integrated"] is True
    assert described["smshub"]["integrated"] is False


def test_parse_timestamp():
    assert parse_timestamp(None) is None
    assert parse_timestamp("garbage") is None
    parsed = parse_timestamp("2026-03-01T08:00:00.123456789Z")
    assert parsed.tzinfo is not None
    assert parsed.microsecond == 123456
