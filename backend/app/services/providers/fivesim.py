"""
5sim.net gateway.

API reference: https://5sim.net/docs
All user endpoints authenticate with ``Authorization: Bearer <api key>``.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from backend.app.core.exceptions import ProviderError
from backend.app.models.order_enums import ProviderName
from backend.app.services.providers.base import (
    Country,
    HttpProviderGateway,
    Product,
    ProviderBalance,
    PurchasedNumber,
    SmsCheck,
    SmsMessage,
    parse_timestamp,
    to_decimal,
)

# Provider-side statuses that close an activation without our finish/cancel
EXPIRED_STATUSES = {"TIMEOUT", "CANCELED", "BANNED"}

DEFAULT_EXPIRY = timedelta(minutes=20)


class FiveSimGateway(HttpProviderGateway):
    name = ProviderName.FIVESIM.value

    def __init__(self, *args, currency: str = "RUB", **kwargs):
        super().__init__(*args, **kwargs)
        self.currency = currency

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def buy(self, country: str, product: str, operator: str = "any") -> PurchasedNumber:
        data = await self.request_json(
            "GET", f"/user/buy/activation/{country}/{operator or 'any'}/{product}"
        )
        if not isinstance(data, dict) or "id" not in data or "phone" not in data:
            raise ProviderError(self.name, 200, f"Malformed buy response: {str(data)[:200]}")

        expires_at = parse_timestamp(data.get("expires"))
        if expires_at is None:
            expires_at = datetime.now(timezone.utc) + DEFAULT_EXPIRY

        return PurchasedNumber(
            provider_order_id=str(data["id"]),
            phone=str(data["phone"]),
            cost=to_decimal(data.get("price", data.get("cost", 0))),
            expires_at=expires_at,
            operator=data.get("operator"),
        )

    async def check_sms(self, provider_order_id: str) -> SmsCheck:
        data = await self._request_object("GET", f"/user/check/{provider_order_id}")
        provider_status = str(data.get("status") or "").upper() or None
        sms = data.get("sms") or []
        if not isinstance(sms, list):
            raise ProviderError(self.name, 200, f"Malformed sms list: {str(sms)[:200]}")

        messages = [
            SmsMessage(
                text=item.get("text") or "",
                sender=item.get("sender"),
                received_at=parse_timestamp(item.get("date") or item.get("created_at")),
            )
            for item in sms
            if isinstance(item, dict)
        ]
        return SmsCheck(
            messages=messages,
            provider_status=provider_status,
            expired=provider_status in EXPIRED_STATUSES,
        )

    async def finish(self, provider_order_id: str) -> None:
        await self.request("GET", f"/user/finish/{provider_order_id}")

    async def cancel(self, provider_order_id: str) -> None:
        await self.request("GET", f"/user/cancel/{provider_order_id}")

    async def get_balance(self) -> ProviderBalance:
        profile = await self._request_object("GET", "/user/profile")
        return ProviderBalance(amount=to_decimal(profile.get("balance", 0)), currency=self.currency)

    async def list_countries(self) -> List[Country]:
        data = await self._request_object("GET", "/guest/countries")
        countries = []
        for code, meta in data.items():
            meta = meta if isinstance(meta, dict) else {}
            prefixes = list((meta.get("prefix") or {}).keys())
            countries.append(
                Country(
                    code=code,
                    name=meta.get("text_en") or meta.get("title") or code,
                    prefix=prefixes[0] if prefixes else None,
                )
            )
        return countries

    async def list_products(self, country: str) -> List[Product]:
        data = await self._request_object("GET", f"/guest/products/{country}/any")
        products = []
        for name, meta in data.items():
            if not isinstance(meta, dict):
                continue
            try:
                count = int(meta.get("Qty", meta.get("count", 0)))
            except (TypeError, ValueError):
                count = 0
            products.append(
                Product(name=name, count=count, price=to_decimal(meta.get("Price", meta.get("price", 0))))
            )
        return products

    async def _request_object(self, method: str, path: str) -> Dict[str, Any]:
        data = await self.request_json(method, path)
        if not isinstance(data, dict):
            raise ProviderError(self.name, 200, f"Expected a JSON object: {str(data)[:200]}", {"path": path})
        return data
