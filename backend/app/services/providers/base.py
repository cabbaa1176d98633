"""
Provider Gateway contract.

Every upstream OTP vendor is wrapped in a ``ProviderGateway`` returning the
same result shapes, so the order coordinator never branches on vendor names.
Gateways are stateless: they hold an HTTP client and credentials, never
order state.
"""

import abc
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from backend.app.core.exceptions import ProviderError, ProviderUnavailable
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger("otp_numbers.providers")


@dataclass
class PurchasedNumber:
    provider_order_id: str
    phone: str
    cost: Decimal
    expires_at: Optional[datetime] = None
    operator: Optional[str] = None


@dataclass
class SmsMessage:
    text: str
    sender: Optional[str] = None
    received_at: Optional[datetime] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "sender": self.sender,
            "received_at": self.received_at.isoformat() if self.received_at else None,
        }


@dataclass
class SmsCheck:
    messages: List[SmsMessage] = field(default_factory=list)
    provider_status: Optional[str] = None
    expired: bool = False

    @property
    def has_code(self) -> bool:
        return bool(self.messages)


@dataclass
class ProviderBalance:
    amount: Decimal
    currency: str


@dataclass
class Country:
    code: str
    name: str
    prefix: Optional[str] = None


@dataclass
class Product:
    name: str
    count: int
    price: Decimal


_FRACTION = re.compile(r"\.(\d{6})\d+")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse vendor ISO-8601 timestamps.

    Vendors send nanosecond precision and a ``Z`` suffix, neither of which
    ``datetime.fromisoformat`` accepts on every supported interpreter.
    """
    if not value:
        return None
    text = _FRACTION.sub(r".\1", value.strip()).replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


class ProviderGateway(abc.ABC):
    """Uniform interface over an upstream OTP vendor."""

    name: str = ""

    @abc.abstractmethod
    async def buy(self, country: str, product: str, operator: str = "any") -> PurchasedNumber:
        ...

    @abc.abstractmethod
    async def check_sms(self, provider_order_id: str) -> SmsCheck:
        ...

    @abc.abstractmethod
    async def finish(self, provider_order_id: str) -> None:
        ...

    @abc.abstractmethod
    async def cancel(self, provider_order_id: str) -> None:
        ...

    @abc.abstractmethod
    async def get_balance(self) -> ProviderBalance:
        ...

    @abc.abstractmethod
    async def list_countries(self) -> List[Country]:
        ...

    @abc.abstractmethod
    async def list_products(self, country: str) -> List[Product]:
        ...

    async def aclose(self) -> None:
        return None


class HttpProviderGateway(ProviderGateway):
    """
    Base class for vendors reached over HTTP.

    Maps transport failures to ``ProviderUnavailable`` and non-2xx responses
    to ``ProviderError``. Every call goes through a per-gateway circuit
    breaker that trips on network failures and vendor 5xx only.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.breaker = breaker or CircuitBreaker(
            name=self.name,
            trip_on=(ProviderUnavailable, ProviderError)
        )

    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            raise ProviderUnavailable(self.name, f"timed out after {self.timeout}s", {"path": path})
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(self.name, f"network error: {exc}", {"path": path})

        if response.status_code >= 500:
            raise ProviderError(self.name, response.status_code, self._vendor_message(response), {"path": path})
        return response

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.breaker.call(self._send, method, path, **kwargs)
        except CircuitOpenError as exc:
            raise ProviderUnavailable(self.name, str(exc), {"path": path})

        if not response.is_success:
            logger.warning(
                "Provider %s answered %s on %s: %s",
                self.name, response.status_code, path, self._vendor_message(response)
            )
            raise ProviderError(self.name, response.status_code, self._vendor_message(response), {"path": path})
        return response

    async def request_json(self, method: str, path: str, **kwargs) -> Any:
        response = await self.request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError:
            raise ProviderError(
                self.name,
                response.status_code,
                f"Invalid JSON response (preview): {response.text[:200]}",
                {"path": path}
            )

    @staticmethod
    def _vendor_message(response: httpx.Response) -> str:
        text = (response.text or "").strip()
        return text[:200] or response.reason_phrase
