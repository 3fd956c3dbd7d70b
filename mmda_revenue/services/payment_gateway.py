"""Shared machinery for the provider adapters.

Every provider is described by a frozen ProviderSpec (display name, REST
resource, native status vocabulary). Adapters are built per call from a spec
plus its credentials; they never raise on provider failures, they return a
failed ProviderResult instead.
"""
import hmac
import hashlib
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

from mmda_revenue.config import ProviderCredentials
from mmda_revenue.metrics import PROVIDER_CALL_ERRORS, PROVIDER_CALL_LATENCY
from mmda_revenue.schemas.payment import PaymentStatus, ProviderResult, money

logger = logging.getLogger(__name__)

CURRENCY = "GHS"
DEFAULT_TIMEOUT_SECONDS = 30.0


class PaymentError(Exception):
    pass


class PaymentValidationError(PaymentError):
    pass


class UnsupportedPaymentMethod(PaymentError):
    pass


class UnknownProvider(PaymentError):
    pass


def status_table(success_word: str) -> Dict[str, PaymentStatus]:
    """Native status table shared by every provider; only the success word differs."""
    return {
        "PENDING": PaymentStatus.PENDING,
        "PROCESSING": PaymentStatus.PROCESSING,
        success_word: PaymentStatus.SUCCESS,
        "FAILED": PaymentStatus.FAILED,
        "CANCELLED": PaymentStatus.FAILED,
    }


@dataclass(frozen=True)
class ProviderSpec:
    key: str
    name: str
    resource: str
    status_map: Mapping[str, PaymentStatus]
    # wallet number field name in the collection payload
    account_field: str = "phone"


def map_provider_status(spec: ProviderSpec, raw: Optional[str]) -> PaymentStatus:
    # unknown or missing states map to pending, never to failed
    if not raw:
        return PaymentStatus.PENDING
    return spec.status_map.get(str(raw).upper(), PaymentStatus.PENDING)


def text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def error_message(exc: Exception, fallback: str) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        message = json_body(exc.response).get("message")
        if message:
            return str(message)
    return fallback


class BaseAdapter:
    """HTTP plumbing common to mobile money and bank transfer adapters."""

    def __init__(
        self,
        spec: ProviderSpec,
        credentials: ProviderCredentials,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.spec = spec
        self.credentials = credentials
        self.timeout = timeout
        self._transport = transport

    @property
    def key(self) -> str:
        return self.spec.key

    @property
    def provider_name(self) -> str:
        return self.spec.name

    def map_status(self, raw: Optional[str]) -> PaymentStatus:
        return map_provider_status(self.spec, raw)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.credentials.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Authorization": f"Bearer {self.credentials.api_key}",
                "X-Merchant-ID": self.credentials.merchant_id,
            },
        )

    async def _call(self, operation: str, method: str, path: str, payload: Optional[Dict] = None) -> Dict[str, Any]:
        labels = {"provider": self.key, "operation": operation}
        try:
            with PROVIDER_CALL_LATENCY.labels(**labels).time():
                async with self._client() as client:
                    response = await client.request(method, path, json=payload)
                    response.raise_for_status()
        except Exception:
            PROVIDER_CALL_ERRORS.labels(**labels).inc()
            raise
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"{self.provider_name} returned a non-object body")
        return data

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("initiate", "POST", f"/{self.spec.resource}", payload)

    async def _get(self, transaction_id: str) -> Dict[str, Any]:
        return await self._call("status", "GET", f"/{self.spec.resource}/{transaction_id}")

    def _status_result(self, transaction_id: str, data: Dict[str, Any], **extra) -> ProviderResult:
        status = self.map_status(data.get("status"))
        amount = money(data.get("amount"))
        fee = money(data.get("fee"))
        return ProviderResult(
            success=status == PaymentStatus.SUCCESS,
            transaction_id=text(data.get("transaction_id")) or transaction_id,
            reference=text(data.get("reference")) or transaction_id,
            status=status,
            message=text(data.get("message")) or "Status check completed",
            provider=self.provider_name,
            amount=amount,
            fee=fee,
            total_amount=amount + fee,
            **extra,
        )

    def _failed_status(self, transaction_id: str) -> ProviderResult:
        return ProviderResult(
            success=False,
            reference=transaction_id,
            status=PaymentStatus.FAILED,
            message="Status check failed",
            provider=self.provider_name,
            amount=Decimal("0.00"),
            fee=Decimal("0.00"),
            total_amount=Decimal("0.00"),
        )

    def get_secret(self) -> str:
        return self.credentials.secret_key

    def verify_signature(self, headers: Mapping[str, str], body: bytes) -> bool:
        # HMAC-SHA256 over the raw body, keyed with the provider secret
        secret = self.get_secret()
        if not secret:
            return False
        sig_header = headers.get("x-signature") or ""
        computed = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(computed, sig_header)
