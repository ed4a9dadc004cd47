"""
OxaPay client wrapper using httpx sync client.
Docs: https://docs.oxapay.com/

Two flows:
- invoice: hosted payment page, we only keep trackId + payLink;
- white-label: deposit address / QR shown on our own page.
Provider status vocabulary is translated by map_payment_status().
"""
import logging
import time
from typing import Any

import httpx
import pybreaker
from pydantic import BaseModel

from app.core.config import settings
from app.models.payment import PaymentStatus
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import oxapay_request_duration_seconds, oxapay_requests_total


logger = logging.getLogger(__name__)

RESULT_OK = 100          # /merchants/* success code
WHITE_LABEL_OK = 200     # /v1/payment/* success status

SUPPORTED_CURRENCIES = (
    "USD", "EUR", "GBP", "CAD", "AUD",
    "BTC", "ETH", "USDT", "USDC", "BNB",
    "LTC", "TRX", "DOGE", "BCH", "XRP",
)

DEFAULT_NETWORKS = {
    "USDT": "tron",  # TRC20
    "BTC": "btc",
    "ETH": "eth",
    "LTC": "ltc",
    "TRX": "tron",
}

FALLBACK_CURRENCIES = [
    {"symbol": "USDT", "name": "Tether", "networks": ["Ethereum", "Tron", "BSC"]},
    {"symbol": "BTC", "name": "Bitcoin", "networks": ["Bitcoin"]},
    {"symbol": "ETH", "name": "Ethereum", "networks": ["Ethereum"]},
    {"symbol": "LTC", "name": "Litecoin", "networks": ["Litecoin"]},
    {"symbol": "TRX", "name": "TRON", "networks": ["Tron"]},
]

PAID = "Paid"

_STATUS_MAP = {
    PAID: PaymentStatus.COMPLETED,
    "Waiting": PaymentStatus.PENDING,
    "Confirming": PaymentStatus.PENDING,
    "Expired": PaymentStatus.FAILED,
    "Failed": PaymentStatus.FAILED,
}

FAILURE_STATUSES = frozenset({"Expired", "Failed"})


def map_payment_status(raw_status: str | None) -> PaymentStatus:
    """Provider status -> PaymentStatus. Unknown values stay PENDING so an in-flight payment is never failed early."""
    return _STATUS_MAP.get(raw_status or "", PaymentStatus.PENDING)


def default_network(pay_currency: str) -> str:
    return DEFAULT_NETWORKS.get(pay_currency.upper(), "tron")


def format_amount(amount: float, currency: str) -> str:
    if currency.upper() in ("BTC", "ETH", "LTC"):
        return f"{amount:.8f} {currency}"
    return f"{amount:.2f} {currency}"


class OxaPayError(Exception):
    """Provider rejected the request or answered with something unusable."""


class Invoice(BaseModel):
    track_id: str
    pay_link: str

    model_config = {"frozen": True}


class WhiteLabelPayment(BaseModel):
    track_id: str
    address: str
    pay_amount: float
    pay_currency: str
    network: str | None = None
    qr_code: str | None = None
    expired_at: int | None = None  # unix timestamp
    rate: float | None = None
    amount: float | None = None
    currency: str | None = None

    model_config = {"frozen": True}


class OxaPayClient:
    """
    Sync OxaPay client. Runs inside FastAPI's threadpool (sync routes).
    Transport failures count towards the "oxapay" circuit breaker, provider-side
    rejections (OxaPayError) do not.
    """

    def __init__(
        self,
        http_client: httpx.Client | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self._base_url = settings.oxapay_api_url.rstrip("/")
        self._api_key = settings.oxapay_api_key
        self._merchant_id = settings.oxapay_merchant_id
        self._client = http_client
        self._breaker = breaker
        if not self._api_key or not self._merchant_id:
            logger.warning("oxapay_credentials_not_configured")

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=settings.oxapay_timeout)
        return self._client

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_circuit_breaker("oxapay", exclude=[OxaPayError])
        return self._breaker

    def _record_request(self, endpoint: str, status: str, duration: float) -> None:
        oxapay_requests_total.labels(endpoint=endpoint, status=status).inc()
        oxapay_request_duration_seconds.labels(endpoint=endpoint).observe(duration)

    def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[httpx.Response, dict[str, Any]]:
        start = time.time()
        try:
            resp = self.breaker.call(
                self.client.request,
                method,
                f"{self._base_url}{path}",
                json=body,
                headers={"Content-Type": "application/json", **(headers or {})},
            )
            try:
                data = resp.json()
            except ValueError as e:
                raise OxaPayError(f"Non-JSON response from OxaPay ({resp.status_code})") from e
            if not isinstance(data, dict):
                raise OxaPayError("Unexpected OxaPay response shape")
            self._record_request(path, str(resp.status_code), time.time() - start)
            return resp, data
        except Exception as e:
            self._record_request(path, "error", time.time() - start)
            logger.warning("oxapay_request_failed", extra={"endpoint": path, "error": str(e)})
            raise

    def create_invoice(
        self,
        amount: float,
        currency: str,
        order_id: str,
        callback_url: str | None = None,
        return_url: str | None = None,
        description: str | None = None,
        email: str | None = None,
        under_paid_cover: float = 0,
        fee_paid_by_payer: int = 0,
    ) -> Invoice:
        """Create hosted-page invoice. Raises OxaPayError unless result == 100."""
        resp, data = self._request(
            "POST",
            "/merchants/request",
            {
                "merchant": self._merchant_id,
                "amount": amount,
                "currency": currency,
                "lifeTime": settings.oxapay_invoice_lifetime_minutes,
                "callbackUrl": callback_url,
                "returnUrl": return_url,
                "description": description,
                "orderId": order_id,
                "email": email,
                "underPaidCover": under_paid_cover or 0,
                "feePaidByPayer": fee_paid_by_payer or 0,
            },
        )
        if not resp.is_success or data.get("result") != RESULT_OK:
            raise OxaPayError(data.get("message") or "Failed to create invoice")
        if data.get("trackId") is None or not data.get("payLink"):
            raise OxaPayError("Invoice response without trackId/payLink")
        return Invoice(track_id=str(data["trackId"]), pay_link=data["payLink"])

    def create_white_label_payment(
        self,
        amount: float,
        currency: str,
        pay_currency: str,
        order_id: str,
        network: str | None = None,
        callback_url: str | None = None,
        description: str | None = None,
        email: str | None = None,
        under_paid_cover: float = 0,
        fee_paid_by_payer: int = 0,
        lifetime: int | None = None,
    ) -> WhiteLabelPayment:
        """Create white-label payment (address + QR on our page). Raises OxaPayError unless status == 200."""
        resp, body = self._request(
            "POST",
            "/v1/payment/white-label",
            {
                "amount": amount,
                "currency": currency,
                "pay_currency": pay_currency,
                "network": network,
                "callback_url": callback_url,
                "description": description,
                "order_id": order_id,
                "email": email,
                "under_paid_coverage": under_paid_cover or 0,
                "fee_paid_by_payer": fee_paid_by_payer or 0,
                "lifetime": lifetime or settings.oxapay_white_label_lifetime_minutes,
            },
            headers={"merchant_api_key": self._api_key},
        )
        if not resp.is_success or body.get("status") != WHITE_LABEL_OK:
            raise OxaPayError(body.get("message") or "Failed to create white-label payment")
        data = body.get("data") or {}
        if data.get("track_id") is None or not data.get("address"):
            raise OxaPayError("White-label response without track_id/address")
        return WhiteLabelPayment(
            track_id=str(data["track_id"]),
            address=data["address"],
            pay_amount=data.get("pay_amount") or 0,
            pay_currency=data.get("pay_currency") or pay_currency,
            network=data.get("network") or network,
            qr_code=data.get("qr_code"),
            expired_at=data.get("expired_at"),
            rate=data.get("rate"),
            amount=data.get("amount"),
            currency=data.get("currency"),
        )

    def get_payment_info(self, track_id: str) -> dict[str, Any]:
        """Status inquiry by trackId."""
        resp, data = self._request(
            "POST",
            "/merchants/inquiry",
            {"merchant": self._merchant_id, "trackId": track_id},
        )
        if not resp.is_success or data.get("result") != RESULT_OK:
            raise OxaPayError(data.get("message") or "Failed to get payment info")
        return data

    def list_currencies(self) -> list[dict[str, Any]]:
        """[{symbol, name, networks}] as advertised by OxaPay."""
        resp, body = self._request("GET", "/v1/common/currencies")
        if not resp.is_success or not isinstance(body.get("data"), dict):
            raise OxaPayError("Invalid currencies response")
        currencies = []
        for symbol, info in body["data"].items():
            info = info if isinstance(info, dict) else {}
            raw_networks = info.get("networks")
            if isinstance(raw_networks, list):
                networks = [n.get("network", n) if isinstance(n, dict) else n for n in raw_networks]
            elif isinstance(raw_networks, dict):
                networks = list(raw_networks.keys())
            else:
                networks = []
            currencies.append({"symbol": symbol, "name": info.get("name") or symbol, "networks": networks})
        return currencies

    def close(self) -> None:
        """Close httpx client."""
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Failed to close client", extra={"error": str(e)})
            finally:
                self._client = None
