"""
Gateway client (Razorpay-compatible REST API).

Built once at startup from settings and injected into the order and
verification services; tests substitute an in-process fake.
"""
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError
from urllib.request import Request as UrlRequest, urlopen

from app.core.config import Settings
from app.core.errors import GatewayError

log = logging.getLogger(__name__)

CAPTURED_STATUSES = ("captured", "authorized")


@dataclass(frozen=True)
class RemoteOrder:
    id: str
    amount: int  # paise
    currency: str
    receipt: str
    status: str = "created"


@dataclass(frozen=True)
class RemotePayment:
    id: str
    order_id: str | None
    amount: int  # paise
    currency: str
    status: str

    @property
    def is_captured(self) -> bool:
        return self.status in CAPTURED_STATUSES


class GatewayClient:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayClient":
        return cls(
            key_id=settings.gateway_key_id,
            key_secret=settings.gateway_key_secret,
            base_url=settings.gateway_base_url,
            timeout=settings.gateway_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _auth_header(self) -> str:
        token = base64.b64encode(f"{self.key_id}:{self.key_secret}".encode()).decode()
        return f"Basic {token}"

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.enabled:
            raise GatewayError("Payment gateway is not configured. Please contact admin.", status_code=503)
        headers = {"Authorization": self._auth_header(), "Accept": "application/json"}
        data = None
        if body is not None:
            data = json.dumps(body).encode()
            headers["Content-Type"] = "application/json"
        req = UrlRequest(f"{self.base_url}/{path.lstrip('/')}", data=data, method=method, headers=headers)
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode())
        except HTTPError as e:
            detail = e.read().decode(errors="replace")[:300]
            log.error("Gateway rejected request: path=%s status=%s body=%s", path, e.code, detail)
            raise GatewayError() from e
        except (OSError, ValueError) as e:
            log.error("Gateway unreachable: path=%s error=%s", path, e)
            raise GatewayError() from e
        if not isinstance(payload, dict):
            raise GatewayError()
        return payload

    def create_remote_order(self, amount: int, currency: str, receipt: str, metadata: dict[str, Any]) -> RemoteOrder:
        data = self._request(
            "POST",
            "orders",
            {"amount": amount, "currency": currency, "receipt": receipt, "notes": metadata},
        )
        try:
            return RemoteOrder(
                id=str(data["id"]),
                amount=int(data.get("amount", amount)),
                currency=str(data.get("currency", currency)),
                receipt=str(data.get("receipt", receipt)),
                status=str(data.get("status", "created")),
            )
        except (KeyError, TypeError, ValueError) as e:
            log.error("Gateway order response malformed: %s", e)
            raise GatewayError() from e

    def fetch_remote_payment(self, payment_id: str) -> RemotePayment:
        data = self._request("GET", f"payments/{payment_id}")
        try:
            return RemotePayment(
                id=str(data["id"]),
                order_id=data.get("order_id"),
                amount=int(data["amount"]),
                currency=str(data.get("currency", "")),
                status=str(data.get("status", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            log.error("Gateway payment response malformed: %s", e)
            raise GatewayError() from e
