"""Razorpay payment lookup client."""

from time import perf_counter

import httpx

from welfarehub.common.config import settings
from welfarehub.common.errors import ExternalServiceError
from welfarehub.common.logging import logger
from welfarehub.common.metrics import gateway_request_seconds

# Razorpay payment status -> (donation status, verified)
GATEWAY_STATUS_MAP: dict[str, tuple[str, bool]] = {
    "captured": ("completed", True),
    "failed": ("failed", False),
    "cancelled": ("cancelled", False),
    "created": ("pending", False),
    "authorized": ("pending", False),
}


class RazorpayGateway:
    """Fetches payment state with a bounded timeout and classified failures."""

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.key_id = settings.razorpay_key_id if key_id is None else key_id
        self.key_secret = settings.razorpay_key_secret if key_secret is None else key_secret
        self.base_url = (base_url or settings.razorpay_base_url).rstrip("/")
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self.transport,
        )

    def fetch_payment(self, payment_id: str) -> dict:
        """Return the gateway's payment document for `payment_id`."""

        if not self.key_id or not self.key_secret:
            raise ExternalServiceError("NOT_CONFIGURED", "Payment gateway credentials are not configured")
        start = perf_counter()
        outcome = "ok"
        try:
            with self._client() as client:
                resp = client.get(f"/v1/payments/{payment_id}")
            if resp.status_code == 404:
                outcome = "not_found"
                raise ExternalServiceError("NOT_FOUND", f"Payment {payment_id} not found at gateway")
            if resp.status_code == 429:
                outcome = "rate_limited"
                raise ExternalServiceError("RATE_LIMITED", "Payment gateway rate limit reached")
            if resp.status_code >= 400:
                outcome = "error"
                raise ExternalServiceError("UPSTREAM_ERROR", f"Payment gateway returned HTTP {resp.status_code}")
            try:
                return resp.json()
            except ValueError as exc:
                outcome = "error"
                raise ExternalServiceError("UPSTREAM_ERROR", "Payment gateway returned an unreadable body") from exc
        except httpx.TimeoutException as exc:
            outcome = "timeout"
            raise ExternalServiceError("TIMEOUT", "Payment gateway timed out") from exc
        except httpx.HTTPError as exc:
            outcome = "unavailable"
            logger.warning("gateway_unavailable payment_id=%s error=%s", payment_id, exc)
            raise ExternalServiceError("UNAVAILABLE", "Payment gateway unavailable") from exc
        finally:
            gateway_request_seconds.labels(service=settings.service_name, outcome=outcome).observe(
                perf_counter() - start
            )
