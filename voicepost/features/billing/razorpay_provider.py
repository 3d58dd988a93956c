"""
Razorpay gateway implementation.

Orders are created over the REST API with HTTP Basic auth (key id, key
secret). Checkout results are verified locally: the signature is the hex
HMAC-SHA256 of "<order_id>|<payment_id>" keyed by the key secret.
"""
import hashlib
import hmac
import logging
from typing import Dict, Optional

import httpx

from voicepost.core.config import Settings
from voicepost.features.billing.provider import GatewayOrder, PaymentGatewayError

logger = logging.getLogger("voicepost.billing")


def compute_signature(key_secret: str, order_id: str, payment_id: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(key_secret.encode(), message, hashlib.sha256).hexdigest()


class RazorpayGateway:
    """Razorpay implementation of PaymentGateway protocol."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_base: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not key_id or not key_secret:
            raise PaymentGatewayError("Razorpay credentials not configured")
        self.public_key = key_id
        self._key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings_obj: Settings) -> "RazorpayGateway":
        return cls(
            key_id=settings_obj.RAZORPAY_KEY_ID or "",
            key_secret=settings_obj.RAZORPAY_KEY_SECRET or "",
            api_base=settings_obj.RAZORPAY_API_BASE,
            timeout=settings_obj.GATEWAY_TIMEOUT_SECONDS,
        )

    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        payload = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    f"{self.api_base}/orders",
                    json=payload,
                    auth=(self.public_key, self._key_secret),
                )
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"Payment gateway unreachable: {e.__class__.__name__}")

        if response.status_code >= 400:
            description = None
            try:
                description = response.json().get("error", {}).get("description")
            except ValueError:
                pass
            logger.warning(
                "gateway.order_failed",
                extra={"status": response.status_code, "receipt": receipt, "error_message": description},
            )
            raise PaymentGatewayError(
                description or f"Payment gateway returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
            return GatewayOrder(
                order_id=body["id"],
                amount=int(body.get("amount", amount)),
                currency=body.get("currency", currency),
                receipt=body.get("receipt", receipt),
                status=body.get("status", "created"),
                raw=body,
            )
        except (ValueError, KeyError, TypeError):
            raise PaymentGatewayError("Payment gateway returned an unreadable order")

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = compute_signature(self._key_secret, order_id, payment_id)
        return hmac.compare_digest(expected.encode(), (signature or "").encode())
