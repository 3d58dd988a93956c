"""Fake outbound clients for tests."""
from typing import Dict, List, Optional

from voicepost.features.billing.provider import GatewayOrder, PaymentGatewayError
from voicepost.features.billing.razorpay_provider import RazorpayGateway, compute_signature
from voicepost.features.posts.webhooks import PublishResult

GATEWAY_KEY_SECRET = "test_key_secret"


class FakeGateway:
    """In-memory gateway that signs like Razorpay does."""

    public_key = "rzp_test_key"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.orders: List[Dict] = []

    def create_order(self, amount, currency, receipt, notes=None):
        if self.fail:
            raise PaymentGatewayError("gateway down", status_code=502)
        order = GatewayOrder(
            order_id=f"order_test_{len(self.orders) + 1}",
            amount=amount,
            currency=currency,
            receipt=receipt,
        )
        self.orders.append({"order": order, "notes": notes})
        return order

    def verify_signature(self, order_id, payment_id, signature):
        gateway = RazorpayGateway(self.public_key, GATEWAY_KEY_SECRET)
        return gateway.verify_signature(order_id, payment_id, signature)

    @staticmethod
    def sign(order_id: str, payment_id: str) -> str:
        return compute_signature(GATEWAY_KEY_SECRET, order_id, payment_id)


class FakePublishClient:
    """Records publish calls; optionally fails like a broken webhook."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[Dict] = []

    def publish(self, user_id, post_id, content, image_url=None):
        self.calls.append({"user_id": user_id, "post_id": post_id, "content": content, "image_url": image_url})
        if self.error is not None:
            raise self.error
        return PublishResult(
            post_url=f"https://www.linkedin.com/feed/update/urn:li:share:{post_id}",
            linkedin_post_id=f"urn:li:share:{post_id}",
        )


class FakeGenerationClient:
    def __init__(self, content: Optional[str] = "Generated post", error: Optional[Exception] = None, on_call=None):
        self.content = content
        self.error = error
        self.on_call = on_call
        self.calls: List[Dict] = []

    def generate(self, post_id, audio_base64, audio_file_name, language, timeout):
        self.calls.append({"post_id": post_id, "audio_file_name": audio_file_name, "language": language, "timeout": timeout})
        if self.on_call is not None:
            self.on_call(post_id)
        if self.error is not None:
            raise self.error
        return self.content


