"""Razorpay adapter and webhook clients against httpx.MockTransport."""
import base64
import hashlib
import hmac
import json

import httpx
import pytest

from voicepost.features.billing.provider import PaymentGatewayError
from voicepost.features.billing.razorpay_provider import RazorpayGateway, compute_signature
from voicepost.features.posts.webhooks import (
    SIGNATURE_HEADER,
    GenerationWebhookClient,
    PublishWebhookClient,
    WebhookError,
    normalize_generation_response,
    normalize_publish_request,
    normalize_publish_response,
)


def _gateway(handler):
    return RazorpayGateway("rzp_test_id", "rzp_secret", api_base="https://gw.test/v1", transport=httpx.MockTransport(handler))


def test_razorpay_create_order_uses_basic_auth():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["authorization"]
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_abc", "amount": 99900, "currency": "INR", "receipt": "r1"})

    order = _gateway(handler).create_order(99900, "INR", "r1", notes={"plan_id": "solo-global"})

    assert order.order_id == "order_abc"
    assert order.amount == 99900
    assert seen["url"] == "https://gw.test/v1/orders"
    assert seen["auth"] == "Basic " + base64.b64encode(b"rzp_test_id:rzp_secret").decode()
    assert seen["body"]["notes"] == {"plan_id": "solo-global"}


def test_razorpay_error_response_raises():
    def handler(request):
        return httpx.Response(400, json={"error": {"description": "amount too small"}})

    with pytest.raises(PaymentGatewayError) as exc:
        _gateway(handler).create_order(1, "INR", "r1")
    assert exc.value.status_code == 400
    assert "amount too small" in str(exc.value)


def test_razorpay_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PaymentGatewayError):
        _gateway(handler).create_order(100, "INR", "r1")


def test_razorpay_requires_credentials():
    with pytest.raises(PaymentGatewayError):
        RazorpayGateway("", "")


def test_razorpay_signature_verification():
    gateway = RazorpayGateway("rzp_test_id", "rzp_secret")
    expected = hmac.new(b"rzp_secret", b"order_1|pay_1", hashlib.sha256).hexdigest()

    assert compute_signature("rzp_secret", "order_1", "pay_1") == expected
    assert gateway.verify_signature("order_1", "pay_1", expected) is True
    assert gateway.verify_signature("order_1", "pay_2", expected) is False
    assert gateway.verify_signature("order_1", "pay_1", "") is False
    assert gateway.verify_signature("order_1", "pay_1", "é" * 64) is False


def test_publish_client_signs_and_normalizes():
    seen = {}

    def handler(request):
        seen["body"] = request.content
        seen["signature"] = request.headers[SIGNATURE_HEADER]
        return httpx.Response(200, json={"linkedinPostUrl": "https://li/1", "id": "urn:li:share:1"})

    client = PublishWebhookClient("https://hooks.test/publish", secret="whsec", transport=httpx.MockTransport(handler))
    result = client.publish("user_a", "post_1", "Hello", image_url="https://img/1.png")

    assert result.post_url == "https://li/1"
    assert result.linkedin_post_id == "urn:li:share:1"
    assert json.loads(seen["body"]) == {
        "userId": "user_a",
        "postId": "post_1",
        "content": "Hello",
        "imageUrl": "https://img/1.png",
    }
    ts_part, v1_part = seen["signature"].split(",")
    timestamp = ts_part.split("=", 1)[1]
    digest = hmac.new(b"whsec", f"{timestamp}.".encode() + seen["body"], hashlib.sha256).hexdigest()
    assert v1_part == f"v1={digest}"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"success": False, "error": "token expired"}),
    ],
)
def test_publish_client_failures_raise(response):
    client = PublishWebhookClient("https://hooks.test/publish", transport=httpx.MockTransport(lambda r: response))
    with pytest.raises(WebhookError):
        client.publish("user_a", "post_1", "Hello")


def test_publish_client_timeout_raises():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = PublishWebhookClient("https://hooks.test/publish", timeout=1, transport=httpx.MockTransport(handler))
    with pytest.raises(WebhookError, match="timed out"):
        client.publish("user_a", "post_1", "Hello")


@pytest.mark.parametrize(
    "body, expected",
    [
        ({"content": "from content"}, "from content"),
        ({"output": "from output"}, "from output"),
        ("bare string", "bare string"),
        ({"content": ""}, None),
        ({"something": "else"}, None),
        (None, None),
    ],
)
def test_generation_response_normalization(body, expected):
    assert normalize_generation_response(body) == expected


def test_generation_client_without_content_raises():
    client = GenerationWebhookClient(
        "https://hooks.test/generate", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))
    )
    with pytest.raises(WebhookError):
        client.generate("post_1", "AAAA", "a.wav", "en-US", timeout=180)


def test_publish_payload_aliases():
    assert normalize_publish_request({"postDraft": "draft", "imageData": "data:x"}).content == "draft"
    assert normalize_publish_request({"postDraft": "draft", "imageData": "data:x"}).image_url == "data:x"
    assert normalize_publish_request({"content": "c", "postDraft": "d"}).content == "c"
    assert normalize_publish_request({}).content == ""


def test_publish_response_aliases():
    assert normalize_publish_response({"postUrl": "u1", "linkedinPostId": "p1"}).post_url == "u1"
    assert normalize_publish_response({"url": "u3", "id": "p3"}).linkedin_post_id == "p3"
    assert normalize_publish_response("ok").post_url is None
