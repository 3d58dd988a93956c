"""
Outbound webhook clients for content generation and publishing.

Upstream payloads use several names for the same field; they are normalized
here into one shape so nothing past this module sees the variants.
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from voicepost.core.config import Settings, settings

logger = logging.getLogger("voicepost.webhooks")

MAX_AUDIO_BYTES = 10 * 1024 * 1024
MIN_GENERATION_TIMEOUT_SECONDS = 180
MAX_GENERATION_TIMEOUT_SECONDS = 900
SIGNATURE_HEADER = "X-VoicePost-Signature"


class WebhookError(Exception):
    """Webhook unreachable, timed out, non-2xx or returned an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class PublishRequest:
    content: str
    image_url: Optional[str] = None


@dataclass(frozen=True)
class PublishResult:
    post_url: Optional[str]
    linkedin_post_id: Optional[str]


def _first(payload: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def normalize_publish_request(payload: Dict[str, Any]) -> PublishRequest:
    """Accept content/postDraft and imageUrl/imageData."""
    content = _first(payload, "content", "postDraft")
    image = _first(payload, "imageUrl", "imageData")
    return PublishRequest(content=str(content) if content is not None else "", image_url=image)


def normalize_publish_response(body: Any) -> PublishResult:
    if not isinstance(body, dict):
        return PublishResult(post_url=None, linkedin_post_id=None)
    post_url = _first(body, "postUrl", "linkedinPostUrl", "url")
    post_id = _first(body, "linkedinPostId", "id")
    return PublishResult(
        post_url=str(post_url) if post_url is not None else None,
        linkedin_post_id=str(post_id) if post_id is not None else None,
    )


def normalize_generation_response(body: Any) -> Optional[str]:
    """Generated text from {content}, {output} or a bare string."""
    if isinstance(body, str):
        return body.strip() or None
    if isinstance(body, dict):
        value = _first(body, "content", "output")
        if isinstance(value, str) and value.strip():
            return value
    return None


def decode_audio_size(audio_base64: str) -> int:
    """Validate base64 audio and return its decoded size in bytes."""
    try:
        return len(base64.b64decode(audio_base64, validate=True))
    except (binascii.Error, ValueError):
        raise ValueError("Audio must be base64 encoded")


def generation_timeout_seconds(audio_bytes: int) -> float:
    """
    Bounded timeout for a generation call, assuming roughly 1 KB of audio per
    second: a tenth of the duration for transcription plus a minute of
    writing, doubled.
    """
    duration_seconds = audio_bytes / 1024
    estimate = (duration_seconds * 0.1 + 60) * 2
    return float(max(MIN_GENERATION_TIMEOUT_SECONDS, min(MAX_GENERATION_TIMEOUT_SECONDS, estimate)))


def sign_payload(secret: str, timestamp: int, body_bytes: bytes) -> str:
    """HMAC-SHA256 over timestamp + raw body."""
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + body_bytes, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _post_json(
    url: str,
    payload: Dict[str, Any],
    timeout: float,
    secret: Optional[str],
    transport: Optional[httpx.BaseTransport],
) -> Any:
    body_bytes = json.dumps(payload, separators=(",", ":")).encode()
    headers = {"Content-Type": "application/json"}
    if secret:
        headers[SIGNATURE_HEADER] = sign_payload(secret, int(time.time()), body_bytes)

    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.post(url, content=body_bytes, headers=headers)
    except httpx.TimeoutException:
        raise WebhookError(f"Webhook timed out after {int(timeout)} seconds")
    except httpx.HTTPError as e:
        raise WebhookError(f"Webhook unreachable: {e.__class__.__name__}")

    if response.status_code >= 400:
        logger.warning("webhook.failed", extra={"url_host": response.request.url.host, "status": response.status_code})
        raise WebhookError(f"Webhook returned {response.status_code}", status_code=response.status_code)

    text = response.text
    if not text.strip():
        return None
    try:
        return response.json()
    except ValueError:
        return text


class PublishWebhookClient:
    """Sends approved posts to the publishing webhook."""

    def __init__(
        self,
        url: str,
        secret: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self._secret = secret
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings_obj: Optional[Settings] = None) -> "PublishWebhookClient":
        cfg = settings_obj or settings
        if not cfg.PUBLISH_WEBHOOK_URL:
            raise WebhookError("Publish webhook is not configured")
        return cls(
            url=cfg.PUBLISH_WEBHOOK_URL,
            secret=cfg.PUBLISH_WEBHOOK_SECRET,
            timeout=cfg.PUBLISH_TIMEOUT_SECONDS,
        )

    def publish(self, user_id: str, post_id: str, content: str, image_url: Optional[str] = None) -> PublishResult:
        payload: Dict[str, Any] = {"userId": user_id, "postId": post_id, "content": content}
        if image_url:
            payload["imageUrl"] = image_url
        body = _post_json(self.url, payload, self.timeout, self._secret, self._transport)
        if isinstance(body, dict) and body.get("success") is False:
            raise WebhookError(str(body.get("error") or "Publish webhook reported failure"))
        return normalize_publish_response(body)


class GenerationWebhookClient:
    """Sends recorded audio to the content-generation webhook."""

    def __init__(self, url: str, secret: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None):
        self.url = url
        self._secret = secret
        self._transport = transport

    @classmethod
    def from_settings(cls, settings_obj: Optional[Settings] = None) -> "GenerationWebhookClient":
        cfg = settings_obj or settings
        if not cfg.GENERATE_WEBHOOK_URL:
            raise WebhookError("Generation webhook is not configured")
        return cls(url=cfg.GENERATE_WEBHOOK_URL, secret=cfg.PUBLISH_WEBHOOK_SECRET)

    def generate(
        self,
        post_id: str,
        audio_base64: str,
        audio_file_name: str,
        language: str,
        timeout: float,
    ) -> str:
        payload = {
            "postId": post_id,
            "audioFile": audio_base64,
            "audioFileName": audio_file_name,
            "language": language,
        }
        body = _post_json(self.url, payload, timeout, self._secret, self._transport)
        content = normalize_generation_response(body)
        if content is None:
            raise WebhookError("Content generation service returned no content")
        return content
