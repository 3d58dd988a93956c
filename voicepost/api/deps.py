"""Injectable outbound clients. Tests replace these via app.dependency_overrides."""
from typing import Callable

from voicepost.core.config import settings
from voicepost.core.errors import ExternalServiceError
from voicepost.features.billing.provider import PaymentGateway
from voicepost.features.billing.service import get_gateway
from voicepost.features.posts.webhooks import GenerationWebhookClient, PublishWebhookClient, WebhookError


def get_payment_gateway() -> PaymentGateway:
    return get_gateway(settings)


def get_payment_gateway_factory() -> Callable[[], PaymentGateway]:
    """Defer building the gateway until the request body has been checked."""
    return get_payment_gateway


def get_publish_client() -> PublishWebhookClient:
    try:
        return PublishWebhookClient.from_settings(settings)
    except WebhookError as e:
        raise ExternalServiceError(str(e), code="publish_unconfigured", status_code=503)


def get_generation_client() -> GenerationWebhookClient:
    try:
        return GenerationWebhookClient.from_settings(settings)
    except WebhookError as e:
        raise ExternalServiceError(str(e), code="generation_unconfigured", status_code=503)
