"""
Publish flow.

1. Compare-and-set the post into `publishing` and spend a credit in the same
   transaction. A refused credit rolls both back; the webhook is never called.
2. Commit, then call the publish webhook.
3. Settle to `published` or `failed`. A credit spent on a failed publish is
   not refunded; it is logged for manual adjustment.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from voicepost.core.errors import ExternalServiceError, InsufficientCreditsError, ValidationError
from voicepost.core.logging import log_event
from voicepost.features.credits.gate import consume_publish_credit
from voicepost.features.posts.service import conflict_error, get_post, mark_failed, sources_for, transition
from voicepost.features.posts.webhooks import PublishWebhookClient, WebhookError
from voicepost.models.post import Post, PostStatus


@dataclass(frozen=True)
class PublishOutcome:
    post: Post
    post_url: Optional[str]
    credit_consumed: bool


def publish_post(
    db: Session,
    user_id: str,
    post_id: str,
    content: Optional[str] = None,
    image_url: Optional[str] = None,
    client: Optional[PublishWebhookClient] = None,
) -> PublishOutcome:
    post = get_post(db, user_id, post_id)
    final_content = content if content is not None else post.content
    final_image = image_url if image_url is not None else post.image_url
    if not (final_content or "").strip():
        raise ValidationError("Cannot publish a post without content")

    client = client or _client_or_unavailable()

    moved = transition(
        db,
        post_id,
        sources_for(PostStatus.PUBLISHING),
        PostStatus.PUBLISHING,
        user_id=user_id,
        commit=False,
        content=final_content,
        image_url=final_image,
        error=None,
    )
    if not moved:
        db.rollback()
        raise conflict_error(db, user_id, post_id, "publish")

    try:
        credit_consumed = consume_publish_credit(db, user_id, commit=False)
    except InsufficientCreditsError:
        db.rollback()
        log_event(
            "info",
            "publish.refused",
            user_id=user_id,
            event_type="publish.insufficient_credits",
            error_code="insufficient_credits",
            extra={"post_id": post_id},
        )
        raise
    except Exception:
        db.rollback()
        raise
    db.commit()

    try:
        result = client.publish(user_id, post_id, final_content, final_image)
    except Exception as e:
        mark_failed(db, post_id, PostStatus.PUBLISHING, str(e))
        if credit_consumed:
            log_event(
                "warning",
                "credit.consumed_without_publish",
                user_id=user_id,
                event_type="credit.consumed_without_publish",
                error_code="external_service_error",
                extra={"post_id": post_id, "reason": str(e)},
            )
        if isinstance(e, WebhookError):
            raise ExternalServiceError(f"Failed to publish post: {e}")
        raise

    transition(
        db,
        post_id,
        [PostStatus.PUBLISHING],
        PostStatus.PUBLISHED,
        linkedin_post_id=result.linkedin_post_id,
    )
    log_event(
        "info",
        "post.published",
        user_id=user_id,
        event_type="post.published",
        extra={"post_id": post_id, "linkedin_post_id": result.linkedin_post_id},
    )
    return PublishOutcome(
        post=get_post(db, user_id, post_id),
        post_url=result.post_url,
        credit_consumed=credit_consumed,
    )


def _client_or_unavailable() -> PublishWebhookClient:
    try:
        return PublishWebhookClient.from_settings()
    except WebhookError as e:
        raise ExternalServiceError(str(e), code="publish_unconfigured", status_code=503)
