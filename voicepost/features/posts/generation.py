"""Voice-to-post generation through the content-generation webhook."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from voicepost.core.errors import ConflictError, ExternalServiceError, ValidationError
from voicepost.core.logging import log_event
from voicepost.features.posts.service import conflict_error, get_post, mark_failed, sources_for, transition
from voicepost.features.posts.webhooks import (
    MAX_AUDIO_BYTES,
    GenerationWebhookClient,
    WebhookError,
    decode_audio_size,
    generation_timeout_seconds,
)
from voicepost.models.post import Post, PostStatus

logger = logging.getLogger("voicepost.posts")

DEFAULT_AUDIO_FILE_NAME = "recording.wav"
DEFAULT_LANGUAGE = "en-US"


def start_generation(
    db: Session,
    user_id: str,
    post_id: str,
    audio_base64: str,
    audio_file_name: Optional[str] = None,
    language: Optional[str] = None,
    client: Optional[GenerationWebhookClient] = None,
) -> Post:
    """
    Generate post content from recorded audio.

    The result settles the post with a compare-and-set from `generating`,
    so a reply arriving after the watchdog failed the post is dropped.
    """
    if not audio_base64:
        raise ValidationError("Audio is required")
    try:
        size = decode_audio_size(audio_base64)
    except ValueError as e:
        raise ValidationError(str(e))
    if size > MAX_AUDIO_BYTES:
        raise ValidationError("Audio file too large. Please use a shorter recording (max 10MB).")

    file_name = audio_file_name or DEFAULT_AUDIO_FILE_NAME
    lang = language or DEFAULT_LANGUAGE
    if client is None:
        try:
            client = GenerationWebhookClient.from_settings()
        except WebhookError as e:
            raise ExternalServiceError(str(e), code="generation_unconfigured", status_code=503)

    moved = transition(
        db,
        post_id,
        sources_for(PostStatus.GENERATING),
        PostStatus.GENERATING,
        user_id=user_id,
        audio_file_name=file_name,
        language=lang,
        error=None,
    )
    if not moved:
        raise conflict_error(db, user_id, post_id, "generate content for")

    timeout = generation_timeout_seconds(size)
    logger.info(
        "generation.started",
        extra={"user_id": user_id, "post_id": post_id, "audio_bytes": size, "timeout_seconds": timeout},
    )

    try:
        content = client.generate(post_id, audio_base64, file_name, lang, timeout)
    except Exception as e:
        mark_failed(db, post_id, PostStatus.GENERATING, str(e))
        log_event(
            "warning",
            "generation.failed",
            user_id=user_id,
            event_type="generation.failed",
            error_code="external_service_error",
            extra={"post_id": post_id, "reason": str(e)},
        )
        if isinstance(e, WebhookError):
            raise ExternalServiceError(f"Content generation failed: {e}")
        raise

    settled = transition(db, post_id, [PostStatus.GENERATING], PostStatus.GENERATED, content=content)
    if not settled:
        logger.warning("generation.discarded", extra={"user_id": user_id, "post_id": post_id})
        raise ConflictError("Generation finished after the post had already failed")
    return get_post(db, user_id, post_id)
