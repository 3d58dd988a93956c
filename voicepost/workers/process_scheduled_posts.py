"""Scheduled sweep: publish due posts through the credit gate."""
import logging
from typing import Dict, List, Optional

from voicepost.core.config import settings
from voicepost.core.database import get_db_session
from voicepost.core.errors import ConflictError, ExternalServiceError, InsufficientCreditsError
from voicepost.features.posts.publisher import publish_post
from voicepost.features.posts.service import list_due_scheduled_posts, mark_failed
from voicepost.features.posts.webhooks import PublishWebhookClient, WebhookError
from voicepost.models.post import PostStatus

logger = logging.getLogger("voicepost.workers.scheduled")


def process_scheduled_posts(
    *,
    limit: Optional[int] = None,
    client: Optional[PublishWebhookClient] = None,
) -> dict:
    batch = limit or settings.SCHEDULED_SWEEP_LIMIT
    if client is None:
        try:
            client = PublishWebhookClient.from_settings()
        except WebhookError as e:
            logger.warning("[scheduled] publish webhook unavailable", extra={"error_message": str(e)})
            return {"processed": 0, "results": [], "error": str(e)}

    results: List[Dict[str, Optional[str]]] = []
    with get_db_session() as session:
        for post in list_due_scheduled_posts(session, limit=batch):
            try:
                publish_post(session, post.user_id, post.id, client=client)
                results.append({"post_id": post.id, "status": PostStatus.PUBLISHED.value})
            except InsufficientCreditsError as e:
                mark_failed(session, post.id, PostStatus.SCHEDULED, e.message)
                results.append({"post_id": post.id, "status": PostStatus.FAILED.value, "error": e.message})
            except ConflictError:
                # Picked up by a concurrent sweep or unscheduled meanwhile
                continue
            except ExternalServiceError as e:
                results.append({"post_id": post.id, "status": PostStatus.FAILED.value, "error": e.message})
            except Exception as e:
                logger.exception("[scheduled] publish crashed", extra={"post_id": post.id})
                session.rollback()
                if not mark_failed(session, post.id, PostStatus.PUBLISHING, str(e)):
                    mark_failed(session, post.id, PostStatus.SCHEDULED, str(e))
                results.append({"post_id": post.id, "status": PostStatus.FAILED.value, "error": str(e)})

    logger.info(
        "[scheduled] sweep complete",
        extra={
            "processed": len(results),
            "published": sum(1 for r in results if r["status"] == PostStatus.PUBLISHED.value),
        },
    )
    return {"processed": len(results), "results": results}


if __name__ == "__main__":
    result = process_scheduled_posts()
    print(result)
