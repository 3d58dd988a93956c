"""Watchdog job: fail posts stuck in `generating`."""
import logging
from typing import Optional

from voicepost.core.database import get_db_session
from voicepost.features.posts.service import cleanup_stuck_posts as sweep_stuck_posts

logger = logging.getLogger("voicepost.workers.cleanup")


def cleanup_stuck_posts(*, max_age_minutes: Optional[int] = None) -> dict:
    with get_db_session() as session:
        result = sweep_stuck_posts(session, max_age_minutes=max_age_minutes)

    logger.info("[cleanup] stuck generating posts", extra={"cleaned_up": result["cleaned_up"]})
    return result


if __name__ == "__main__":
    result = cleanup_stuck_posts()
    print(result)
