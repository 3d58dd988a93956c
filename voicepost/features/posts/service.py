"""
Post lifecycle tracker.

Every status change is a compare-and-set on the current status, so two
writers (a webhook result and the watchdog, say) can never both win.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from voicepost.core.config import settings
from voicepost.core.database import posts, utcnow
from voicepost.core.errors import ConflictError, NotFoundError, ValidationError
from voicepost.models.post import TRANSITIONS, Post, PostStatus, can_transition

logger = logging.getLogger("voicepost.posts")

# Statuses a user may still edit
EDITABLE_STATUSES = (PostStatus.DRAFT, PostStatus.GENERATED, PostStatus.SCHEDULED, PostStatus.FAILED)
MAX_LIST_LIMIT = 100


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _row_to_post(row) -> Post:
    return Post(
        id=row.id,
        user_id=row.user_id,
        content=row.content,
        status=PostStatus(row.status),
        audio_file_name=row.audio_file_name,
        language=row.language,
        scheduled_at=_aware(row.scheduled_at),
        linkedin_post_id=row.linkedin_post_id,
        image_url=row.image_url,
        image_source_type=row.image_source_type,
        error=row.error,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def sources_for(target: PostStatus) -> List[PostStatus]:
    """Statuses from which `target` may be entered."""
    return [status for status, targets in TRANSITIONS.items() if target in targets]


def get_post(db: Session, user_id: str, post_id: str) -> Post:
    row = db.execute(
        select(posts).where(posts.c.id == post_id, posts.c.user_id == user_id)
    ).first()
    if not row:
        raise NotFoundError("Post not found")
    return _row_to_post(row)


def list_posts(db: Session, user_id: str, status: Optional[PostStatus] = None, limit: int = 50) -> List[Post]:
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    query = select(posts).where(posts.c.user_id == user_id)
    if status is not None:
        query = query.where(posts.c.status == PostStatus(status).value)
    rows = db.execute(query.order_by(posts.c.created_at.desc()).limit(limit)).fetchall()
    return [_row_to_post(r) for r in rows]


def _require_future(scheduled_at: datetime) -> datetime:
    scheduled_at = _aware(scheduled_at)
    if scheduled_at <= utcnow():
        raise ValidationError("scheduled_at must be in the future")
    return scheduled_at


def create_post(
    db: Session,
    user_id: str,
    content: Optional[str] = None,
    scheduled_at: Optional[datetime] = None,
    image_url: Optional[str] = None,
    image_source_type: Optional[str] = None,
    audio_file_name: Optional[str] = None,
    language: Optional[str] = None,
) -> Post:
    """Create a draft, or a scheduled post when scheduled_at is given."""
    status = PostStatus.DRAFT
    if scheduled_at is not None:
        scheduled_at = _require_future(scheduled_at)
        if not (content or "").strip():
            raise ValidationError("Cannot schedule a post without content")
        status = PostStatus.SCHEDULED

    now = utcnow()
    post_id = str(uuid4())
    db.execute(
        insert(posts).values(
            id=post_id,
            user_id=user_id,
            content=content,
            status=status.value,
            audio_file_name=audio_file_name,
            language=language,
            scheduled_at=scheduled_at,
            image_url=image_url,
            image_source_type=image_source_type,
            created_at=now,
            updated_at=now,
        )
    )
    db.commit()
    logger.info("post.created", extra={"user_id": user_id, "post_id": post_id, "status": status.value})
    return get_post(db, user_id, post_id)


def transition(
    db: Session,
    post_id: str,
    from_statuses: Iterable[PostStatus],
    to_status: PostStatus,
    user_id: Optional[str] = None,
    commit: bool = True,
    **values,
) -> bool:
    """
    Compare-and-set the post status. Returns False when the post was not in
    one of `from_statuses`.
    """
    allowed = [PostStatus(s) for s in from_statuses]
    for source in allowed:
        if not can_transition(source, to_status):
            raise ValueError(f"Illegal post transition {source.value} -> {to_status.value}")

    stmt = update(posts).where(
        posts.c.id == post_id,
        posts.c.status.in_([s.value for s in allowed]),
    )
    if user_id is not None:
        stmt = stmt.where(posts.c.user_id == user_id)
    result = db.execute(stmt.values(status=to_status.value, updated_at=utcnow(), **values))
    if commit:
        db.commit()
    return result.rowcount == 1


def conflict_error(db: Session, user_id: str, post_id: str, action: str) -> ConflictError:
    current = get_post(db, user_id, post_id)
    return ConflictError(f"Cannot {action} a post in status '{current.status.value}'")


def update_content(
    db: Session,
    user_id: str,
    post_id: str,
    content: Optional[str] = None,
    image_url: Optional[str] = None,
    image_source_type: Optional[str] = None,
) -> Post:
    values: Dict[str, object] = {}
    if content is not None:
        values["content"] = content
    if image_url is not None:
        values["image_url"] = image_url or None
        values["image_source_type"] = image_source_type if image_url else None
    if not values:
        return get_post(db, user_id, post_id)

    result = db.execute(
        update(posts)
        .where(
            posts.c.id == post_id,
            posts.c.user_id == user_id,
            posts.c.status.in_([s.value for s in EDITABLE_STATUSES]),
        )
        .values(updated_at=utcnow(), **values)
    )
    db.commit()
    if result.rowcount != 1:
        raise conflict_error(db, user_id, post_id, "edit")
    return get_post(db, user_id, post_id)


def schedule_post(db: Session, user_id: str, post_id: str, scheduled_at: datetime) -> Post:
    scheduled_at = _require_future(scheduled_at)
    post = get_post(db, user_id, post_id)
    if not (post.content or "").strip():
        raise ValidationError("Cannot schedule a post without content")

    moved = transition(
        db,
        post_id,
        sources_for(PostStatus.SCHEDULED),
        PostStatus.SCHEDULED,
        user_id=user_id,
        scheduled_at=scheduled_at,
        error=None,
    )
    if not moved:
        # Rescheduling an already scheduled post only moves the time
        result = db.execute(
            update(posts)
            .where(posts.c.id == post_id, posts.c.user_id == user_id, posts.c.status == PostStatus.SCHEDULED.value)
            .values(scheduled_at=scheduled_at, updated_at=utcnow())
        )
        db.commit()
        if result.rowcount != 1:
            raise conflict_error(db, user_id, post_id, "schedule")
    logger.info("post.scheduled", extra={"user_id": user_id, "post_id": post_id})
    return get_post(db, user_id, post_id)


def unschedule_post(db: Session, user_id: str, post_id: str) -> Post:
    moved = transition(
        db, post_id, [PostStatus.SCHEDULED], PostStatus.DRAFT, user_id=user_id, scheduled_at=None
    )
    if not moved:
        raise conflict_error(db, user_id, post_id, "unschedule")
    return get_post(db, user_id, post_id)


def mark_failed(db: Session, post_id: str, from_status: PostStatus, error: Optional[str]) -> bool:
    """Force a post out of an in-flight status. Always commits."""
    return transition(
        db, post_id, [from_status], PostStatus.FAILED, error=(error or "")[:1000] or None
    )


def list_due_scheduled_posts(db: Session, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[Post]:
    limit = limit or settings.SCHEDULED_SWEEP_LIMIT
    now = now or utcnow()
    rows = db.execute(
        select(posts)
        .where(posts.c.status == PostStatus.SCHEDULED.value, posts.c.scheduled_at <= now)
        .order_by(posts.c.scheduled_at, posts.c.id)
        .limit(limit)
    ).fetchall()
    return [_row_to_post(r) for r in rows]


def cleanup_stuck_posts(db: Session, max_age_minutes: Optional[int] = None, now: Optional[datetime] = None) -> Dict:
    """
    Watchdog: move posts stuck in `generating` past the cutoff to `failed`.

    Age is measured from updated_at, which is stamped when the post enters
    `generating` and not touched again until it leaves. Each row is flipped with its own
    compare-and-set, so a generation result that lands first wins.
    """
    minutes = max_age_minutes or settings.STUCK_GENERATING_MINUTES
    cutoff = (now or utcnow()) - timedelta(minutes=minutes)

    rows = db.execute(
        select(posts.c.id, posts.c.user_id)
        .where(posts.c.status == PostStatus.GENERATING.value, posts.c.updated_at < cutoff)
        .order_by(posts.c.updated_at)
    ).fetchall()

    cleaned: List[Dict[str, str]] = []
    for row in rows:
        if mark_failed(db, row.id, PostStatus.GENERATING, f"Generation timed out after {minutes} minutes"):
            cleaned.append({"id": row.id, "user_id": row.user_id})

    if cleaned:
        logger.info("posts.stuck_cleaned", extra={"count": len(cleaned), "cutoff": cutoff.isoformat()})
    return {"cleaned_up": len(cleaned), "posts": cleaned}
