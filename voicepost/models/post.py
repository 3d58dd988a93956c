from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict


class PostStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    GENERATING = "generating"
    GENERATED = "generated"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"


# Legal moves. publishing is entered only through the credit gate.
TRANSITIONS: Dict[PostStatus, FrozenSet[PostStatus]] = {
    PostStatus.DRAFT: frozenset({PostStatus.SCHEDULED, PostStatus.GENERATING, PostStatus.PUBLISHING}),
    PostStatus.SCHEDULED: frozenset({PostStatus.DRAFT, PostStatus.PUBLISHING, PostStatus.FAILED}),
    PostStatus.GENERATING: frozenset({PostStatus.GENERATED, PostStatus.FAILED}),
    PostStatus.GENERATED: frozenset({PostStatus.SCHEDULED, PostStatus.PUBLISHING}),
    PostStatus.PUBLISHING: frozenset({PostStatus.PUBLISHED, PostStatus.FAILED}),
    PostStatus.PUBLISHED: frozenset(),
    PostStatus.FAILED: frozenset({PostStatus.GENERATING, PostStatus.PUBLISHING}),
}


def can_transition(current: PostStatus, target: PostStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class Post(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    content: Optional[str] = None
    status: PostStatus
    audio_file_name: Optional[str] = None
    language: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    linkedin_post_id: Optional[str] = None
    image_url: Optional[str] = None
    image_source_type: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "status": self.status.value,
            "audio_file_name": self.audio_file_name,
            "language": self.language,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "linkedin_post_id": self.linkedin_post_id,
            "image_url": self.image_url,
            "image_source_type": self.image_source_type,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
