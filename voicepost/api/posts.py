"""
Posts API routes.

Publishing goes through the credit gate: a user with no credits gets a 402
and the publish webhook is never contacted.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.orm import Session

from voicepost.api.deps import get_generation_client, get_publish_client
from voicepost.core.auth import get_current_user_id
from voicepost.core.database import get_db
from voicepost.features.posts import service as post_service
from voicepost.features.posts.generation import start_generation
from voicepost.features.posts.publisher import publish_post
from voicepost.features.posts.webhooks import (
    GenerationWebhookClient,
    PublishWebhookClient,
    normalize_publish_request,
)
from voicepost.models.post import PostStatus

router = APIRouter(prefix="/api/posts", tags=["posts"])


class CreatePostRequest(BaseModel):
    content: Optional[str] = None
    scheduled_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("scheduledAt", "scheduled_at"))
    image_url: Optional[str] = Field(None, validation_alias=AliasChoices("imageUrl", "image_url"))
    image_source_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("imageSourceType", "image_source_type")
    )
    language: Optional[str] = None


class UpdatePostRequest(BaseModel):
    content: Optional[str] = None
    image_url: Optional[str] = Field(None, validation_alias=AliasChoices("imageUrl", "image_url"))
    image_source_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("imageSourceType", "image_source_type")
    )


class ScheduleRequest(BaseModel):
    scheduled_at: datetime = Field(validation_alias=AliasChoices("scheduledAt", "scheduled_at"))


class GenerateRequest(BaseModel):
    audio_file: str = Field(validation_alias=AliasChoices("audioFile", "audio_file"))
    audio_file_name: Optional[str] = Field(None, validation_alias=AliasChoices("audioFileName", "audio_file_name"))
    language: Optional[str] = None


def _post_response(post) -> Dict[str, Any]:
    return {"success": True, "post": post.to_dict()}


@router.post("")
def create_post(
    payload: CreatePostRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    post = post_service.create_post(
        db,
        user_id,
        content=payload.content,
        scheduled_at=payload.scheduled_at,
        image_url=payload.image_url,
        image_source_type=payload.image_source_type,
        language=payload.language,
    )
    return _post_response(post)


@router.get("")
def list_posts(
    status: Optional[PostStatus] = Query(None),
    limit: int = Query(50, ge=1, le=post_service.MAX_LIST_LIMIT),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    items = post_service.list_posts(db, user_id, status=status, limit=limit)
    return {"success": True, "posts": [p.to_dict() for p in items]}


@router.get("/{post_id}")
def get_post(post_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return _post_response(post_service.get_post(db, user_id, post_id))


@router.patch("/{post_id}")
def update_post(
    post_id: str,
    payload: UpdatePostRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    post = post_service.update_content(
        db,
        user_id,
        post_id,
        content=payload.content,
        image_url=payload.image_url,
        image_source_type=payload.image_source_type,
    )
    return _post_response(post)


@router.post("/{post_id}/schedule")
def schedule_post(
    post_id: str,
    payload: ScheduleRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _post_response(post_service.schedule_post(db, user_id, post_id, payload.scheduled_at))


@router.delete("/{post_id}/schedule")
def unschedule_post(post_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return _post_response(post_service.unschedule_post(db, user_id, post_id))


@router.post("/{post_id}/generate")
def generate_post(
    post_id: str,
    payload: GenerateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: GenerationWebhookClient = Depends(get_generation_client),
):
    post = start_generation(
        db,
        user_id,
        post_id,
        payload.audio_file,
        audio_file_name=payload.audio_file_name,
        language=payload.language,
        client=client,
    )
    return {"success": True, "content": post.content, "post": post.to_dict()}


@router.post("/{post_id}/publish")
def publish(
    post_id: str,
    payload: Optional[Dict[str, Any]] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: PublishWebhookClient = Depends(get_publish_client),
):
    """Body is optional; content/postDraft and imageUrl/imageData override the stored post."""
    overrides = normalize_publish_request(payload or {})
    outcome = publish_post(
        db,
        user_id,
        post_id,
        content=overrides.content or None,
        image_url=overrides.image_url,
        client=client,
    )
    return {
        "success": True,
        "postUrl": outcome.post_url,
        "linkedinPostId": outcome.post.linkedin_post_id,
        "post": outcome.post.to_dict(),
    }
