"""Scheduler-invoked job endpoints. Guarded by X-Cron-Secret."""
from fastapi import APIRouter, Depends

from voicepost.api.deps import get_publish_client
from voicepost.core.auth import require_cron_secret
from voicepost.features.posts.webhooks import PublishWebhookClient
from voicepost.workers.cleanup_stuck_posts import cleanup_stuck_posts
from voicepost.workers.process_scheduled_posts import process_scheduled_posts

router = APIRouter(prefix="/api/jobs", tags=["jobs"], dependencies=[Depends(require_cron_secret)])


@router.post("/process-scheduled-posts")
def run_process_scheduled_posts(client: PublishWebhookClient = Depends(get_publish_client)):
    result = process_scheduled_posts(client=client)
    return {"success": True, **result}


@router.post("/cleanup-stuck-posts")
def run_cleanup_stuck_posts():
    result = cleanup_stuck_posts()
    return {"success": True, **result}
