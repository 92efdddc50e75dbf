# app/routes/internal.py
"""
Internal endpoints called by the document-trigger bridge and the scheduler.

Each event carries the trigger's path params plus the document snapshot(s):
  {"params": {...}, "data": {...}}                 for create/delete
  {"params": {...}, "before": {...}, "after": {...}} for writes
Handlers log and swallow their own failures, so a 200 means "processed".
"""
import logging

from fastapi import APIRouter, Depends

from app.core.errors import ApiError, STATUS_NOT_FOUND, bad_request
from app.models.notification import EventIn
from app.services import devices, email, feed, notifications, prefs, push
from app.services.auth import require_proxy_key

log = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_proxy_key)])


def _param(evt: EventIn, name: str) -> str:
    val = evt.params.get(name)
    if not val:
        raise bad_request(f"missing param '{name}'")
    return str(val)

def _doc(evt: EventIn) -> dict:
    return evt.data if evt.data is not None else (evt.after or {})


def _post_like_created(evt: EventIn):
    feed.on_like_created(_doc(evt))
    notifications.on_post_like_created(_doc(evt))

def _post_like_deleted(evt: EventIn):
    feed.on_like_deleted(evt.data if evt.data is not None else evt.before)

def _post_comment_created(evt: EventIn):
    feed.on_comment_created(_doc(evt))
    notifications.on_post_comment_created(_doc(evt), comment_id=evt.params.get("commentId"))

def _post_comment_deleted(evt: EventIn):
    feed.on_comment_deleted(evt.data if evt.data is not None else evt.before)

def _follow_created(evt: EventIn):
    notifications.on_follow_created(_doc(evt))

def _post_created(evt: EventIn):
    feed.on_post_created(_param(evt, "postId"), _doc(evt))

def _notification_created(evt: EventIn):
    push.send_push_for_notification(_param(evt, "uid"), _param(evt, "nid"), _doc(evt))

def _prefs_written(evt: EventIn):
    prefs.on_prefs_written(_param(evt, "uid"), evt.after)

def _fulfillment_written(evt: EventIn):
    email.on_fulfillment_written(_param(evt, "piId"), evt.before, evt.after)


EVENT_HANDLERS = {
    "post-like-created": _post_like_created,
    "post-like-deleted": _post_like_deleted,
    "post-comment-created": _post_comment_created,
    "post-comment-deleted": _post_comment_deleted,
    "follow-created": _follow_created,
    "post-created": _post_created,
    "notification-created": _notification_created,
    "prefs-written": _prefs_written,
    "fulfillment-written": _fulfillment_written,
}


@router.post("/events/{event}")
def handle_event(event: str, evt: EventIn):
    handler = EVENT_HANDLERS.get(event)
    if handler is None:
        raise ApiError(STATUS_NOT_FOUND, "unknown_event", f"Unknown event '{event}'")
    handler(evt)
    return {"ok": True, "event": event}


@router.post("/jobs/prune-devices")
def prune_devices_job():
    return {"ok": True, **devices.prune_stale_devices()}
