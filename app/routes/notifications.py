# app/routes/notifications.py
from fastapi import APIRouter, Body, Depends

from app.models.notification import MarkReadIn, NotificationPrefsIn
from app.services import notifications, prefs
from app.services.auth import get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_my_notifications(
    only_unread: bool = False,
    limit: int = 50,
    user = Depends(get_current_user),
):
    uid = user["uid"]
    return {
        "ok": True,
        "items": notifications.list_notifications(uid, only_unread=only_unread, limit=limit),
        "unread": notifications.unread_count(uid),
    }


@router.post("/mark-read")
def mark_read(data: MarkReadIn, user = Depends(get_current_user)):
    res = notifications.batch_mark_read(
        user["uid"],
        notification_ids=data.notificationIds,
        mark_all=data.markAll,
        max_count=data.max,
    )
    return {"ok": True, **res}


# ---- Preferences ----
@router.get("/prefs")
def get_my_prefs(user = Depends(get_current_user)):
    return {"ok": True, "prefs": prefs.get_prefs(user["uid"])}


@router.put("/prefs")
def put_my_prefs(data: NotificationPrefsIn, user = Depends(get_current_user)):
    saved = prefs.save_prefs(user["uid"], data.model_dump(exclude_none=True))
    return {"ok": True, "prefs": saved}


@router.patch("/{nid}")
def patch_notification(nid: str, changes: dict = Body(...), user = Depends(get_current_user)):
    """Client-side update; only `read: true` (and `seenAt`) on an unread doc is accepted."""
    notifications.mark_notification_read(user["uid"], nid, changes)
    return {"ok": True}
