# app/services/notifications.py
"""
In-app notification documents and the unread counter.

Layout
------
  users/{uid}                          unreadNotifications (int)
  users/{uid}/notifications/{nid}      one doc per event
  usernames/{usernameLower}            uid lookup for @mentions

The counter is never recomputed: every create increments it and every
read decrements it inside the same transaction that touches the
notification docs, so it tracks the number of `read == False` docs.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from app.core.config import settings
from app.core.errors import not_found
from app.models.notification import NotificationType, PushStatus
from app.services import gcp_clients
from app.services.notification_logic import extract_mentions, validate_client_update

log = logging.getLogger(__name__)


# ───────────────────────── Refs ─────────────────────────
def _db():
    return gcp_clients.get_firestore_client()

def user_ref(uid: str):
    return _db().collection("users").document(uid)

def notifications_col(uid: str):
    return user_ref(uid).collection("notifications")

def _current_unread(snap) -> int:
    doc = (snap.to_dict() or {}) if snap.exists else {}
    val = doc.get("unreadNotifications")
    if isinstance(val, bool) or not isinstance(val, int):
        return 0
    return val

def _iso(v):
    try:
        return v.isoformat()
    except Exception:
        return None

def _deep_link(path: str) -> str:
    return f"{settings.deep_link_scheme}://{path}"


# ───────────────────────── Create ─────────────────────────
def _notif_payload(type_: str, title: str, body: str, data: dict,
                   link: str, deep_link: str, send_push: bool) -> dict:
    return {
        "type": type_,
        "title": title,
        "body": body,
        "data": data,
        "link": link,
        "deepLink": deep_link,
        "createdAt": gcp_clients.server_ts(),
        "seenAt": None,
        "read": False,
        "sendPush": send_push,
        "pushSentAt": None,
        "pushStatus": PushStatus.PENDING.value,
    }

def _txn_create_notification(txn, uref, nref, payload: dict):
    snap = uref.get(transaction=txn)
    current = _current_unread(snap)
    txn.set(nref, payload)
    txn.set(uref, {"unreadNotifications": current + 1}, merge=True)

def create_notification(
    uid: str,
    type: str,
    title: str,
    body: str,
    data: Optional[dict] = None,
    link: str = "/",
    deep_link: Optional[str] = None,
    send_push: bool = True,
) -> Optional[str]:
    """Write a notification and bump the unread counter atomically. Returns the new id."""
    data = data or {}
    if not uid or uid == data.get("actorId"):
        return None  # no self notifications
    nref = notifications_col(uid).document()
    payload = _notif_payload(type, title, body, data, link,
                             deep_link or _deep_link("home"), send_push)
    gcp_clients.run_transaction(_txn_create_notification, user_ref(uid), nref, payload)
    return nref.id


# ───────────────────────── Triggers ─────────────────────────
def on_post_like_created(like: dict):
    """postLikes/{likeId} created -> post owner gets `post_liked`."""
    try:
        like = like or {}
        post_id = like.get("postId")
        owner = like.get("postOwnerId")
        if not post_id or not owner:
            return None
        create_notification(
            owner,
            NotificationType.POST_LIKED.value,
            "New like",
            "Someone liked your post",
            data={"postId": post_id, "actorId": like.get("userId")},
            link=f"/post/{post_id}",
            deep_link=_deep_link(f"post/{post_id}"),
        )
    except Exception:
        log.exception("on_post_like_created failed")
    return None

def _notify_mentions(content: Any, post_id: str, actor_id: Optional[str],
                     owner: str, comment_id: Optional[str]) -> List[str]:
    names = extract_mentions(content)
    if not names:
        return []
    created = []
    usernames = _db().collection("usernames")
    for name in names:
        snap = usernames.document(name).get()
        if not snap.exists:
            continue
        target = (snap.to_dict() or {}).get("uid")
        if not target or target == actor_id or target == owner:
            continue
        nid = create_notification(
            target,
            NotificationType.MENTION.value,
            "You were mentioned",
            "Someone mentioned you in a comment",
            data={"postId": post_id, "actorId": actor_id, "commentId": comment_id},
            link=f"/post/{post_id}",
            deep_link=_deep_link(f"post/{post_id}"),
        )
        if nid:
            created.append(nid)
    return created

def on_post_comment_created(comment: dict, comment_id: Optional[str] = None):
    """postComments/{commentId} created -> owner gets `comment_added`, @mentions get `mention`."""
    try:
        comment = comment or {}
        post_id = comment.get("postId")
        owner = comment.get("postOwnerId")
        actor = comment.get("userId")
        if not post_id or not owner:
            return None
        create_notification(
            owner,
            NotificationType.COMMENT_ADDED.value,
            "New comment",
            "Someone commented on your post",
            data={"postId": post_id, "actorId": actor, "commentId": comment_id},
            link=f"/post/{post_id}",
            deep_link=_deep_link(f"post/{post_id}"),
        )
        _notify_mentions(comment.get("content"), post_id, actor, owner, comment_id)
    except Exception:
        log.exception("on_post_comment_created failed")
    return None

def on_follow_created(follow: dict):
    """follows/{followId} created -> followed user gets `new_follower`."""
    try:
        follow = follow or {}
        actor = follow.get("followerId")
        target = follow.get("followedId")
        if not actor or not target:
            return None
        create_notification(
            target,
            NotificationType.NEW_FOLLOWER.value,
            "New follower",
            "You have a new follower",
            data={"actorId": actor},
            link=f"/profile/{actor}",
            deep_link=_deep_link(f"profile/{actor}"),
        )
    except Exception:
        log.exception("on_follow_created failed")
    return None


# ───────────────────────── Read state ─────────────────────────
def _unread_query(uid: str):
    return notifications_col(uid).where(filter=FieldFilter("read", "==", False))

def _remaining_unread(uid: str) -> Optional[int]:
    """0 when nothing is unread; None means "some, count unknown"."""
    return 0 if not _unread_query(uid).limit(1).get() else None

def _txn_mark_read(txn, uref, refs) -> List[str]:
    current = _current_unread(uref.get(transaction=txn))
    fresh = [(ref, ref.get(transaction=txn)) for ref in refs]
    changed = []
    for ref, snap in fresh:
        if snap.exists and (snap.to_dict() or {}).get("read") is False:
            txn.update(ref, {"read": True, "seenAt": gcp_clients.server_ts()})
            changed.append(ref.id)
    if changed:
        txn.set(uref, {"unreadNotifications": max(0, current - len(changed))}, merge=True)
    return changed

def batch_mark_read(
    uid: str,
    notification_ids: Optional[List[Any]] = None,
    mark_all: bool = False,
    max_count: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Mark the caller's notifications read and decrement the counter by exactly
    the number flipped. Safe to repeat: already-read docs are skipped.
    """
    hard_cap = settings.mark_read_hard_cap
    wanted = max_count if isinstance(max_count, int) and not isinstance(max_count, bool) and max_count > 0 else settings.mark_read_default
    limit = min(wanted, hard_cap)

    if mark_all:
        snaps = (
            _unread_query(uid)
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
            .limit(limit)
            .get()
        )
        targets = [s.reference for s in snaps]
    elif isinstance(notification_ids, list) and notification_ids:
        unique = list(dict.fromkeys(x for x in notification_ids if isinstance(x, str) and x))[:hard_cap]
        col = notifications_col(uid)
        targets = []
        for nid in unique:
            snap = col.document(nid).get()
            if snap.exists and (snap.to_dict() or {}).get("read") is False:
                targets.append(snap.reference)
    else:
        return {"updated": 0, "remainingUnread": None}

    if not targets:
        return {"updated": 0, "remainingUnread": _remaining_unread(uid)}

    changed = gcp_clients.run_transaction(_txn_mark_read, user_ref(uid), targets)

    remaining = None
    try:
        remaining = _remaining_unread(uid)
    except Exception as e:
        log.warning("remaining unread lookup failed for uid=%s: %s", uid, e)

    log.info(
        "batch_mark_read",
        extra={
            "uid": uid,
            "requested": len(notification_ids) if notification_ids else None,
            "markAll": bool(mark_all),
            "updated": len(changed),
        },
    )
    return {"updated": len(changed), "remainingUnread": remaining}

def _txn_client_mark_read(txn, uref, nref, changes: dict):
    user_snap = uref.get(transaction=txn)
    snap = nref.get(transaction=txn)
    if not snap.exists:
        raise not_found("Notification not found")
    validate_client_update(snap.to_dict() or {}, changes)
    txn.update(nref, {"read": True, "seenAt": gcp_clients.server_ts()})
    txn.set(uref, {"unreadNotifications": max(0, _current_unread(user_snap) - 1)}, merge=True)

def mark_notification_read(uid: str, nid: str, changes: dict) -> None:
    """Single client-side update, constrained to read/seenAt on an unread doc."""
    gcp_clients.run_transaction(
        _txn_client_mark_read, user_ref(uid), notifications_col(uid).document(nid), changes
    )

def list_notifications(uid: str, only_unread: bool = False, limit: int = 50) -> List[dict]:
    q = _unread_query(uid) if only_unread else notifications_col(uid)
    q = q.order_by("createdAt", direction=firestore.Query.DESCENDING).limit(max(1, min(limit, 100)))
    items = []
    for s in q.get():
        d = s.to_dict() or {}
        items.append({
            "id": s.id,
            "type": d.get("type"),
            "title": d.get("title"),
            "body": d.get("body"),
            "data": d.get("data") or {},
            "link": d.get("link"),
            "deepLink": d.get("deepLink"),
            "read": bool(d.get("read")),
            "createdAt": _iso(d.get("createdAt")),
            "seenAt": _iso(d.get("seenAt")),
            "pushStatus": d.get("pushStatus"),
        })
    return items

def unread_count(uid: str) -> int:
    return _current_unread(user_ref(uid).get())
