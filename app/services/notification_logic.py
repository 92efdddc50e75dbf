# app/services/notification_logic.py
"""
Pure decision helpers for the notification pipeline.

Nothing here touches Firestore or FCM, so the push sender's branches
(quiet hours, burst summaries, status resolution) and the client-update
guard can be unit tested directly.
"""
from __future__ import annotations

import datetime as _dt
import re
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.errors import PermissionDenied
from app.models.notification import AGGREGATABLE_TYPES, NotificationType, PushStatus

_MENTION_RX = re.compile(r"@([a-z0-9_]{3,30})", re.I)

# Fields a client may touch on its own notification docs
CLIENT_MUTABLE_FIELDS = frozenset({"read", "seenAt"})


# ───────────────────────── Quiet hours ─────────────────────────
def _to_minutes(hhmm: str) -> int:
    parts = hhmm.split(":")
    hours = int(parts[0])
    minutes = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    return hours * 60 + minutes


def _local_hhmm(now: _dt.datetime, timezone: str) -> str:
    if now.tzinfo is None:
        now = now.replace(tzinfo=_dt.timezone.utc)
    try:
        tz = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        tz = _dt.timezone.utc  # unknown zone -> UTC
    return now.astimezone(tz).strftime("%H:%M")


def evaluate_quiet_hours(now: _dt.datetime, quiet_hours: Optional[dict]) -> bool:
    """
    True when `now` falls inside the user's quiet window.

    `quiet_hours` is `{start: 'HH:MM', end: 'HH:MM', timezone: str}`. A window
    with start >= end wraps past midnight. Anything malformed fails open.
    """
    if not quiet_hours or not isinstance(quiet_hours, dict):
        return False
    start = quiet_hours.get("start")
    end = quiet_hours.get("end")
    timezone = quiet_hours.get("timezone")
    if not start or not end or not timezone:
        return False
    try:
        now_min = _to_minutes(_local_hhmm(now, timezone))
        start_min = _to_minutes(start)
        end_min = _to_minutes(end)
        if start_min < end_min:
            return start_min <= now_min < end_min
        return now_min >= start_min or now_min < end_min
    except Exception:
        return False


# ───────────────────────── Burst aggregation ─────────────────────────
def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n > 1 else ''}"


def aggregate_activity(base: Optional[dict], recent: Iterable[dict]) -> Dict[str, Any]:
    """
    Collapse a burst of like/comment notifications on one post into a single
    push title/body. With one relevant event (or no post) the base title/body
    comes back unchanged.
    """
    base = base or {}
    original = {"title": base.get("title"), "body": base.get("body")}
    if not (base.get("data") or {}).get("postId"):
        return original

    relevant = [d for d in (recent or []) if d and d.get("type") in AGGREGATABLE_TYPES]
    if len(relevant) <= 1:
        return original

    likes = comments = 0
    actors = set()
    for doc in relevant:
        actor = (doc.get("data") or {}).get("actorId")
        if actor:
            actors.add(actor)
        if doc["type"] == NotificationType.POST_LIKED.value:
            likes += 1
        else:
            comments += 1

    who = f"{len(actors)} people" if len(actors) > 1 else "Someone"
    if likes and comments:
        title = "New activity on your post"
        body = f"{who} added activity ({_plural(likes, 'like')}, {_plural(comments, 'comment')})"
    elif likes:
        title = "Post getting likes"
        body = f"{who} liked your post ({_plural(likes, 'like')})"
    else:
        title = "New comments on your post"
        body = f"{who} commented ({_plural(comments, 'comment')})"
    return {"title": title, "body": body}


# ───────────────────────── Small helpers ─────────────────────────
def extract_mentions(content: Any) -> List[str]:
    """Lower-cased, de-duplicated @usernames in first-seen order."""
    if not isinstance(content, str) or not content:
        return []
    seen: Dict[str, None] = {}
    for m in _MENTION_RX.finditer(content):
        seen.setdefault(m.group(1).lower(), None)
    return list(seen)


def string_data(data: Optional[dict]) -> Dict[str, str]:
    """FCM data payloads are string maps; drop everything else."""
    return {k: v for k, v in (data or {}).items() if isinstance(v, str)}


def resolve_push_status(success: int, failure: int) -> str:
    if failure == 0 and success > 0:
        return PushStatus.SENT.value
    if success > 0:
        return PushStatus.PARTIAL.value
    return PushStatus.FAILED.value


def validate_client_update(current: dict, changes: dict) -> None:
    """
    Mirror of the notification security rule: clients may only flip an
    unread notification to read (optionally stamping seenAt).
    """
    extra = set(changes) - CLIENT_MUTABLE_FIELDS
    if extra:
        raise PermissionDenied(f"fields not writable: {', '.join(sorted(extra))}")
    if changes.get("read") is not True:
        raise PermissionDenied("read must be set to true")
    if current.get("read") is not False:
        raise PermissionDenied("notification already read")
