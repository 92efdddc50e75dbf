"""
Notification, device and preference shapes.

Firestore documents are plain dicts; these models describe the enums the
services switch on and the request bodies the routes accept.
"""
from __future__ import annotations

from typing import Any, List, Optional
from pydantic import BaseModel, Field
from enum import Enum


class NotificationType(str, Enum):
    POST_LIKED = "post_liked"
    COMMENT_ADDED = "comment_added"
    MENTION = "mention"
    NEW_FOLLOWER = "new_follower"


# Types whose pushes collapse into a per-post burst summary
AGGREGATABLE_TYPES = (NotificationType.POST_LIKED.value, NotificationType.COMMENT_ADDED.value)


class PushStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED_PREFS = "skipped_prefs"
    SUPPRESSED_QUIET_HOURS = "suppressed_quiet_hours"
    NO_DEVICES = "no_devices"
    NO_FCM_TOKENS = "no_fcm_tokens"
    ERROR = "error"


class DisableReason(str, Enum):
    INVALID_TOKEN = "invalid_token"
    STALE = "stale"
    USER = "user"


class QuietHours(BaseModel):
    start: str  # 'HH:MM' 24h
    end: str
    timezone: str


class NotificationPrefsIn(BaseModel):
    post_liked: Optional[bool] = None
    comment_added: Optional[bool] = None
    mention: Optional[bool] = None
    new_follower: Optional[bool] = None
    quietHours: Optional[QuietHours] = None


class MarkReadIn(BaseModel):
    notificationIds: Optional[List[Any]] = None
    markAll: bool = False
    max: Optional[int] = None


class DeviceIn(BaseModel):
    token: str = Field(..., min_length=1)
    platform: str = "web"
    provider: str = "fcm"


class EventIn(BaseModel):
    """Document event forwarded by the trigger bridge."""
    params: dict = Field(default_factory=dict)
    data: Optional[dict] = None
    before: Optional[dict] = None
    after: Optional[dict] = None
