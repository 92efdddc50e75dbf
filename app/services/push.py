# app/services/push.py
"""
Push sender for users/{uid}/notifications/{nid} creates.

Order of checks: sendPush flag, already-processed guard, per-type prefs,
quiet hours, like/comment burst aggregation, device lookup, FCM multicast.
Every branch ends by recording a terminal `pushStatus` on the doc. Failures
are logged and stamped `error`; the event is never replayed.
"""
from __future__ import annotations

import datetime as _dt
import logging
import uuid
from typing import List, Optional

from firebase_admin import exceptions as fb_exceptions
from firebase_admin import messaging
from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from app.core.config import settings
from app.models.notification import AGGREGATABLE_TYPES, DisableReason, PushStatus
from app.services import devices, gcp_clients
from app.services.notification_logic import (
    aggregate_activity,
    evaluate_quiet_hours,
    resolve_push_status,
    string_data,
)
from app.services.notifications import notifications_col
from app.services.prefs import get_prefs

log = logging.getLogger(__name__)

# Provider errors that mean the token will never work again
INVALID_TOKEN_ERRORS = (
    messaging.UnregisteredError,
    messaging.SenderIdMismatchError,
    fb_exceptions.InvalidArgumentError,
)


def is_invalid_token_error(exc: Optional[Exception]) -> bool:
    if exc is None:
        return False
    if isinstance(exc, INVALID_TOKEN_ERRORS):
        return True
    code = str(getattr(exc, "code", "") or "").lower()
    return any(k in code for k in ("not-registered", "invalid-argument", "invalid-registration-token"))


def _absolute_link(link: Optional[str]) -> Optional[str]:
    # FCM only accepts HTTPS links for webpush click-through
    link = link or "/"
    if link.startswith("/"):
        link = f"{settings.ui_origin.rstrip('/')}{link}"
    return link if link.startswith("https://") else None


def build_message(tokens: List[str], title: str, body: str, notif: dict) -> messaging.MulticastMessage:
    link = _absolute_link(notif.get("link"))
    return messaging.MulticastMessage(
        tokens=tokens,
        notification=messaging.Notification(title=title, body=body),
        data=string_data(notif.get("data")),
        android=messaging.AndroidConfig(priority="high"),
        apns=messaging.APNSConfig(payload=messaging.APNSPayload(aps=messaging.Aps(sound="default"))),
        webpush=messaging.WebpushConfig(
            fcm_options=messaging.WebpushFCMOptions(link=link) if link else None
        ),
    )


def send_multicast(message: messaging.MulticastMessage) -> messaging.BatchResponse:
    return messaging.send_each_for_multicast(message, app=gcp_clients.get_firebase_app())


def _recent_post_activity(uid: str, post_id: str, now: _dt.datetime) -> List[dict]:
    since = now - _dt.timedelta(minutes=settings.aggregation_window_min)
    snaps = (
        notifications_col(uid)
        .where(filter=FieldFilter("data.postId", "==", post_id))
        .where(filter=FieldFilter("createdAt", ">=", since))
        .order_by("createdAt", direction=firestore.Query.DESCENDING)
        .limit(settings.aggregation_limit)
        .get()
    )
    return [s.to_dict() or {} for s in snaps]


def _disable_invalid_tokens(res, tokens: List[str], refs: list) -> int:
    disabled = 0
    for idx, r in enumerate(res.responses):
        if r.success or not is_invalid_token_error(r.exception):
            continue
        try:
            devices.disable_device_ref(refs[idx], DisableReason.INVALID_TOKEN.value)
            disabled += 1
        except Exception as e:
            log.warning("Failed to disable invalid token %s...: %s", tokens[idx][:12], e)
    return disabled


def send_push_for_notification(uid: str, nid: str, notif: Optional[dict],
                               now: Optional[_dt.datetime] = None):
    notif = notif or {}
    nref = notifications_col(uid).document(nid)
    correlation_id = uuid.uuid4().hex[:8]
    aggregation_applied = False
    try:
        if not notif.get("sendPush"):
            log.debug("sendPush disabled on notification", extra={"uid": uid, "nid": nid})
            return None
        # stored doc wins: a redelivered event still carries the original `pending`
        snap = nref.get()
        status = (snap.to_dict() or {}).get("pushStatus") if snap.exists else notif.get("pushStatus")
        if status and status != PushStatus.PENDING.value:
            return None  # already handled by an earlier delivery of this event

        now = now or _dt.datetime.now(_dt.timezone.utc)
        ntype = notif.get("type")

        prefs = get_prefs(uid)
        if prefs.get(ntype) is False:
            log.debug("Notification type disabled in prefs", extra={"uid": uid, "type": ntype})
            nref.update({"pushStatus": PushStatus.SKIPPED_PREFS.value})
            return None

        if evaluate_quiet_hours(now, prefs.get("quietHours")):
            nref.update({"pushStatus": PushStatus.SUPPRESSED_QUIET_HOURS.value})
            return None

        title, body = notif.get("title"), notif.get("body")
        post_id = (notif.get("data") or {}).get("postId")
        if ntype in AGGREGATABLE_TYPES and post_id:
            try:
                recent = _recent_post_activity(uid, post_id, now)
                summary = aggregate_activity(notif, recent)
                aggregation_applied = (summary["title"], summary["body"]) != (title, body)
                title, body = summary["title"], summary["body"]
            except Exception as e:
                log.debug("Aggregation window query failed, using single notification: %s", e)

        device_count, tokens, refs = devices.enabled_fcm_targets(uid)
        if not device_count:
            nref.update({"pushStatus": PushStatus.NO_DEVICES.value})
            return None
        if not tokens:
            nref.update({"pushStatus": PushStatus.NO_FCM_TOKENS.value})
            return None

        res = send_multicast(build_message(tokens, title or "Notification", body or "", notif))
        success, failure = res.success_count, res.failure_count
        _disable_invalid_tokens(res, tokens, refs)

        nref.update({
            "pushStatus": resolve_push_status(success, failure),
            "pushSentAt": gcp_clients.server_ts(),
            "pushMeta": {"success": success, "failure": failure},
        })
        log.info(
            "Push notification sent",
            extra={
                "uid": uid, "nid": nid, "success": success, "failure": failure,
                "correlationId": correlation_id, "aggregationApplied": aggregation_applied,
            },
        )
    except Exception:
        log.exception("send_push_for_notification failed uid=%s nid=%s correlationId=%s",
                      uid, nid, correlation_id)
        try:
            nref.update({"pushStatus": PushStatus.ERROR.value})
        except Exception as e:
            log.warning("Could not record error status for nid=%s: %s", nid, e)
    return None
