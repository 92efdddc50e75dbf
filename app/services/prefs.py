# app/services/prefs.py
"""users/{uid}/settings/notificationPrefs: per-type toggles plus quiet hours."""
from __future__ import annotations

import logging
import re
from typing import Optional

from app.models.notification import NotificationType
from app.services import gcp_clients

log = logging.getLogger(__name__)

ALLOWED_BOOLEAN_KEYS = tuple(t.value for t in NotificationType)
_HHMM_RX = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def prefs_ref(uid: str):
    return (
        gcp_clients.get_firestore_client()
        .collection("users").document(uid)
        .collection("settings").document("notificationPrefs")
    )

def sanitize_prefs(data: Optional[dict]) -> dict:
    """Keep only boolean type toggles and a well-formed quietHours block."""
    data = data or {}
    out = {k: data[k] for k in ALLOWED_BOOLEAN_KEYS if isinstance(data.get(k), bool)}

    qh = data.get("quietHours")
    if isinstance(qh, dict):
        start, end, tz = qh.get("start"), qh.get("end"), qh.get("timezone")
        if (
            isinstance(start, str) and _HHMM_RX.match(start)
            and isinstance(end, str) and _HHMM_RX.match(end)
            and isinstance(tz, str) and len(tz) < 100
        ):
            out["quietHours"] = {"start": start, "end": end, "timezone": tz}
    return out

def get_prefs(uid: str) -> dict:
    snap = prefs_ref(uid).get()
    return (snap.to_dict() or {}) if snap.exists else {}

def save_prefs(uid: str, data: dict) -> dict:
    clean = sanitize_prefs(data)
    prefs_ref(uid).set(clean)
    return clean

def on_prefs_written(uid: str, after: Optional[dict]):
    """Rewrite the prefs doc when a client stored unknown or malformed fields."""
    try:
        if after is None:
            return None  # deleted
        clean = sanitize_prefs(after)
        if clean != after:
            prefs_ref(uid).set(clean, merge=False)
            log.info("notificationPrefs sanitized", extra={"uid": uid})
    except Exception:
        log.exception("on_prefs_written failed for uid=%s", uid)
    return None
