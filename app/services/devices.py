# app/services/devices.py
"""Push device tokens under users/{uid}/devices/{deviceId}."""
from __future__ import annotations

import datetime as _dt
import logging
from typing import Dict, List, Optional, Tuple

from google.cloud.firestore_v1 import FieldFilter

from app.core.config import settings
from app.models.notification import DisableReason
from app.services import gcp_clients

log = logging.getLogger(__name__)

FCM = "fcm"


def _db():
    return gcp_clients.get_firestore_client()

def devices_col(uid: str):
    return _db().collection("users").document(uid).collection("devices")

def device_id_for(token: str, platform: str = "web") -> str:
    return f"{platform}_{token[-10:]}"

def _as_utc(v) -> Optional[_dt.datetime]:
    if not isinstance(v, _dt.datetime):
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=_dt.timezone.utc)
    return v.astimezone(_dt.timezone.utc)


def register_device(uid: str, token: str, platform: str = "web", provider: str = FCM) -> str:
    """Upsert the device doc for this browser/app token and mark it live."""
    device_id = device_id_for(token, platform)
    devices_col(uid).document(device_id).set(
        {
            "platform": platform,
            "provider": provider,
            "token": token,
            "enabled": True,
            "lastSeenAt": gcp_clients.server_ts(),
        },
        merge=True,
    )
    return device_id

def disable_device_ref(ref, reason: str):
    ref.update({
        "enabled": False,
        "disabledAt": gcp_clients.server_ts(),
        "disableReason": reason,
    })

def disable_device(uid: str, device_id: str, reason: str = DisableReason.USER.value) -> bool:
    ref = devices_col(uid).document(device_id)
    if not ref.get().exists:
        return False
    disable_device_ref(ref, reason)
    return True

def enabled_fcm_targets(uid: str) -> Tuple[int, List[str], list]:
    """Return (enabled_device_count, fcm_tokens, matching_refs)."""
    snaps = devices_col(uid).where(filter=FieldFilter("enabled", "==", True)).get()
    tokens, refs = [], []
    for s in snaps:
        d = s.to_dict() or {}
        if d.get("provider") == FCM and d.get("token"):
            tokens.append(d["token"])
            refs.append(s.reference)
    return len(snaps), tokens, refs


# ───────────────────────── Stale pruning ─────────────────────────
def is_stale_device(device: dict, cutoff: _dt.datetime) -> bool:
    if not device.get("token") or not device.get("provider"):
        return True
    last_seen = _as_utc(device.get("lastSeenAt"))
    if last_seen:
        return last_seen < cutoff
    created = _as_utc(device.get("createdAt"))
    return bool(created and created < cutoff)

def prune_stale_devices(now: Optional[_dt.datetime] = None) -> Dict[str, int]:
    """Scheduled daily: disable enabled devices idle past the stale window."""
    now = _as_utc(now) or _dt.datetime.now(_dt.timezone.utc)
    cutoff = now - _dt.timedelta(days=settings.device_stale_days)
    processed = disabled = 0
    try:
        snaps = (
            _db().collection_group("devices")
            .where(filter=FieldFilter("enabled", "==", True))
            .limit(settings.prune_batch_size)
            .get()
        )
        if not snaps:
            log.info("prune_stale_devices: no enabled devices found (batch)")
            return {"processed": 0, "disabled": 0}
        for s in snaps:
            processed += 1
            if is_stale_device(s.to_dict() or {}, cutoff):
                disable_device_ref(s.reference, DisableReason.STALE.value)
                disabled += 1
        log.info("prune_stale_devices complete", extra={"processed": processed, "disabled": disabled})
    except Exception:
        log.exception("prune_stale_devices failed (processed=%s disabled=%s)", processed, disabled)
    return {"processed": processed, "disabled": disabled}
