# app/services/feed.py
"""Post like/comment counters and follower feed fan-out."""
from __future__ import annotations

import logging
from typing import List, Optional

from google.cloud.firestore_v1 import FieldFilter

from app.services import gcp_clients

log = logging.getLogger(__name__)

MAX_BATCH_WRITES = 500


def _db():
    return gcp_clients.get_firestore_client()


# ───────────────────────── Counters ─────────────────────────
def _txn_bump_counter(txn, ref, field: str, delta: int) -> Optional[int]:
    snap = ref.get(transaction=txn)
    if not snap.exists:
        return None
    current = (snap.to_dict() or {}).get(field)
    if isinstance(current, bool) or not isinstance(current, (int, float)):
        current = 0
    nxt = max(0, int(current) + delta)
    txn.update(ref, {field: nxt})
    return nxt

def update_post_counter(post_id: str, field: str, delta: int) -> Optional[int]:
    """Read-modify-write `posts/{post_id}.{field}`, floored at 0. Missing post -> None."""
    ref = _db().collection("posts").document(post_id)
    return gcp_clients.run_transaction(_txn_bump_counter, ref, field, delta)

def _counter_trigger(doc: Optional[dict], field: str, delta: int, name: str):
    post_id = (doc or {}).get("postId")
    if not post_id:
        return None
    try:
        update_post_counter(post_id, field, delta)
    except Exception:
        log.exception("%s failed for postId=%s", name, post_id)
    return None

def on_like_created(like: dict):
    return _counter_trigger(like, "likeCount", 1, "on_like_created")

def on_like_deleted(like: dict):
    return _counter_trigger(like, "likeCount", -1, "on_like_deleted")

def on_comment_created(comment: dict):
    return _counter_trigger(comment, "commentCount", 1, "on_comment_created")

def on_comment_deleted(comment: dict):
    return _counter_trigger(comment, "commentCount", -1, "on_comment_deleted")


# ───────────────────────── Fan-out ─────────────────────────
def follower_ids(author_id: str) -> List[str]:
    snaps = _db().collection("follows").where(filter=FieldFilter("followedId", "==", author_id)).stream()
    return [(s.to_dict() or {}).get("followerId") for s in snaps]

def fan_out_post(post_id: str, post: dict) -> int:
    """Write a feed item for the author and each follower. Returns the number written."""
    author = (post or {}).get("userId")
    if not post_id or not author:
        return 0
    targets = list(dict.fromkeys([author] + [f for f in follower_ids(author) if f]))
    item = {
        "postId": post_id,
        "authorId": author,
        "timestamp": post.get("timestamp") or gcp_clients.server_ts(),
    }
    db = _db()
    feeds = db.collection("userFeeds")
    written = 0
    for i in range(0, len(targets), MAX_BATCH_WRITES):
        batch = db.batch()
        for uid in targets[i:i + MAX_BATCH_WRITES]:
            batch.set(feeds.document(uid).collection("feedItems").document(post_id), item)
        batch.commit()
        written += len(targets[i:i + MAX_BATCH_WRITES])
    log.info("fan_out_post", extra={"postId": post_id, "targets": written})
    return written

def on_post_created(post_id: str, post: dict):
    try:
        fan_out_post(post_id, post)
    except Exception:
        log.exception("on_post_created fan-out failed for postId=%s", post_id)
    return None
