"""
Shared pytest fixtures: an in-memory Firestore stand-in and a FastAPI client.

The fake covers the slice of the Firestore client API the services use:
document/collection refs, FieldFilter queries with order_by/limit,
collection groups, buffered transactions and batches, SERVER_TIMESTAMP and
Increment transforms.
"""
from __future__ import annotations

import copy
import datetime as _dt
import uuid
from types import SimpleNamespace

import pytest
from google.api_core.exceptions import NotFound
from google.cloud import firestore
from google.cloud.firestore_v1.transforms import Increment

from app.core.config import settings
from app.services import gcp_clients

_MISSING = object()

_OPS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "in": lambda a, b: a in b,
    "array_contains": lambda a, b: isinstance(a, list) and b in a,
}


def _lookup(doc: dict, field_path: str):
    cur = doc
    for part in field_path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


class FakeSnapshot:
    def __init__(self, ref, data):
        self.reference = ref
        self.id = ref.id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None

    def get(self, field_path):
        val = _lookup(self._data or {}, field_path)
        return None if val is _MISSING else val


class FakeDocRef:
    def __init__(self, db, path: str):
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def collection(self, name: str):
        return FakeCollection(self._db, f"{self.path}/{name}")

    def get(self, transaction=None, **_):
        return FakeSnapshot(self, copy.deepcopy(self._db.docs.get(self.path)))

    def set(self, data, merge=False):
        self._db._apply_set(self.path, data, merge)

    def update(self, data):
        self._db._apply_update(self.path, data)

    def delete(self):
        self._db.docs.pop(self.path, None)


class FakeQuery:
    def __init__(self, db, matcher, filters=(), orders=(), limit_n=None):
        self._db = db
        self._matcher = matcher
        self._filters = list(filters)
        self._orders = list(orders)
        self._limit = limit_n

    def _clone(self, **kw):
        return FakeQuery(
            self._db, self._matcher,
            kw.get("filters", self._filters),
            kw.get("orders", self._orders),
            kw.get("limit_n", self._limit),
        )

    def where(self, field_path=None, op_string=None, value=None, *, filter=None):
        if filter is not None:
            field_path, op_string, value = filter.field_path, filter.op_string, filter.value
        return self._clone(filters=self._filters + [(field_path, op_string, value)])

    def order_by(self, field_path, direction="ASCENDING"):
        return self._clone(orders=self._orders + [(field_path, direction)])

    def limit(self, n):
        return self._clone(limit_n=n)

    def get(self, transaction=None, **_):
        if self._db.fail_queries:
            raise RuntimeError("query failed")
        rows = []
        for path, data in sorted(self._db.docs.items()):
            if not self._matcher(path):
                continue
            ok = True
            for field, op, value in self._filters:
                got = _lookup(data, field)
                if got is _MISSING or not _OPS[op](got, value):
                    ok = False
                    break
            if ok:
                rows.append((path, data))
        for field, direction in reversed(self._orders):
            rows = [r for r in rows if _lookup(r[1], field) is not _MISSING]
            rows.sort(key=lambda r: _lookup(r[1], field),
                      reverse=(direction == firestore.Query.DESCENDING))
        if self._limit is not None:
            rows = rows[: self._limit]
        return [FakeSnapshot(FakeDocRef(self._db, p), copy.deepcopy(d)) for p, d in rows]

    def stream(self, transaction=None, **_):
        return iter(self.get())


class FakeCollection(FakeQuery):
    def __init__(self, db, path: str):
        super().__init__(db, lambda p: p.rsplit("/", 1)[0] == path)
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def document(self, doc_id=None):
        return FakeDocRef(self._db, f"{self.path}/{doc_id or uuid.uuid4().hex[:20]}")


class FakeWriteBuffer:
    """Buffered writes applied on commit (transactions and batches)."""

    def __init__(self, db):
        self._db = db
        self._ops = []

    def set(self, ref, data, merge=False):
        self._ops.append(lambda: ref.set(data, merge=merge))

    def update(self, ref, data):
        self._ops.append(lambda: ref.update(data))

    def delete(self, ref):
        self._ops.append(ref.delete)

    def commit(self):
        for op in self._ops:
            op()
        self._ops = []


class FakeFirestore:
    def __init__(self):
        self.docs = {}
        self.now = _dt.datetime.now(_dt.timezone.utc)
        self.fail_queries = False

    # client surface
    def collection(self, name: str):
        return FakeCollection(self, name)

    def collection_group(self, name: str):
        return FakeQuery(self, lambda p: p.rsplit("/", 2)[-2] == name)

    def batch(self):
        return FakeWriteBuffer(self)

    def run_transaction(self, fn, *args, **kwargs):
        txn = FakeWriteBuffer(self)
        result = fn(txn, *args, **kwargs)
        txn.commit()
        return result

    # test helpers
    def seed(self, path: str, data: dict):
        self.docs[path] = copy.deepcopy(data)

    def data(self, path: str):
        return self.docs.get(path)

    def children(self, coll_path: str) -> dict:
        return {p: d for p, d in self.docs.items() if p.rsplit("/", 1)[0] == coll_path}

    # transforms
    def _resolve(self, value, current=_MISSING):
        if value is firestore.SERVER_TIMESTAMP:
            return self.now
        if isinstance(value, Increment):
            base = current if isinstance(current, (int, float)) else 0
            return base + value.value
        if isinstance(value, dict):
            return {k: self._resolve(v) for k, v in value.items()}
        return value

    def _merge(self, target: dict, data: dict):
        for k, v in data.items():
            if isinstance(v, dict) and isinstance(target.get(k), dict):
                self._merge(target[k], v)
            else:
                target[k] = self._resolve(v, target.get(k, _MISSING))

    def _apply_set(self, path, data, merge):
        if merge and path in self.docs:
            self._merge(self.docs[path], data)
        else:
            self.docs[path] = {}
            self._merge(self.docs[path], data)

    def _apply_update(self, path, data):
        if path not in self.docs:
            raise NotFound(f"No document to update: {path}")
        doc = self.docs[path]
        for key, v in data.items():
            parts = key.split(".")
            cur = doc
            for part in parts[:-1]:
                cur = cur.setdefault(part, {})
            cur[parts[-1]] = self._resolve(v, cur.get(parts[-1], _MISSING))


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeFirestore()
    monkeypatch.setattr(gcp_clients, "get_firestore_client", lambda: db)
    monkeypatch.setattr(gcp_clients, "run_transaction", db.run_transaction)
    monkeypatch.setattr(gcp_clients, "get_firebase_app", lambda: None)
    return db


def batch_response(*outcomes):
    """Build an FCM BatchResponse look-alike: True = delivered, else the exception."""
    responses = [
        SimpleNamespace(success=o is True, exception=None if o is True else o)
        for o in outcomes
    ]
    ok = sum(1 for r in responses if r.success)
    return SimpleNamespace(success_count=ok, failure_count=len(responses) - ok, responses=responses)


@pytest.fixture
def sent_messages(monkeypatch):
    """Capture multicast messages; set `.outcomes` to script the provider reply."""
    from app.services import push

    box = SimpleNamespace(messages=[], outcomes=None)

    def _send(message):
        box.messages.append(message)
        outcomes = box.outcomes if box.outcomes is not None else [True] * len(message.tokens)
        return batch_response(*outcomes)

    monkeypatch.setattr(push, "send_multicast", _send)
    return box


@pytest.fixture
def client(fake_db, monkeypatch):
    from fastapi.testclient import TestClient
    from app.main import app
    from app.services.auth import get_current_user

    monkeypatch.setattr(settings, "proxy_key", "test-proxy-key")
    app.dependency_overrides[get_current_user] = lambda: {"uid": "u1", "email": "u1@example.com"}
    yield TestClient(app)
    app.dependency_overrides.clear()
