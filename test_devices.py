import datetime as dt

from app.services import devices

NOW = dt.datetime(2025, 10, 1, 12, 0, tzinfo=dt.timezone.utc)
CUTOFF = NOW - dt.timedelta(days=30)


def test_register_device_id_and_fields(fake_db):
    token = "abcdefghijklmnopqrstuvwxyz0123456789"
    device_id = devices.register_device("u1", token)
    assert device_id == "web_0123456789"
    doc = fake_db.data(f"users/u1/devices/{device_id}")
    assert doc == {
        "platform": "web",
        "provider": "fcm",
        "token": token,
        "enabled": True,
        "lastSeenAt": fake_db.now,
    }


def test_reregister_revives_disabled_device(fake_db):
    device_id = devices.register_device("u1", "token-0000000001", platform="ios")
    devices.disable_device("u1", device_id)
    assert fake_db.data(f"users/u1/devices/{device_id}")["enabled"] is False

    assert devices.register_device("u1", "token-0000000001", platform="ios") == device_id
    doc = fake_db.data(f"users/u1/devices/{device_id}")
    assert doc["enabled"] is True
    # merge keeps the audit fields of the earlier disable
    assert doc["disableReason"] == "user"


def test_disable_unknown_device(fake_db):
    assert devices.disable_device("u1", "web_missing") is False


def test_enabled_fcm_targets(fake_db):
    fake_db.seed("users/u1/devices/a", {"enabled": True, "provider": "fcm", "token": "t-a"})
    fake_db.seed("users/u1/devices/b", {"enabled": True, "provider": "apns", "token": "t-b"})
    fake_db.seed("users/u1/devices/c", {"enabled": False, "provider": "fcm", "token": "t-c"})
    count, tokens, refs = devices.enabled_fcm_targets("u1")
    assert count == 2
    assert tokens == ["t-a"]
    assert [r.id for r in refs] == ["a"]


def test_is_stale_device():
    fresh = {"token": "t", "provider": "fcm", "lastSeenAt": NOW - dt.timedelta(days=1)}
    old = {"token": "t", "provider": "fcm", "lastSeenAt": NOW - dt.timedelta(days=31)}
    created_old = {"token": "t", "provider": "fcm", "createdAt": NOW - dt.timedelta(days=45)}
    no_dates = {"token": "t", "provider": "fcm"}
    naive_old = {"token": "t", "provider": "fcm", "lastSeenAt": dt.datetime(2025, 1, 1)}

    assert devices.is_stale_device(fresh, CUTOFF) is False
    assert devices.is_stale_device(old, CUTOFF) is True
    assert devices.is_stale_device(created_old, CUTOFF) is True
    assert devices.is_stale_device(no_dates, CUTOFF) is False
    assert devices.is_stale_device(naive_old, CUTOFF) is True
    assert devices.is_stale_device({"provider": "fcm"}, CUTOFF) is True
    assert devices.is_stale_device({"token": "t"}, CUTOFF) is True


def test_prune_stale_devices(fake_db):
    fake_db.seed("users/u1/devices/fresh", {
        "enabled": True, "token": "t1", "provider": "fcm", "lastSeenAt": NOW - dt.timedelta(days=2),
    })
    fake_db.seed("users/u2/devices/old", {
        "enabled": True, "token": "t2", "provider": "fcm", "lastSeenAt": NOW - dt.timedelta(days=60),
    })
    fake_db.seed("users/u2/devices/broken", {"enabled": True, "provider": "fcm"})
    fake_db.seed("users/u3/devices/off", {
        "enabled": False, "token": "t3", "provider": "fcm", "lastSeenAt": NOW - dt.timedelta(days=90),
    })

    assert devices.prune_stale_devices(now=NOW) == {"processed": 3, "disabled": 2}
    assert fake_db.data("users/u1/devices/fresh")["enabled"] is True
    assert fake_db.data("users/u2/devices/old")["disableReason"] == "stale"
    assert fake_db.data("users/u2/devices/broken")["enabled"] is False
    assert "disableReason" not in fake_db.data("users/u3/devices/off")


def test_prune_batch_limit(fake_db, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "prune_batch_size", 2)
    for i in range(4):
        fake_db.seed(f"users/u{i}/devices/d", {"enabled": True, "token": "t", "provider": "fcm",
                                               "lastSeenAt": NOW - dt.timedelta(days=99)})
    assert devices.prune_stale_devices(now=NOW) == {"processed": 2, "disabled": 2}
    # next run picks up the rest
    assert devices.prune_stale_devices(now=NOW) == {"processed": 2, "disabled": 2}
    assert devices.prune_stale_devices(now=NOW) == {"processed": 0, "disabled": 0}


def test_prune_failure_is_logged_not_raised(fake_db):
    fake_db.fail_queries = True
    assert devices.prune_stale_devices(now=NOW) == {"processed": 0, "disabled": 0}
