import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from premium_gateway import models
from premium_gateway.errors import StoreError


def test_get_missing_user_returns_none(store):
    assert store.get("nobody") is None


def test_set_creates_record_with_timestamps(store):
    record = store.set("u1", {"email": "a@b.com", "premium": False})

    assert record.id == "u1"
    assert record.email == "a@b.com"
    assert record.premium is False
    assert record.created_at is not None
    assert record.updated_at is not None
    assert record.premium_updated_at is not None


def test_merge_keeps_fields_absent_from_partial_record(store):
    store.set("u1", {"email": "a@b.com", "password_hash": "hash"})
    store.set("u1", {"premium": True}, merge=True)

    record = store.get("u1")
    assert record.email == "a@b.com"
    assert record.password_hash == "hash"
    assert record.premium is True


def test_premium_timestamp_only_moves_when_premium_written(store):
    first = store.set("u1", {"email": "a@b.com"})
    assert first.premium_updated_at is None

    second = store.set("u1", {"premium": True})
    third = store.set("u1", {"email": "c@d.com"})
    assert third.premium_updated_at == second.premium_updated_at


def test_set_without_merge_resets_missing_fields(store):
    store.set("u1", {"email": "a@b.com", "password_hash": "hash", "premium": True})
    store.set("u1", {"email": "new@b.com"}, merge=False)

    record = store.get("u1")
    assert record.email == "new@b.com"
    assert record.password_hash is None
    assert record.premium is False


def test_unknown_fields_rejected(store):
    with pytest.raises(ValueError):
        store.set("u1", {"role": "admin"})


def test_query_by_email_returns_all_matches(store):
    store.set("u1", {"email": "shared@b.com"})
    store.set("u2", {"email": "shared@b.com"})
    store.set("u3", {"email": "other@b.com"})

    ids = {record.id for record in store.query("email", "shared@b.com")}
    assert ids == {"u1", "u2"}
    assert store.query("email", "missing@b.com") == []


def test_query_only_supports_email(store):
    with pytest.raises(ValueError):
        store.query("premium", True)


def test_set_premium_writes_flag_and_ledger_together(store):
    store.set("u1", {"email": "a@b.com", "premium": False})

    record = store.set_premium("u1", True, "capture", "ORDER-1")
    store.set_premium("u1", False, "admin")

    assert record.premium is True
    assert store.get("u1").premium is False
    history = store.entitlement_history("u1")
    assert [(row["premium"], row["source"], row["reference"]) for row in history] == [
        (True, "capture", "ORDER-1"),
        (False, "admin", None),
    ]
    assert store.entitlement_history("u2") == []


def test_set_premium_for_unknown_user_writes_nothing(store):
    assert store.set_premium("ghost", True, "webhook") is None
    assert store.get("ghost") is None
    assert store.entitlement_history("ghost") == []


def test_failed_ledger_insert_leaves_premium_unchanged(store):
    store.set("u1", {"premium": False})

    def fail_insert(mapper, connection, target):
        raise OperationalError("INSERT INTO entitlement_events", {}, Exception("disk I/O error"))

    event.listen(models.EntitlementEvent, "before_insert", fail_insert)
    try:
        with pytest.raises(StoreError):
            store.set_premium("u1", True, "capture", "ORDER-1")
    finally:
        event.remove(models.EntitlementEvent, "before_insert", fail_insert)

    assert store.get("u1").premium is False
    assert store.entitlement_history("u1") == []
