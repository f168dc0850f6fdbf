from datetime import datetime, timedelta, timezone

from services.db import open_app_db
from services.ledger import NotificationLedger, marker_key
from services.system_settings import get_setting, list_settings


def test_marker_key_includes_exact_timestamp():
    assert marker_key(42, "first_instance", "23-08-2025 10:00") == (
        "hearing_notification_42_first_instance_23-08-2025 10:00"
    )


def test_record_then_has_sent(ledger: NotificationLedger):
    assert not ledger.has_sent(42, "first_instance", "23-08-2025 10:00")

    ledger.record_sent(42, "first_instance", "23-08-2025 10:00")

    assert ledger.has_sent(42, "first_instance", "23-08-2025 10:00")
    assert not ledger.has_sent(42, "appeal", "23-08-2025 10:00")
    assert not ledger.has_sent(42, "first_instance", "24-08-2025 10:00")


def test_marker_value_shape(ledger: NotificationLedger, db_path):
    ledger.record_sent(7, "appeal", "2025-09-01T09:00")

    with open_app_db(db_path) as conn:
        value = get_setting(conn, marker_key(7, "appeal", "2025-09-01T09:00"))

    assert value["caseId"] == 7
    assert value["hearingType"] == "appeal"
    assert value["hearingDateTime"] == "2025-09-01T09:00"
    assert datetime.fromisoformat(value["sentAt"]).tzinfo is not None


def test_recording_twice_keeps_single_original_marker(ledger: NotificationLedger, db_path):
    ledger.record_sent(1, "appeal", "2025-09-01T09:00", {"sentAt": "2025-08-31T09:00:00+00:00"})
    ledger.record_sent(1, "appeal", "2025-09-01T09:00", {"sentAt": "2025-08-31T10:00:00+00:00"})

    markers = ledger.list_markers()
    assert len(markers) == 1
    assert markers[0]["sentAt"] == "2025-08-31T09:00:00+00:00"

    with open_app_db(db_path) as conn:
        assert len(list_settings(conn, "hearing_notification_")) == 1


def test_claim_is_exclusive_and_release_undoes_it(ledger: NotificationLedger):
    assert ledger.claim(3, "first_instance", "2025-08-23T10:00") is True
    assert ledger.claim(3, "first_instance", "2025-08-23T10:00") is False
    assert ledger.has_sent(3, "first_instance", "2025-08-23T10:00")

    assert ledger.release(3, "first_instance", "2025-08-23T10:00") is True
    assert not ledger.has_sent(3, "first_instance", "2025-08-23T10:00")
    assert ledger.release(3, "first_instance", "2025-08-23T10:00") is False


def test_purge_removes_only_old_markers(ledger: NotificationLedger):
    now = datetime.now(timezone.utc)
    ledger.record_sent(1, "appeal", "old", {"sentAt": (now - timedelta(days=45)).isoformat()})
    ledger.record_sent(2, "appeal", "recent", {"sentAt": (now - timedelta(days=2)).isoformat()})
    ledger.record_sent(3, "appeal", "unreadable", {"sentAt": "yesterday-ish"})

    removed = ledger.purge_markers(now - timedelta(days=30))

    assert removed == 1
    assert not ledger.has_sent(1, "appeal", "old")
    assert ledger.has_sent(2, "appeal", "recent")
    assert ledger.has_sent(3, "appeal", "unreadable")


def test_markers_do_not_leak_into_other_settings(ledger: NotificationLedger, db_path):
    ledger.record_sent(1, "appeal", "2025-09-01T09:00")
    with open_app_db(db_path) as conn:
        assert list_settings(conn, "email_") == {}
