"""Notification markers proving a hearing reminder was already dispatched.

Markers are rows of the generic ``system_settings`` table keyed by
``hearing_notification_{case_id}_{hearing_type}_{timestamp}``. The timestamp
is the hearing value exactly as stored on the case, so editing a hearing date
produces a fresh key and a fresh reminder.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from services.db import open_app_db
from services.system_settings import (
    delete_setting,
    get_setting,
    insert_setting_if_absent,
    list_settings,
)

logger = logging.getLogger("hearings.ledger")

MARKER_PREFIX = "hearing_notification_"


def marker_key(case_id: int, hearing_type: str, timestamp: str) -> str:
    return f"{MARKER_PREFIX}{case_id}_{hearing_type}_{timestamp}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationLedger:
    """sqlite-backed dedup ledger.

    Each call opens its own short-lived connection so the ledger can be used
    from the scheduler's worker thread as well as from request handlers.
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)

    def _marker_value(
        self,
        case_id: int,
        hearing_type: str,
        timestamp: str,
        metadata: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        value: Dict[str, Any] = dict(metadata or {})
        value.setdefault("sentAt", _utcnow().isoformat())
        value.update(caseId=case_id, hearingType=hearing_type, hearingDateTime=timestamp)
        return value

    def has_sent(self, case_id: int, hearing_type: str, timestamp: str) -> bool:
        with open_app_db(self.db_path) as conn:
            return get_setting(conn, marker_key(case_id, hearing_type, timestamp)) is not None

    def record_sent(
        self,
        case_id: int,
        hearing_type: str,
        timestamp: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Persist a marker; a second call for the same key leaves the first marker untouched."""
        if not self.claim(case_id, hearing_type, timestamp, metadata):
            logger.debug(
                "Marker for case #%s %s %s already recorded", case_id, hearing_type, timestamp
            )

    def claim(
        self,
        case_id: int,
        hearing_type: str,
        timestamp: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Insert the marker only if absent; True means this caller owns it."""
        key = marker_key(case_id, hearing_type, timestamp)
        value = self._marker_value(case_id, hearing_type, timestamp, metadata)
        with open_app_db(self.db_path) as conn:
            return insert_setting_if_absent(conn, key, value)

    def release(self, case_id: int, hearing_type: str, timestamp: str) -> bool:
        """Drop a claimed marker after a confirmed delivery failure."""
        with open_app_db(self.db_path) as conn:
            return delete_setting(conn, marker_key(case_id, hearing_type, timestamp))

    def list_markers(self) -> List[Dict[str, Any]]:
        with open_app_db(self.db_path) as conn:
            markers = list_settings(conn, MARKER_PREFIX)
        return [dict(value, key=key) for key, value in markers.items()]

    def purge_markers(self, older_than: datetime) -> int:
        """Delete markers whose ``sentAt`` predates ``older_than``; return how many went."""
        if older_than.tzinfo is None:
            older_than = older_than.replace(tzinfo=timezone.utc)

        removed = 0
        with open_app_db(self.db_path) as conn:
            for key, value in list_settings(conn, MARKER_PREFIX).items():
                sent_at = _parse_sent_at(value.get("sentAt") if isinstance(value, dict) else None)
                if sent_at is None:
                    logger.warning("Marker %s has no readable sentAt; keeping it", key)
                    continue
                if sent_at < older_than and delete_setting(conn, key):
                    removed += 1
        if removed:
            logger.info("Purged %d notification marker(s) older than %s", removed, older_than.isoformat())
        return removed


def _parse_sent_at(raw: Any) -> Optional[datetime]:
    if not isinstance(raw, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
