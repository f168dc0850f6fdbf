"""Key/value system settings stored as JSON in the application database."""

from __future__ import annotations

import json
import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Optional

EMAIL_NOTIFICATIONS_KEY = "email_notifications"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class NotificationSettingsError(ValueError):
    """Raised when notification settings fail validation."""


@dataclass
class NotificationSettings:
    enabled: bool = False
    recipient_email: str = ""
    sender_email: str = ""

    @property
    def is_active(self) -> bool:
        """True when a tick has everything it needs to send reminders."""
        return bool(self.enabled and self.recipient_email and self.sender_email)

    def to_json(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "recipientEmail": self.recipient_email,
            "senderEmail": self.sender_email,
        }

    @classmethod
    def from_json(cls, payload: Optional[Dict[str, Any]]) -> "NotificationSettings":
        payload = payload or {}
        return cls(
            enabled=bool(payload.get("enabled", False)),
            recipient_email=(payload.get("recipientEmail") or "").strip(),
            sender_email=(payload.get("senderEmail") or "").strip(),
        )


def get_setting(conn: sqlite3.Connection, key: str, default: Any = None) -> Any:
    row = conn.execute("SELECT value FROM system_settings WHERE key = ?", (key,)).fetchone()
    if row is None:
        return default
    return json.loads(row["value"])


def save_setting(conn: sqlite3.Connection, key: str, value: Any) -> None:
    conn.execute(
        """
        INSERT INTO system_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, json.dumps(value)),
    )
    conn.commit()


def insert_setting_if_absent(conn: sqlite3.Connection, key: str, value: Any) -> bool:
    """Insert ``key`` only when it does not exist yet; return whether it was inserted."""
    cur = conn.execute(
        """
        INSERT INTO system_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO NOTHING
        """,
        (key, json.dumps(value)),
    )
    conn.commit()
    return cur.rowcount > 0


def delete_setting(conn: sqlite3.Connection, key: str) -> bool:
    cur = conn.execute("DELETE FROM system_settings WHERE key = ?", (key,))
    conn.commit()
    return cur.rowcount > 0


def list_settings(conn: sqlite3.Connection, prefix: str = "") -> Dict[str, Any]:
    # LIKE would treat "_" in keys as a wildcard, so match the prefix with substr.
    rows = conn.execute(
        """
        SELECT key, value FROM system_settings
        WHERE substr(key, 1, ?) = ?
        ORDER BY key
        """,
        (len(prefix), prefix),
    ).fetchall()
    return {row["key"]: json.loads(row["value"]) for row in rows}


def load_notification_settings(conn: sqlite3.Connection) -> NotificationSettings:
    return NotificationSettings.from_json(get_setting(conn, EMAIL_NOTIFICATIONS_KEY))


def save_notification_settings(conn: sqlite3.Connection, settings: NotificationSettings) -> None:
    for label, value in (("recipient", settings.recipient_email), ("sender", settings.sender_email)):
        if value and not _EMAIL_RE.match(value):
            raise NotificationSettingsError(f"Invalid {label} email address: {value!r}")
    if settings.enabled and not (settings.recipient_email and settings.sender_email):
        raise NotificationSettingsError(
            "Recipient and sender email are both required to enable notifications"
        )
    save_setting(conn, EMAIL_NOTIFICATIONS_KEY, settings.to_json())
