"""Scheduler configuration resolved from stored settings and the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from services.settings import SettingsManager, get_settings_manager

logger = logging.getLogger("hearings.config")

# One poll per hour; a window one hour wide so a hearing is normally caught
# by exactly one tick.
CHECK_INTERVAL_SECONDS = 60 * 60
STARTUP_DELAY_SECONDS = 5
WINDOW_START_HOURS = 23
WINDOW_END_HOURS = 24
DEFAULT_TIMEZONE = "Europe/Tirane"
MARKER_RETENTION_DAYS = 0  # 0 keeps markers forever


@dataclass
class SchedulerConfig:
    database_path: Path
    check_interval_seconds: int = CHECK_INTERVAL_SECONDS
    startup_delay_seconds: int = STARTUP_DELAY_SECONDS
    window_start_hours: float = WINDOW_START_HOURS
    window_end_hours: float = WINDOW_END_HOURS
    timezone: str = DEFAULT_TIMEZONE
    reserve_before_send: bool = True
    marker_retention_days: int = MARKER_RETENTION_DAYS

    def __post_init__(self) -> None:
        self.database_path = Path(self.database_path)
        if self.window_end_hours <= self.window_start_hours:
            raise ValueError(
                "Notification window end must be later than its start "
                f"({self.window_start_hours}h..{self.window_end_hours}h)"
            )
        if self.check_interval_seconds <= 0:
            raise ValueError("Check interval must be a positive number of seconds")


def _coerce(raw: Any, cast: Callable[[Any], Any], default: Any, name: str) -> Any:
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid value %r for %s; using %r", raw, name, default)
        return default


def _as_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise ValueError(raw)


def load_scheduler_config(manager: Optional[SettingsManager] = None) -> SchedulerConfig:
    """Build the scheduler configuration.

    Environment variables win over values stored in ``settings.json``, which
    in turn win over the module defaults above.
    """

    manager = manager or get_settings_manager()

    db_path = os.environ.get("HEARINGS_DB_PATH") or manager.get("database_path")
    if not db_path:
        db_path = manager.paths.config_dir / "hearings.db"

    interval_raw = os.environ.get("HEARINGS_CHECK_INTERVAL") or manager.get("check_interval_seconds")
    timezone = os.environ.get("HEARINGS_TIMEZONE") or manager.get("timezone") or DEFAULT_TIMEZONE

    return SchedulerConfig(
        database_path=Path(db_path),
        check_interval_seconds=_coerce(
            interval_raw, int, CHECK_INTERVAL_SECONDS, "check_interval_seconds"
        ),
        startup_delay_seconds=_coerce(
            manager.get("startup_delay_seconds"), int, STARTUP_DELAY_SECONDS, "startup_delay_seconds"
        ),
        window_start_hours=_coerce(
            manager.get("window_start_hours"), float, WINDOW_START_HOURS, "window_start_hours"
        ),
        window_end_hours=_coerce(
            manager.get("window_end_hours"), float, WINDOW_END_HOURS, "window_end_hours"
        ),
        timezone=timezone,
        reserve_before_send=_coerce(
            manager.get("reserve_before_send"), _as_bool, True, "reserve_before_send"
        ),
        marker_retention_days=_coerce(
            manager.get("marker_retention_days"), int, MARKER_RETENTION_DAYS, "marker_retention_days"
        ),
    )
