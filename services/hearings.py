"""Hearing timestamp parsing and notification window matching.

Hearing timestamps are entered by hand in the case register and arrive in
two shapes: the ISO form produced by ``datetime-local`` inputs
(``2025-01-22T14:30``, optionally with seconds, milliseconds and a ``Z`` or
offset suffix) and the day-first form typed by staff (``22-01-2025 14:30``,
sometimes with slashes). Both are reduced to a naive wall-clock
``datetime`` in the register's timezone before comparison.

The window is measured in wall-clock hours, not elapsed time: a hearing at
10:00 is matched from 10:00 the previous day even when a DST change in
between makes that 23 or 25 real hours. Staff and courts reason in local
times, and the reminder says "tomorrow at 10:00".

Everything here fails closed: an unreadable timestamp is never a match and
never raises.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from hearings_config import DEFAULT_TIMEZONE, WINDOW_END_HOURS, WINDOW_START_HOURS
from services.cases import CaseRecord

logger = logging.getLogger("hearings.scheduler")

FIRST_INSTANCE = "first_instance"
APPEAL = "appeal"

# (hearing type, CaseRecord attribute) in evaluation order.
HEARING_FIELDS: Tuple[Tuple[str, str], ...] = (
    (FIRST_INSTANCE, "first_instance_hearing"),
    (APPEAL, "appeal_hearing"),
)

_DAY_FIRST_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$")
_SHORT_HOUR_RE = re.compile(r"^(\d):")


@dataclass
class HearingCandidate:
    case_id: int
    hearing_type: str
    plaintiff_name: str
    defendant_name: str
    raw_timestamp: str
    hearing_at: datetime

    @property
    def hearing_datetime_iso(self) -> str:
        return self.hearing_at.isoformat(timespec="minutes")

    def to_json(self) -> Dict[str, Any]:
        return {
            "caseId": self.case_id,
            "hearingType": self.hearing_type,
            "plaintiffName": self.plaintiff_name,
            "defendantName": self.defendant_name,
            "hearingTimestamp": self.raw_timestamp,
            "hearingDateTime": self.hearing_datetime_iso,
        }


def local_now(tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """Current wall-clock time in ``tz_name`` as a naive datetime."""
    return datetime.now(_zone(tz_name)).replace(tzinfo=None)


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to %s", tz_name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def normalize_hearing_text(raw: str) -> str:
    """Rewrite ``DD-MM-YYYY HH:MM`` (or ``DD/MM/YYYY``) as ``YYYY-MM-DDTHH:MM``.

    Anything else is returned stripped but otherwise unchanged.
    """
    text = raw.strip()
    if " " not in text or "T" in text:
        return text

    date_part, _, time_part = text.partition(" ")
    match = _DAY_FIRST_RE.match(date_part)
    if not match:
        return text
    day, month, year = match.groups()
    time_part = _SHORT_HOUR_RE.sub(r"0\1:", time_part.strip())
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}T{time_part}"


def parse_hearing_datetime(raw: Any, tz_name: str = DEFAULT_TIMEZONE) -> Optional[datetime]:
    """Parse a stored hearing timestamp, or return ``None`` if it is unusable."""
    if not isinstance(raw, str) or not raw.strip():
        return None

    try:
        parsed = datetime.fromisoformat(normalize_hearing_text(raw))
    except ValueError:
        logger.debug("Unparsable hearing timestamp %r", raw)
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(_zone(tz_name)).replace(tzinfo=None)
    return parsed


def notification_window(
    now: datetime,
    start_hours: float = WINDOW_START_HOURS,
    end_hours: float = WINDOW_END_HOURS,
) -> Tuple[datetime, datetime]:
    return now + timedelta(hours=start_hours), now + timedelta(hours=end_hours)


def is_within_window(
    hearing_at: datetime,
    now: datetime,
    start_hours: float = WINDOW_START_HOURS,
    end_hours: float = WINDOW_END_HOURS,
) -> bool:
    window_start, window_end = notification_window(now, start_hours, end_hours)
    return window_start <= hearing_at <= window_end


def evaluate_hearing(
    raw: Any,
    now: datetime,
    start_hours: float = WINDOW_START_HOURS,
    end_hours: float = WINDOW_END_HOURS,
    tz_name: str = DEFAULT_TIMEZONE,
) -> Optional[datetime]:
    """Return the parsed hearing time when it falls inside the window, else ``None``."""
    hearing_at = parse_hearing_datetime(raw, tz_name)
    if hearing_at is None:
        return None
    if not is_within_window(hearing_at, now, start_hours, end_hours):
        return None
    return hearing_at


def find_candidates(
    records: Iterable[CaseRecord],
    now: datetime,
    start_hours: float = WINDOW_START_HOURS,
    end_hours: float = WINDOW_END_HOURS,
    tz_name: str = DEFAULT_TIMEZONE,
) -> List[HearingCandidate]:
    """Collect every hearing due for a reminder, in record order."""
    candidates: List[HearingCandidate] = []
    for record in records:
        for hearing_type, attr in HEARING_FIELDS:
            raw = getattr(record, attr, None)
            if not raw:
                continue
            hearing_at = evaluate_hearing(raw, now, start_hours, end_hours, tz_name)
            if hearing_at is None:
                continue
            logger.info(
                "Case #%s %s hearing at %s is inside the notification window",
                record.id,
                hearing_type,
                hearing_at.isoformat(timespec="minutes"),
            )
            candidates.append(
                HearingCandidate(
                    case_id=record.id,
                    hearing_type=hearing_type,
                    plaintiff_name=record.plaintiff_name,
                    defendant_name=record.defendant_name,
                    raw_timestamp=raw,
                    hearing_at=hearing_at,
                )
            )
    return candidates


def format_hearing_datetime(value: datetime) -> str:
    """Render a hearing time the way the register displays it (``DD-MM-YYYY HH:MM``)."""
    return value.strftime("%d-%m-%Y %H:%M")
