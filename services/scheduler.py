"""Court hearing reminder scheduler.

Once an hour the scheduler loads every case, picks out hearings that start
between 23 and 24 hours from now, and emails a reminder for each one that the
ledger has not seen yet. The window is as wide as the poll interval, so a
hearing is normally caught by a single tick; the ledger covers the rest
(timer jitter, restarts, manual checks).

Nothing starts on import. The application calls :meth:`HearingScheduler.start`
during startup and :meth:`HearingScheduler.stop` on shutdown.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers import SchedulerNotRunningError
from apscheduler.schedulers.background import BackgroundScheduler

from hearings_config import SchedulerConfig, load_scheduler_config
from services.cases import CaseRecord, fetch_all_cases
from services.db import open_app_db
from services.email import HearingNotice, send_court_hearing_notification
from services.hearings import HearingCandidate, find_candidates, local_now
from services.ledger import NotificationLedger
from services.system_settings import NotificationSettings, load_notification_settings

logger = logging.getLogger("hearings.scheduler")

CHECK_JOB_ID = "court-hearing-check"
STARTUP_JOB_ID = "court-hearing-startup-check"

SettingsProvider = Callable[[], NotificationSettings]
CaseSource = Callable[[], Iterable[CaseRecord]]
NotificationSender = Callable[[str, str, HearingNotice], bool]

SKIP_DISABLED = "notifications_disabled"
SKIP_OVERLAP = "tick_in_progress"
SKIP_FETCH_FAILED = "case_fetch_failed"
SKIP_ERROR = "unexpected_error"


@dataclass
class TickReport:
    """Outcome of one evaluation pass."""

    now: datetime
    skipped_reason: Optional[str] = None
    candidates: List[HearingCandidate] = field(default_factory=list)
    sent: List[HearingCandidate] = field(default_factory=list)
    already_sent: List[HearingCandidate] = field(default_factory=list)
    failed: List[HearingCandidate] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    purged_markers: int = 0

    def to_json(self) -> Dict[str, Any]:
        return {
            "now": self.now.isoformat(timespec="seconds"),
            "skippedReason": self.skipped_reason,
            "candidates": [c.to_json() for c in self.candidates],
            "sent": [c.to_json() for c in self.sent],
            "alreadySent": [c.to_json() for c in self.already_sent],
            "failed": [c.to_json() for c in self.failed],
            "errors": list(self.errors),
            "purgedMarkers": self.purged_markers,
        }


def _describe(candidate: HearingCandidate) -> str:
    return f"case #{candidate.case_id} {candidate.hearing_type} ({candidate.raw_timestamp})"


class HearingScheduler:
    """Owns the recurring check and runs one evaluation pass per tick.

    Collaborators are plain callables plus a ledger object so tests (and other
    storage backends) can swap them out:

    * ``settings_provider()`` returns the current :class:`NotificationSettings`
    * ``case_source()`` returns every case record
    * ``ledger`` offers ``has_sent``/``record_sent`` and, when reserving before
      sending, ``claim``/``release``; ``purge_markers`` is used for retention
    * ``sender(recipient, sender, notice)`` returns True once delivered
    """

    def __init__(
        self,
        *,
        settings_provider: SettingsProvider,
        case_source: CaseSource,
        ledger: Any,
        sender: NotificationSender,
        config: SchedulerConfig,
        clock: Optional[Callable[[], datetime]] = None,
        scheduler_factory: Callable[..., BackgroundScheduler] = BackgroundScheduler,
    ) -> None:
        self.settings_provider = settings_provider
        self.case_source = case_source
        self.ledger = ledger
        self.sender = sender
        self.config = config
        self.clock = clock or (lambda: local_now(config.timezone))
        self._scheduler_factory = scheduler_factory
        self._background: Optional[BackgroundScheduler] = None
        self._running = False
        self._lifecycle_lock = threading.Lock()
        self._tick_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lifecycle_lock:
            if self._running:
                logger.debug("Hearing scheduler already running; ignoring start()")
                return

            background = self._scheduler_factory(timezone=self.config.timezone)
            # The window is only as wide as the interval, so a late run must still fire.
            background.add_job(
                self.run_tick,
                "interval",
                seconds=self.config.check_interval_seconds,
                id=CHECK_JOB_ID,
                name="Court hearing reminder check",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self.config.check_interval_seconds,
                replace_existing=True,
            )
            run_date = datetime.now(ZoneInfo(self.config.timezone)) + timedelta(
                seconds=self.config.startup_delay_seconds
            )
            background.add_job(
                self.run_tick,
                "date",
                run_date=run_date,
                id=STARTUP_JOB_ID,
                name="Court hearing reminder startup check",
                misfire_grace_time=None,
                replace_existing=True,
            )
            background.start()
            self._background = background
            self._running = True

        logger.info(
            "Hearing scheduler started: every %ss, window %sh..%sh ahead, first check in %ss",
            self.config.check_interval_seconds,
            self.config.window_start_hours,
            self.config.window_end_hours,
            self.config.startup_delay_seconds,
        )

    def stop(self) -> None:
        with self._lifecycle_lock:
            if not self._running:
                return
            background, self._background = self._background, None
            self._running = False

        try:
            background.shutdown(wait=False)
        except SchedulerNotRunningError:
            logger.debug("Background scheduler was already shut down")
        logger.info("Hearing scheduler stopped")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def preview(self, now: Optional[datetime] = None) -> List[HearingCandidate]:
        """Hearings currently inside the window, without touching the ledger."""
        now = now or self.clock()
        return find_candidates(
            self.case_source(),
            now,
            self.config.window_start_hours,
            self.config.window_end_hours,
            self.config.timezone,
        )

    def run_tick(self, now: Optional[datetime] = None) -> TickReport:
        """Run one pass. Never raises; problems are logged and reported."""
        now = now or self.clock()
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous hearing check still running; skipping this tick")
            return TickReport(now=now, skipped_reason=SKIP_OVERLAP)

        report = TickReport(now=now)
        try:
            self._run_tick(report)
        except Exception as exc:
            logger.exception("Unexpected error during hearing check")
            report.skipped_reason = report.skipped_reason or SKIP_ERROR
            report.errors.append(str(exc))
        finally:
            self._tick_lock.release()
        return report

    def _run_tick(self, report: TickReport) -> None:
        logger.info("Hearing check started at %s", report.now.isoformat(timespec="seconds"))

        settings = self._load_settings(report)
        if settings is None or not settings.is_active:
            logger.info("Email notifications not configured, skipping check")
            report.skipped_reason = SKIP_DISABLED
            return

        try:
            records = list(self.case_source())
        except Exception as exc:
            logger.exception("Could not load cases for the hearing check")
            report.skipped_reason = SKIP_FETCH_FAILED
            report.errors.append(f"case fetch: {exc}")
            return

        report.candidates = find_candidates(
            records,
            report.now,
            self.config.window_start_hours,
            self.config.window_end_hours,
            self.config.timezone,
        )
        logger.info(
            "Found %d upcoming hearing(s) among %d case(s)", len(report.candidates), len(records)
        )

        for candidate in report.candidates:
            self._dispatch(candidate, settings, report)

        self._purge_expired_markers(report)

    def _load_settings(self, report: TickReport) -> Optional[NotificationSettings]:
        try:
            return self.settings_provider()
        except Exception as exc:
            logger.exception("Error reading email notification settings")
            report.errors.append(f"settings: {exc}")
            return None

    def _dispatch(
        self,
        candidate: HearingCandidate,
        settings: NotificationSettings,
        report: TickReport,
    ) -> None:
        label = _describe(candidate)
        key = (candidate.case_id, candidate.hearing_type, candidate.raw_timestamp)

        try:
            already_sent = self.ledger.has_sent(*key)
        except Exception as exc:
            logger.exception("Ledger lookup failed for %s; skipping it this tick", label)
            report.errors.append(f"ledger read {label}: {exc}")
            return
        if already_sent:
            logger.info("Notification already sent for %s", label)
            report.already_sent.append(candidate)
            return

        reserve = self.config.reserve_before_send
        if reserve:
            try:
                claimed = self.ledger.claim(*key)
            except Exception as exc:
                logger.exception("Could not reserve marker for %s; skipping it this tick", label)
                report.errors.append(f"ledger write {label}: {exc}")
                return
            if not claimed:
                logger.info("Marker for %s was recorded concurrently; not sending", label)
                report.already_sent.append(candidate)
                return

        logger.info("Sending notification for %s", label)
        if not self._send(candidate, settings, label):
            report.failed.append(candidate)
            if reserve:
                self._release(key, label, report)
            return

        if not reserve:
            try:
                self.ledger.record_sent(*key)
            except Exception as exc:
                logger.exception("Reminder for %s was sent but its marker was not recorded", label)
                report.errors.append(f"ledger write {label}: {exc}")
        logger.info("Notification sent successfully for %s", label)
        report.sent.append(candidate)

    def _send(self, candidate: HearingCandidate, settings: NotificationSettings, label: str) -> bool:
        notice = HearingNotice(
            plaintiff_name=candidate.plaintiff_name,
            defendant_name=candidate.defendant_name,
            hearing_datetime_iso=candidate.hearing_datetime_iso,
            hearing_type=candidate.hearing_type,
            case_id=candidate.case_id,
        )
        try:
            delivered = bool(self.sender(settings.recipient_email, settings.sender_email, notice))
        except Exception:
            logger.exception("Notification sender raised for %s", label)
            return False
        if not delivered:
            logger.error("Failed to send notification for %s", label)
        return delivered

    def _release(self, key: tuple, label: str, report: TickReport) -> None:
        try:
            self.ledger.release(*key)
        except Exception as exc:
            # The marker stays, so this hearing will not be retried.
            logger.exception("Could not release marker for %s after a failed send", label)
            report.errors.append(f"ledger release {label}: {exc}")

    def _purge_expired_markers(self, report: TickReport) -> None:
        days = self.config.marker_retention_days
        if days <= 0:
            return
        try:
            report.purged_markers = self.ledger.purge_markers(
                datetime.now(timezone.utc) - timedelta(days=days)
            )
        except Exception as exc:
            logger.exception("Notification marker cleanup failed")
            report.errors.append(f"marker purge: {exc}")


def build_scheduler(
    config: Optional[SchedulerConfig] = None,
    *,
    sender: Optional[NotificationSender] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> HearingScheduler:
    """Wire a scheduler against the sqlite database named in ``config``."""
    config = config or load_scheduler_config()
    db_path = config.database_path

    def settings_provider() -> NotificationSettings:
        with open_app_db(db_path) as conn:
            return load_notification_settings(conn)

    def case_source() -> List[CaseRecord]:
        with open_app_db(db_path) as conn:
            return fetch_all_cases(conn)

    return HearingScheduler(
        settings_provider=settings_provider,
        case_source=case_source,
        ledger=NotificationLedger(db_path),
        sender=sender or send_court_hearing_notification,
        config=config,
        clock=clock,
    )
