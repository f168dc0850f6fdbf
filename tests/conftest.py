from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from hearings_config import SchedulerConfig
from services.email import clear_email_cache
from services.ledger import NotificationLedger
from services.scheduler import HearingScheduler
from services.settings import get_settings_manager
from services.system_settings import NotificationSettings

NOW = datetime(2025, 8, 22, 10, 0)

ACTIVE_SETTINGS = NotificationSettings(
    enabled=True,
    recipient_email="legal@example.com",
    sender_email="noreply@example.com",
)


class FakeSender:
    """Records every call; ``outcome`` may be a bool, an exception, or a callable."""

    def __init__(self, outcome=True):
        self.calls = []
        self.outcome = outcome

    def __call__(self, recipient, sender, notice):
        self.calls.append((recipient, sender, notice))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        if callable(self.outcome):
            return self.outcome(notice)
        return self.outcome

    @property
    def case_ids(self):
        return [notice.case_id for _, _, notice in self.calls]


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("HEARINGS_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("HEARINGS_SECRET_KEY", "test-passphrase")
    for name in ("HEARINGS_DB_PATH", "HEARINGS_CHECK_INTERVAL", "HEARINGS_TIMEZONE"):
        monkeypatch.delenv(name, raising=False)
    get_settings_manager.cache_clear()
    clear_email_cache()
    yield
    get_settings_manager.cache_clear()
    clear_email_cache()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "hearings.db"


@pytest.fixture
def config(db_path: Path) -> SchedulerConfig:
    return SchedulerConfig(database_path=db_path, startup_delay_seconds=3600)


@pytest.fixture
def ledger(db_path: Path) -> NotificationLedger:
    return NotificationLedger(db_path)


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def make_scheduler(config, ledger, sender):
    def _make(records, settings=ACTIVE_SETTINGS, **overrides):
        kwargs = dict(
            settings_provider=lambda: settings,
            case_source=lambda: list(records),
            ledger=ledger,
            sender=sender,
            config=config,
            clock=lambda: NOW,
        )
        kwargs.update(overrides)
        return HearingScheduler(**kwargs)

    return _make
