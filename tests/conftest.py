"""Shared test fixtures."""

from datetime import UTC
from pathlib import Path

import pytest

from src.deadlines.lifecycle import LifecycleManager
from src.deadlines.planner import ReminderPlanner
from src.deadlines.store import DeadlineStore
from src.deadlines.urgency import UrgencyClassifier
from src.notifications.router import NotificationRouter


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")


@pytest.fixture(autouse=True)
def _reset_singletons():
    DeadlineStore._reset()
    NotificationRouter._reset()
    yield
    DeadlineStore._reset()
    NotificationRouter._reset()


@pytest.fixture
def store(tmp_path: Path, _no_turso) -> DeadlineStore:
    return DeadlineStore(db_path=tmp_path / "test.db")


@pytest.fixture
def planner(store: DeadlineStore) -> ReminderPlanner:
    return ReminderPlanner(store, tz=UTC, reminder_hour=9)


@pytest.fixture
def lifecycle(store: DeadlineStore, planner: ReminderPlanner) -> LifecycleManager:
    return LifecycleManager(store, planner, tz=UTC)


@pytest.fixture
def classifier() -> UrgencyClassifier:
    return UrgencyClassifier(tz=UTC, due_this_week_days=3, due_soon_days=7)

