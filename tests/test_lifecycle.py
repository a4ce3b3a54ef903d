"""Tests for LifecycleManager: transitions, auto-miss sweep and expansion."""

from datetime import UTC, date, datetime
from unittest.mock import AsyncMock, patch

import pytest

from src.deadlines.errors import DeadlineNotFound, InvalidTransition
from src.deadlines.lifecycle import LifecycleManager, can_transition
from src.deadlines.models import Deadline, DeadlineStatus, ReminderState
from src.deadlines.planner import ReminderPlanner
from src.deadlines.store import DeadlineStore

NOW = datetime(2024, 3, 4, 12, 0, tzinfo=UTC)


def _make_deadline(deadline_id: str = "d1", **kwargs) -> Deadline:
    defaults = {
        "lab_id": "lab1",
        "title": "Data collection wave 2",
        "category": "data_collection",
        "due_date": date(2024, 3, 20),
        "responsible_party": "pi@lab.edu",
        "created_at": NOW,
    }
    defaults.update(kwargs)
    return Deadline(id=deadline_id, **defaults)


# -- State machine -------------------------------------------------------------


@pytest.mark.parametrize(
    ("current", "new", "allowed"),
    [
        ("pending", "in_progress", True),
        ("pending", "completed", True),
        ("pending", "cancelled", True),
        ("in_progress", "completed", True),
        ("in_progress", "cancelled", True),
        ("in_progress", "pending", False),
        ("pending", "missed", False),
        ("pending", "pending", False),
        ("completed", "pending", False),
        ("missed", "completed", False),
        ("cancelled", "in_progress", False),
    ],
)
def test_user_transitions(current: str, new: str, allowed: bool) -> None:
    assert can_transition(DeadlineStatus(current), DeadlineStatus(new)) is allowed


def test_automatic_transition_only_to_missed() -> None:
    assert can_transition(DeadlineStatus.PENDING, DeadlineStatus.MISSED, automatic=True)
    assert can_transition(DeadlineStatus.IN_PROGRESS, DeadlineStatus.MISSED, automatic=True)
    assert not can_transition(DeadlineStatus.COMPLETED, DeadlineStatus.MISSED, automatic=True)
    assert not can_transition(DeadlineStatus.PENDING, DeadlineStatus.COMPLETED, automatic=True)


# -- set_status ----------------------------------------------------------------


async def test_complete_records_actor(store: DeadlineStore, lifecycle: LifecycleManager) -> None:
    await store.add_deadline(_make_deadline())

    updated = await lifecycle.set_status(
        "d1", "completed", actor_id="u1", notes="submitted", now=NOW
    )

    assert updated.status == DeadlineStatus.COMPLETED
    assert updated.completed_by == "u1"
    assert updated.completion_notes == "submitted"
    assert updated.completed_at == NOW


@pytest.mark.parametrize("new_status", ["pending", "in_progress", "completed", "cancelled", "missed"])
async def test_terminal_state_rejects_any_change(
    store: DeadlineStore, lifecycle: LifecycleManager, new_status: str
) -> None:
    await store.add_deadline(_make_deadline(status="completed", completed_at=NOW))

    with pytest.raises(InvalidTransition) as excinfo:
        await lifecycle.set_status("d1", new_status, now=NOW)

    assert excinfo.value.current == "completed"
    assert "already completed" in str(excinfo.value)
    assert (await store.get_deadline("d1")).status == DeadlineStatus.COMPLETED


async def test_user_cannot_mark_missed(store: DeadlineStore, lifecycle: LifecycleManager) -> None:
    await store.add_deadline(_make_deadline())
    with pytest.raises(InvalidTransition, match="automatically"):
        await lifecycle.set_status("d1", "missed", now=NOW)


async def test_unknown_status_rejected(store: DeadlineStore, lifecycle: LifecycleManager) -> None:
    await store.add_deadline(_make_deadline())
    with pytest.raises(InvalidTransition, match="unknown status"):
        await lifecycle.set_status("d1", "archived", now=NOW)


async def test_not_found(lifecycle: LifecycleManager, store: DeadlineStore) -> None:
    with pytest.raises(DeadlineNotFound):
        await lifecycle.set_status("missing", "completed", now=NOW)


async def test_lost_race_raises_with_current_status(
    store: DeadlineStore, lifecycle: LifecycleManager
) -> None:
    await store.add_deadline(_make_deadline())
    # Another writer marks it missed between our read and our write.
    original = store.compare_and_set_status

    async def _race(*args, **kwargs):
        await original("d1", DeadlineStatus.PENDING, DeadlineStatus.MISSED, now=NOW)
        return await original(*args, **kwargs)

    with (
        patch.object(store, "compare_and_set_status", side_effect=_race),
        pytest.raises(InvalidTransition, match="missed in the meantime"),
    ):
        await lifecycle.set_status("d1", "completed", now=NOW)

    assert (await store.get_deadline("d1")).status == DeadlineStatus.MISSED


async def test_closing_retires_pending_reminders(
    store: DeadlineStore, planner: ReminderPlanner, lifecycle: LifecycleManager
) -> None:
    d = await store.add_deadline(_make_deadline())
    await planner.apply(d, NOW)

    await lifecycle.set_status("d1", "cancelled", now=NOW)

    reminders = await store.list_reminders("d1")
    assert reminders
    assert all(r.state == ReminderState.RETIRED for r in reminders)


async def test_start_keeps_reminders(
    store: DeadlineStore, planner: ReminderPlanner, lifecycle: LifecycleManager
) -> None:
    d = await store.add_deadline(_make_deadline())
    await planner.apply(d, NOW)

    await lifecycle.set_status("d1", "in_progress", now=NOW)

    assert all(r.state == ReminderState.PENDING for r in await store.list_reminders("d1"))


async def test_completing_recurring_deadline_expands(
    store: DeadlineStore, lifecycle: LifecycleManager
) -> None:
    await store.add_deadline(
        _make_deadline(due_date=date(2024, 3, 1), is_recurring=True, recurrence_pattern="weekly")
    )

    await lifecycle.set_status("d1", "completed", now=NOW)

    successor = await store.get_successor("d1")
    assert successor is not None
    assert successor.due_date == date(2024, 3, 8)
    assert successor.status == DeadlineStatus.PENDING
    assert len(await store.list_reminders(successor.id)) == 1


async def test_cancelling_recurring_deadline_does_not_expand(
    store: DeadlineStore, lifecycle: LifecycleManager
) -> None:
    await store.add_deadline(_make_deadline(is_recurring=True, recurrence_pattern="weekly"))
    await lifecycle.set_status("d1", "cancelled", now=NOW)
    assert await store.get_successor("d1") is None


# -- Sweep ---------------------------------------------------------------------


async def test_sweep_marks_past_due_missed(
    store: DeadlineStore, lifecycle: LifecycleManager
) -> None:
    await store.add_deadline(_make_deadline("yesterday", due_date=date(2024, 3, 3)))
    await store.add_deadline(
        _make_deadline("started", due_date=date(2024, 2, 1), status="in_progress")
    )
    await store.add_deadline(_make_deadline("today", due_date=date(2024, 3, 4)))
    await store.add_deadline(
        _make_deadline("done", due_date=date(2024, 2, 1), status="completed")
    )

    missed = await lifecycle.sweep(NOW)

    assert sorted(d.id for d in missed) == ["started", "yesterday"]
    assert (await store.get_deadline("today")).status == DeadlineStatus.PENDING
    assert (await store.get_deadline("done")).status == DeadlineStatus.COMPLETED
    assert all(d.status == DeadlineStatus.MISSED for d in missed)


async def test_sweep_idempotent(store: DeadlineStore, lifecycle: LifecycleManager) -> None:
    await store.add_deadline(_make_deadline("a", due_date=date(2024, 3, 1)))
    await store.add_deadline(_make_deadline("b", due_date=date(2024, 3, 10)))

    first = await lifecycle.sweep(NOW)
    state_after_first = [(d.id, d.status) for d in await store.list_deadlines("lab1")]
    second = await lifecycle.sweep(NOW)
    state_after_second = [(d.id, d.status) for d in await store.list_deadlines("lab1")]

    assert [d.id for d in first] == ["a"]
    assert second == []
    assert state_after_first == state_after_second


async def test_sweep_does_not_expand(store: DeadlineStore, lifecycle: LifecycleManager) -> None:
    await store.add_deadline(
        _make_deadline(due_date=date(2024, 3, 1), is_recurring=True, recurrence_pattern="monthly")
    )
    missed = await lifecycle.sweep(NOW)
    assert [d.id for d in missed] == ["d1"]
    assert await store.get_successor("d1") is None


async def test_sweep_isolates_failures(
    store: DeadlineStore, lifecycle: LifecycleManager
) -> None:
    await store.add_deadline(_make_deadline("a", due_date=date(2024, 3, 1)))
    await store.add_deadline(_make_deadline("b", due_date=date(2024, 3, 2)))
    original = store.compare_and_set_status

    async def _flaky(deadline_id, *args, **kwargs):
        if deadline_id == "a":
            raise RuntimeError("db hiccup")
        return await original(deadline_id, *args, **kwargs)

    with patch.object(store, "compare_and_set_status", side_effect=_flaky):
        missed = await lifecycle.sweep(NOW)

    assert [d.id for d in missed] == ["b"]


async def test_sweep_skips_deadline_closed_concurrently(
    store: DeadlineStore, lifecycle: LifecycleManager
) -> None:
    await store.add_deadline(_make_deadline(due_date=date(2024, 3, 1)))
    original = store.list_open_past_due

    async def _then_complete(today):
        found = await original(today)
        await store.compare_and_set_status(
            "d1", DeadlineStatus.PENDING, DeadlineStatus.COMPLETED, now=NOW
        )
        return found

    with patch.object(store, "list_open_past_due", side_effect=_then_complete):
        missed = await lifecycle.sweep(NOW)

    assert missed == []
    assert (await store.get_deadline("d1")).status == DeadlineStatus.COMPLETED


# -- Expansion -----------------------------------------------------------------


async def test_expand_once_per_parent(store: DeadlineStore, lifecycle: LifecycleManager) -> None:
    d = await store.add_deadline(
        _make_deadline(
            status="missed", due_date=date(2024, 1, 15), is_recurring=True,
            recurrence_pattern="monthly",
        )
    )
    first = await lifecycle.expand(d, NOW)
    second = await lifecycle.expand(d, NOW)

    assert first is not None
    assert first.due_date == date(2024, 3, 15)
    assert second is None


async def test_expand_lost_insert_race(store: DeadlineStore, lifecycle: LifecycleManager) -> None:
    d = await store.add_deadline(
        _make_deadline(status="missed", is_recurring=True, recurrence_pattern="monthly")
    )
    other = await store.add_deadline(
        _make_deadline("other", recurrence_parent_id="d1", due_date=date(2024, 4, 20))
    )
    # The pre-check misses the other writer's instance; the insert then fails.
    with patch.object(store, "get_successor", AsyncMock(side_effect=[None, other])):
        assert await lifecycle.expand(d, NOW) is None


async def test_expand_malformed_pattern(store: DeadlineStore, lifecycle: LifecycleManager) -> None:
    d = await store.add_deadline(
        _make_deadline(status="missed", is_recurring=True, recurrence_pattern="fortnightly-ish")
    )
    assert await lifecycle.expand(d, NOW) is None
    assert await store.get_successor("d1") is None
    assert (await store.get_deadline("d1")).status == DeadlineStatus.MISSED


async def test_recover_unexpanded(store: DeadlineStore, lifecycle: LifecycleManager) -> None:
    recurring = {"is_recurring": True, "recurrence_pattern": "weekly"}
    await store.add_deadline(_make_deadline("a", status="completed", **recurring))
    await store.add_deadline(_make_deadline("b", status="missed", **recurring))

    assert await lifecycle.recover_unexpanded(NOW) == 2
    assert await lifecycle.recover_unexpanded(NOW) == 0
