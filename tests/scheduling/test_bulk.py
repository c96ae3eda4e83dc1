"""Tests for BulkReschedulingCoordinator."""

import asyncio
from dataclasses import replace
from datetime import date, timedelta

import pytest

from conftest import MONDAY, make_session, make_window, windows_between
from therapy_scheduler.exceptions import InvalidSchedulingData, OperationNotFoundError
from therapy_scheduler.scheduling.bulk import BulkReschedulingCoordinator, SchedulingLockRegistry
from therapy_scheduler.scheduling.collaborators import (
    NO_RETRY,
    InMemoryNotificationSink,
    InMemorySessionStore,
)
from therapy_scheduler.scheduling.config import FacilityConstraints, OptimizationConstraints
from therapy_scheduler.scheduling.engine import OptimizationEngine
from therapy_scheduler.scheduling.models import (
    AvailabilityStatus,
    BulkOperationStatus,
    BulkOperationType,
    BulkParameters,
    BulkReschedulingOperation,
    ChangeType,
    ConflictKind,
    SessionStatus,
)
from therapy_scheduler.scheduling.utils import date_range, format_time, parse_time


def range_operation(session_ids, **overrides):
    parameters = BulkParameters(
        source_start=date(2025, 9, 15),
        source_end=date(2025, 9, 19),
        target_start=date(2025, 10, 1),
        target_end=date(2025, 10, 10),
    )
    return BulkReschedulingOperation(
        id=overrides.pop("id", "op1"),
        operation_type=BulkOperationType.RESCHEDULE_RANGE,
        session_ids=list(session_ids),
        parameters=replace(parameters, **overrides),
    )


def operation(kind, session_ids, op_id="op1", **params):
    return BulkReschedulingOperation(
        id=op_id,
        operation_type=kind,
        session_ids=list(session_ids),
        parameters=BulkParameters(**params),
    )


@pytest.fixture
def notifier():
    return InMemoryNotificationSink()


@pytest.fixture
def store(september_sessions, september_october_windows, rooms):
    return InMemorySessionStore(september_sessions, september_october_windows, rooms)


@pytest.fixture
def coordinator(store, notifier):
    return BulkReschedulingCoordinator(store, notifier=notifier, retry=NO_RETRY)


class TestRangeReschedule:
    """Moving a week of sessions to October."""

    def test_partial_failure_is_reported(self, coordinator, store, notifier):
        op = range_operation(["s1", "s2", "s3", "s4", "s5"])

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.progress.processed == 5
        assert result.progress.successful == 4
        assert result.progress.failed == 1
        assert not result.success
        assert result.status == BulkOperationStatus.FAILED
        assert result.failed_session_ids == ["s3"]
        assert ConflictKind.THERAPIST_UNAVAILABLE in {c.kind for c in result.conflicts}

        assert store.sessions["s1"].date == date(2025, 10, 1)
        assert store.sessions["s1"].status == SessionStatus.RESCHEDULED
        assert store.sessions["s5"].date == date(2025, 10, 5)
        # Failed session stays where it was
        assert store.sessions["s3"].date == date(2025, 9, 17)
        assert len(notifier.events) == 4
        assert all(e.type == ChangeType.RESCHEDULED for e in notifier.events)
        assert store.operation_results["op1"] is result

    def test_progress_callback(self, coordinator):
        seen = []
        op = range_operation(["s1", "s2"])

        asyncio.run(coordinator.process_bulk_operation(op, on_progress=seen.append))

        assert [p.processed for p in seen] == [1, 2]
        assert seen[-1].successful == 2

    def test_rollback_restores_september(self, coordinator, store, notifier):
        op = range_operation(["s1", "s2", "s3", "s4", "s5"])

        async def run():
            await coordinator.process_bulk_operation(op)
            return await coordinator.rollback_changes("op1")

        rollback = asyncio.run(run())

        assert rollback.success
        assert rollback.status == BulkOperationStatus.ROLLED_BACK
        assert rollback.reverted_session_ids == ["s1", "s2", "s4", "s5"]
        for n, day in ((1, 15), (2, 16), (4, 18), (5, 19)):
            session = store.sessions[f"s{n}"]
            assert session.date == date(2025, 9, day)
            assert session.status == SessionStatus.SCHEDULED
        assert store.operations["op1"].status == BulkOperationStatus.ROLLED_BACK
        assert store.operations["op1"].progress.successful == 0
        assert store.operation_results["op1"].successful_session_ids == []
        assert [e.type for e in notifier.events[-4:]] == [ChangeType.RESTORED] * 4

    def test_rollback_skips_sessions_changed_since(self, coordinator, store):
        op = range_operation(["s1", "s2"])

        async def run():
            await coordinator.process_bulk_operation(op)
            moved = store.sessions["s2"]
            store.sessions["s2"] = replace(moved, start=parse_time("14:00"), end=parse_time("15:00"))
            return await coordinator.rollback_changes("op1")

        rollback = asyncio.run(run())

        assert not rollback.success
        assert rollback.reverted_session_ids == ["s1"]
        assert rollback.not_reverted == [
            {"session_id": "s2", "reason": "Session was changed after the operation"}
        ]
        assert store.sessions["s2"].date == date(2025, 10, 2)

    def test_rollback_twice_is_rejected(self, coordinator):
        op = range_operation(["s1"])

        async def run():
            await coordinator.process_bulk_operation(op)
            await coordinator.rollback_changes("op1")
            await coordinator.rollback_changes("op1")

        with pytest.raises(InvalidSchedulingData):
            asyncio.run(run())

    def test_rollback_unknown_operation(self, coordinator):
        with pytest.raises(OperationNotFoundError):
            asyncio.run(coordinator.rollback_changes("nope"))

    def test_session_outside_source_range(self, coordinator):
        op = range_operation(["s1", "s5"], source_end=date(2025, 9, 18))

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.failed_session_ids == ["s5"]
        assert "source date range" in result.items[1].message

    def test_unknown_session(self, coordinator):
        result = asyncio.run(coordinator.process_bulk_operation(range_operation(["s1", "ghost"])))
        assert result.items[1].message == "Session not found"
        assert result.progress.successful == 1

    def test_completed_session_is_not_moved(self, coordinator, store):
        store.sessions["s1"] = replace(store.sessions["s1"], status=SessionStatus.COMPLETED)
        result = asyncio.run(coordinator.process_bulk_operation(range_operation(["s1"])))
        assert result.failed_session_ids == ["s1"]
        assert store.sessions["s1"].date == date(2025, 9, 15)


class TestOtherOperationTypes:
    def test_therapist_change(self, rooms, notifier):
        store = InMemorySessionStore(
            [make_session("a"), make_session("b", "13:00", "14:00")],
            [make_window(), make_window(therapist_id="T2")],
            rooms,
        )
        coordinator = BulkReschedulingCoordinator(store, notifier=notifier, retry=NO_RETRY)
        op = operation(BulkOperationType.RESCHEDULE_THERAPIST, ["a", "b"], to_therapist_id="T2")

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.success
        assert {s.therapist_id for s in store.sessions.values()} == {"T2"}
        assert store.sessions["a"].start == parse_time("10:00")
        assert set(notifier.events[0].affected_user_ids) == {"student-a", "T2"}

    def test_room_change(self, rooms):
        store = InMemorySessionStore([make_session("a")], [make_window()], rooms)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY)
        op = operation(BulkOperationType.ROOM_CHANGE, ["a"], to_room_id="R2")

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.success
        assert store.sessions["a"].room_id == "R2"

    def test_time_shift(self, rooms):
        store = InMemorySessionStore([make_session("a")], [make_window()], rooms)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY)
        op = operation(BulkOperationType.TIME_SHIFT, ["a"], shift_minutes=60)

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.success
        assert format_time(store.sessions["a"].start) == "11:00"
        assert not result.items[0].used_alternative

    def test_time_shift_into_break_uses_alternative(self, rooms):
        window = make_window()
        store = InMemorySessionStore([make_session("a")], [window], rooms)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY)
        op = operation(BulkOperationType.TIME_SHIFT, ["a"], shift_minutes=120)

        result = asyncio.run(coordinator.process_bulk_operation(op))

        item = result.items[0]
        assert item.success
        assert item.used_alternative
        moved = store.sessions["a"]
        assert window.break_overlapping(moved.start, moved.end) is None
        assert moved.date == MONDAY

    def test_time_shift_past_midnight(self, rooms):
        store = InMemorySessionStore([make_session("a", "23:00", "23:30")], [], rooms)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY)
        op = operation(BulkOperationType.TIME_SHIFT, ["a"], shift_minutes=60)

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.items[0].message == "Shifted time leaves the day"

    def test_emergency_skips_blocked_date(self, rooms):
        sessions = [make_session("a", day=date(2025, 9, 15))]
        windows = windows_between(date(2025, 9, 15), date(2025, 9, 19))
        store = InMemorySessionStore(sessions, windows, rooms)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY)
        op = operation(
            BulkOperationType.EMERGENCY_RESCHEDULE,
            ["a"],
            blocked_dates=frozenset({date(2025, 9, 15)}),
        )

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.success
        moved = store.sessions["a"]
        assert moved.date == date(2025, 9, 16)
        assert format_time(moved.start) == "10:00"

    def test_emergency_zero_budget_degrades(self, rooms):
        store = InMemorySessionStore([make_session("a")], [make_window()], rooms)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY, emergency_time_budget=0)
        op = operation(BulkOperationType.EMERGENCY_RESCHEDULE, ["a"])

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.degraded
        assert result.items[0].message == "Time budget exhausted before processing"
        assert result.status == BulkOperationStatus.FAILED


class TestEmergencyDayOffset:
    """Emergency moves stay within ``max_day_offset`` days of the original date."""

    @staticmethod
    def store_closed_until(last_closed, rooms):
        first = date(2025, 9, 15)
        windows = [
            make_window(day, status=AvailabilityStatus.UNAVAILABLE)
            for day in date_range(first, last_closed)
        ]
        windows += windows_between(last_closed + timedelta(days=1), date(2025, 9, 19))
        return InMemorySessionStore([make_session("a", day=first)], windows, rooms)

    def test_zero_offset_keeps_the_same_day(self, rooms):
        store = self.store_closed_until(date(2025, 9, 15), rooms)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY)
        op = operation(BulkOperationType.EMERGENCY_RESCHEDULE, ["a"], max_day_offset=0)

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert not result.items[0].success
        assert store.sessions["a"].date == date(2025, 9, 15)

    def test_move_stays_within_offset(self, rooms):
        store = self.store_closed_until(date(2025, 9, 16), rooms)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY)
        op = operation(BulkOperationType.EMERGENCY_RESCHEDULE, ["a"], max_day_offset=1)

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert not result.items[0].success
        assert store.sessions["a"].date == date(2025, 9, 15)

    def test_default_offset_reaches_three_days(self, rooms):
        store = self.store_closed_until(date(2025, 9, 16), rooms)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY)
        op = operation(BulkOperationType.EMERGENCY_RESCHEDULE, ["a"])

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.success
        moved = store.sessions["a"]
        assert date(2025, 9, 17) <= moved.date <= date(2025, 9, 18)

    def test_offset_parsed_from_payload(self):
        assert BulkParameters.from_dict({"max_day_offset": 0}).max_day_offset == 0
        assert BulkParameters.from_dict({}).max_day_offset is None


class TestCancellation:
    def test_cancel_in_progress(self, coordinator, store):
        op = range_operation(["s1", "s2", "s4"])

        async def stop_after_first(progress):
            if progress.processed == 1:
                await coordinator.cancel_operation("op1")

        result = asyncio.run(coordinator.process_bulk_operation(op, on_progress=stop_after_first))

        assert result.status == BulkOperationStatus.CANCELLED
        assert not result.success
        assert result.progress.processed == 1
        assert store.sessions["s1"].date == date(2025, 10, 1)
        assert store.sessions["s2"].date == date(2025, 9, 16)

    def test_cancel_pending(self, coordinator, store):
        op = range_operation(["s1"])

        async def run():
            await store.upsert_operation(op)
            return await coordinator.cancel_operation("op1")

        cancelled = asyncio.run(run())
        assert cancelled.status == BulkOperationStatus.CANCELLED

    def test_cancel_finished_is_rejected(self, coordinator):
        async def run():
            await coordinator.process_bulk_operation(range_operation(["s1"]))
            await coordinator.cancel_operation("op1")

        with pytest.raises(InvalidSchedulingData):
            asyncio.run(run())


class FailingNotifier:
    async def publish(self, event):
        raise ConnectionError("notification service down")


class RacingStore(InMemorySessionStore):
    """Writes a rival session into the target slot on the second read of a session."""

    def __init__(self, *args, rival=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.rival = rival
        self.reads = 0

    async def get_session(self, session_id):
        self.reads += 1
        if self.reads == 2 and self.rival is not None:
            self.sessions[self.rival.id] = self.rival
        return await super().get_session(session_id)


class RecordingLockRegistry(SchedulingLockRegistry):
    def __init__(self):
        super().__init__()
        self.held = []

    def hold(self, keys):
        keys = set(keys)
        self.held.append(keys)
        return super().hold(keys)


class TestRobustness:
    def test_notification_failure_keeps_the_move(self, rooms):
        store = InMemorySessionStore([make_session("a")], [make_window()], rooms)
        coordinator = BulkReschedulingCoordinator(store, notifier=FailingNotifier(), retry=NO_RETRY)
        op = operation(BulkOperationType.TIME_SHIFT, ["a"], shift_minutes=60)

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.success
        assert format_time(store.sessions["a"].start) == "11:00"

    def test_concurrent_writer_is_detected(self, rooms):
        rival = make_session("rival", "11:00", "12:00", room_id="R2")
        store = RacingStore([make_session("a")], [make_window()], rooms, rival=rival)
        coordinator = BulkReschedulingCoordinator(store, retry=NO_RETRY)
        op = operation(BulkOperationType.TIME_SHIFT, ["a"], shift_minutes=60)

        result = asyncio.run(coordinator.process_bulk_operation(op))

        item = result.items[0]
        assert not item.success
        assert item.conflicts[0].kind == ConflictKind.CONCURRENT_MODIFICATION
        assert "retry" in item.message
        assert format_time(store.sessions["a"].start) == "10:00"

    def test_lock_registry_serializes_same_key(self):
        locks = SchedulingLockRegistry()
        order = []

        async def worker(name):
            async with locks.hold([("T1", MONDAY)]):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        async def run():
            await asyncio.gather(worker("a"), worker("b"))

        asyncio.run(run())
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    def test_lock_registry_drops_idle_locks(self):
        locks = SchedulingLockRegistry()

        async def worker():
            async with locks.hold([("T1", MONDAY), ("T2", MONDAY)]):
                await asyncio.sleep(0)

        async def run():
            await asyncio.gather(worker(), worker(), worker())

        asyncio.run(run())
        assert locks._locks == {}

    def test_reassigned_therapist_day_is_locked(self, rooms):
        locks = RecordingLockRegistry()
        store = InMemorySessionStore(
            [make_session("a")],
            [
                make_window(status=AvailabilityStatus.UNAVAILABLE),
                make_window(therapist_id="T2"),
            ],
            rooms,
        )
        engine = OptimizationEngine(
            constraints=OptimizationConstraints(
                facility=FacilityConstraints(allow_therapist_reassignment=True)
            )
        )
        coordinator = BulkReschedulingCoordinator(store, engine=engine, locks=locks, retry=NO_RETRY)
        op = operation(BulkOperationType.TIME_SHIFT, ["a"], shift_minutes=60)

        result = asyncio.run(coordinator.process_bulk_operation(op))

        assert result.success
        assert result.items[0].used_alternative
        assert store.sessions["a"].therapist_id == "T2"
        assert ("T2", MONDAY) in locks.held[0]
        assert locks._locks == {}


class TestValidation:
    @pytest.mark.parametrize(
        "op, field",
        [
            (operation(BulkOperationType.ROOM_CHANGE, [], to_room_id="R2"), "session_ids"),
            (operation(BulkOperationType.ROOM_CHANGE, ["a", "a"], to_room_id="R2"), "session_ids"),
            (operation(BulkOperationType.ROOM_CHANGE, ["a"]), "parameters.to_room_id"),
            (operation(BulkOperationType.RESCHEDULE_THERAPIST, ["a"]), "parameters.to_therapist_id"),
            (operation(BulkOperationType.TIME_SHIFT, ["a"]), "parameters.shift_minutes"),
            (operation(BulkOperationType.RESCHEDULE_RANGE, ["a"]), "parameters.target_start"),
            (
                operation(BulkOperationType.EMERGENCY_RESCHEDULE, ["a"], max_day_offset=-1),
                "parameters.max_day_offset",
            ),
        ],
    )
    def test_rejected(self, coordinator, op, field):
        with pytest.raises(InvalidSchedulingData) as exc_info:
            coordinator.validate_operation(op)
        assert exc_info.value.field == field

    def test_too_many_sessions(self, store):
        coordinator = BulkReschedulingCoordinator(store, max_sessions=2)
        op = operation(BulkOperationType.TIME_SHIFT, ["a", "b", "c"], shift_minutes=15)
        with pytest.raises(InvalidSchedulingData):
            coordinator.validate_operation(op)

    def test_only_pending_operations_run(self, coordinator):
        op = range_operation(["s1"])
        op.status = BulkOperationStatus.COMPLETED
        with pytest.raises(InvalidSchedulingData):
            asyncio.run(coordinator.process_bulk_operation(op))
