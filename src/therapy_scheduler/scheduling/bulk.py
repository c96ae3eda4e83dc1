"""Bulk rescheduling with per-session results and explicit rollback."""

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date, timedelta
from typing import AsyncIterator, Callable, Iterable

from ..exceptions import CollaboratorError, InvalidSchedulingData, OperationNotFoundError
from .collaborators import NotificationSink, RetryPolicy, SessionStore, call_with_retry
from .conflicts import ConflictDetector, ScheduleSnapshot, place_session
from .constants import (
    BULK_MAX_SESSIONS,
    EMERGENCY_DEFAULT_MAX_DAY_OFFSET,
    EMERGENCY_TIME_BUDGET_SECONDS,
)
from .engine import OptimizationEngine
from .models import (
    BulkItemResult,
    BulkOperationResult,
    BulkOperationStatus,
    BulkOperationType,
    BulkProgress,
    BulkReschedulingOperation,
    ChangeType,
    Conflict,
    ConflictKind,
    Placement,
    RollbackResult,
    Session,
    SessionChangeEvent,
)
from .utils import Deadline, adjacent_dates, format_time

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

ProgressCallback = Callable[[BulkProgress], object]


class SchedulingLockRegistry:
    """
    Mutual exclusion keyed by (therapist_id, date).

    Operations touching the same therapist-day serialize; disjoint ones run
    in parallel. Keys are always acquired in sorted order. A lock is dropped
    once no operation holds or waits for it.
    """

    def __init__(self):
        self._locks: dict[tuple[str, date], asyncio.Lock] = {}
        self._users: dict[tuple[str, date], int] = {}

    def _checkout(self, key: tuple[str, date]) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return self._locks[key]

    def _checkin(self, key: tuple[str, date]) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, keys: Iterable[tuple[str, date]]) -> AsyncIterator[None]:
        checked_out: list[tuple[str, date]] = []
        acquired: list[asyncio.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                checked_out.append(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)


def _concurrent_modification(session: Session, message: str) -> Conflict:
    return Conflict(
        kind=ConflictKind.CONCURRENT_MODIFICATION,
        session_ids=(session.id,),
        date=session.date,
        start=session.start,
        end=session.end,
        message=message,
        resource_id=session.therapist_id,
    )


class BulkReschedulingCoordinator:
    """
    Applies one scheduling change across many sessions.

    Sessions are processed one at a time in the order given. Each move is
    checked with the Conflict Detector; a blocked move falls back to the
    engine's single-session slot search. Right before a write the affected
    therapist-days are re-read from the store and the move is checked
    again, so a concurrent writer produces a ``concurrent_modification``
    failure instead of an overwrite. Partial failures are reported, never
    rolled back automatically.
    """

    def __init__(
        self,
        store: SessionStore,
        engine: OptimizationEngine | None = None,
        detector: ConflictDetector | None = None,
        notifier: NotificationSink | None = None,
        locks: SchedulingLockRegistry | None = None,
        retry: RetryPolicy | None = None,
        max_sessions: int = BULK_MAX_SESSIONS,
        emergency_time_budget: float = EMERGENCY_TIME_BUDGET_SECONDS,
    ):
        self.store = store
        self.engine = engine or OptimizationEngine()
        self.detector = detector or ConflictDetector(self.engine.constraints)
        self.notifier = notifier
        self.locks = locks or SchedulingLockRegistry()
        self.retry = retry or RetryPolicy()
        self.max_sessions = max_sessions
        self.emergency_time_budget = emergency_time_budget
        self._cancel_requested: set[str] = set()

    async def _call(self, name: str, func, *args, **kwargs):
        return await call_with_retry(self.retry, f"session store ({name})", func, *args, **kwargs)

    def validate_operation(self, operation: BulkReschedulingOperation) -> None:
        """
        Reject malformed operations before any session is touched.

        Raises:
            InvalidSchedulingData: If the operation cannot be processed.
        """
        if operation.status != BulkOperationStatus.PENDING:
            raise InvalidSchedulingData(
                f"operation is {operation.status.value}, expected pending", "status"
            )
        if not operation.session_ids:
            raise InvalidSchedulingData("at least one session is required", "session_ids")
        if len(operation.session_ids) > self.max_sessions:
            raise InvalidSchedulingData(
                f"too many sessions: {len(operation.session_ids)}, maximum is {self.max_sessions}",
                "session_ids",
            )
        if len(set(operation.session_ids)) != len(operation.session_ids):
            raise InvalidSchedulingData("session ids must be unique", "session_ids")

        params = operation.parameters
        kind = operation.operation_type
        if kind == BulkOperationType.RESCHEDULE_RANGE:
            if params.source_start is None or params.target_start is None:
                raise InvalidSchedulingData(
                    "source_start and target_start are required", "parameters.target_start"
                )
            if params.target_end is not None and params.target_end < params.target_start:
                raise InvalidSchedulingData("must not be before target_start", "parameters.target_end")
        elif kind == BulkOperationType.RESCHEDULE_THERAPIST:
            if not params.to_therapist_id:
                raise InvalidSchedulingData("required field is missing", "parameters.to_therapist_id")
        elif kind == BulkOperationType.ROOM_CHANGE:
            if not params.to_room_id:
                raise InvalidSchedulingData("required field is missing", "parameters.to_room_id")
        elif kind == BulkOperationType.TIME_SHIFT:
            if params.shift_minutes == 0:
                raise InvalidSchedulingData("must not be zero", "parameters.shift_minutes")
        elif kind == BulkOperationType.EMERGENCY_RESCHEDULE:
            if params.max_day_offset is not None and params.max_day_offset < 0:
                raise InvalidSchedulingData("must not be negative", "parameters.max_day_offset")
        if operation.time_budget_seconds is not None and operation.time_budget_seconds < 0:
            raise InvalidSchedulingData("must not be negative", "time_budget_seconds")

    async def process_bulk_operation(
        self,
        operation: BulkReschedulingOperation,
        on_progress: ProgressCallback | None = None,
    ) -> BulkOperationResult:
        """
        Process every session of a pending operation.

        Args:
            operation: The operation; its status and progress are updated in place.
            on_progress: Called (or awaited) with the counters after each session.

        Returns:
            BulkOperationResult; ``success`` is False when any session failed
            or the operation was cancelled.

        Raises:
            InvalidSchedulingData: If the operation is malformed.
        """
        self.validate_operation(operation)
        emergency = operation.operation_type == BulkOperationType.EMERGENCY_RESCHEDULE
        budget = operation.time_budget_seconds
        if budget is None and emergency:
            budget = self.emergency_time_budget
        deadline = Deadline(budget)

        operation.status = BulkOperationStatus.IN_PROGRESS
        operation.progress = BulkProgress(total=len(operation.session_ids))
        operation.conflicts = []
        await self._call("upsert_operation", self.store.upsert_operation, operation)
        logger.info(
            f"Bulk operation {operation.id} ({operation.operation_type.value}): "
            f"{len(operation.session_ids)} sessions"
        )

        result = BulkOperationResult(
            operation_id=operation.id,
            success=False,
            status=operation.status,
            progress=operation.progress,
        )
        cancelled = False
        for position, session_id in enumerate(operation.session_ids):
            if operation.id in self._cancel_requested:
                cancelled = True
                logger.info(f"Bulk operation {operation.id} cancelled after {position} sessions")
                break
            if deadline.expired():
                result.degraded = True
                for remaining_id in operation.session_ids[position:]:
                    self._record(
                        operation,
                        result,
                        BulkItemResult(
                            remaining_id, False, message="Time budget exhausted before processing"
                        ),
                    )
                logger.warning(
                    f"Bulk operation {operation.id} hit its {budget}s time budget; "
                    f"{len(operation.session_ids) - position} sessions not processed"
                )
                await self._report(on_progress, operation.progress)
                break

            try:
                item = await self._process_session(operation, session_id, emergency)
            except CollaboratorError as e:
                item = BulkItemResult(session_id, False, message=str(e))
            self._record(operation, result, item)
            await self._report(on_progress, operation.progress)

        self._cancel_requested.discard(operation.id)
        if cancelled:
            operation.status = BulkOperationStatus.CANCELLED
        elif operation.progress.failed:
            operation.status = BulkOperationStatus.FAILED
        else:
            operation.status = BulkOperationStatus.COMPLETED
        result.status = operation.status
        result.success = operation.status == BulkOperationStatus.COMPLETED
        result.conflicts = list(operation.conflicts)

        await self._call("upsert_operation", self.store.upsert_operation, operation)
        await self._call("upsert_operation_result", self.store.upsert_operation_result, result)
        progress = operation.progress
        logger.info(
            f"Bulk operation {operation.id} {operation.status.value}: "
            f"{progress.processed}/{progress.total} processed, "
            f"{progress.successful} successful, {progress.failed} failed"
        )
        return result

    def _record(
        self,
        operation: BulkReschedulingOperation,
        result: BulkOperationResult,
        item: BulkItemResult,
    ) -> None:
        result.items.append(item)
        operation.progress.processed += 1
        if item.success:
            operation.progress.successful += 1
        else:
            operation.progress.failed += 1
            operation.conflicts.extend(item.conflicts)

    @staticmethod
    async def _report(on_progress: ProgressCallback | None, progress: BulkProgress) -> None:
        if on_progress is None:
            return
        outcome = on_progress(replace(progress))
        if inspect.isawaitable(outcome):
            await outcome

    def _target(
        self, session: Session, operation: BulkReschedulingOperation
    ) -> tuple[Placement | None, list[date], str]:
        """Requested placement, dates open to the slot search, and a failure message."""
        params = operation.parameters
        kind = operation.operation_type
        placement = session.placement
        search_days = self.detector.search_days

        if kind == BulkOperationType.RESCHEDULE_RANGE:
            before = params.source_start is not None and session.date < params.source_start
            after = params.source_end is not None and session.date > params.source_end
            if before or after:
                return None, [], "Session is outside the source date range"
            new_date = session.date + timedelta(days=params.day_delta)
            if params.target_end and new_date > params.target_end:
                return None, [], "Shifted date falls outside the target date range"
            placement = replace(placement, date=new_date)
            dates = [
                d
                for d in adjacent_dates(new_date, search_days)
                if d >= params.target_start and (params.target_end is None or d <= params.target_end)
            ]
        elif kind == BulkOperationType.RESCHEDULE_THERAPIST:
            placement = replace(placement, therapist_id=params.to_therapist_id)
            dates = adjacent_dates(session.date, search_days)
        elif kind == BulkOperationType.ROOM_CHANGE:
            placement = replace(placement, room_id=params.to_room_id)
            dates = adjacent_dates(session.date, search_days)
        elif kind == BulkOperationType.TIME_SHIFT:
            start = session.start + params.shift_minutes
            end = session.end + params.shift_minutes
            if start < 0 or end > MINUTES_PER_DAY:
                return None, [], "Shifted time leaves the day"
            placement = replace(placement, start=start, end=end)
            dates = [session.date]
        else:
            offset = (
                EMERGENCY_DEFAULT_MAX_DAY_OFFSET
                if params.max_day_offset is None
                else params.max_day_offset
            )
            dates = [session.date + timedelta(days=k) for k in range(offset + 1)]
            if params.to_therapist_id:
                placement = replace(placement, therapist_id=params.to_therapist_id)

        dates = [d for d in dates if d not in params.blocked_dates]
        if not dates:
            return None, [], "No dates left to search after excluding blocked dates"
        if placement.date in params.blocked_dates:
            placement = replace(placement, date=dates[0])
        return placement, dates, ""

    async def _lockable_therapists(self, therapist_id: str, dates: list[date]) -> set[str]:
        """Therapists a session may end up with on ``dates``."""
        therapists = {therapist_id}
        if self.engine.constraints.facility.allow_therapist_reassignment:
            windows = await self._call(
                "list_availabilities", self.store.list_availabilities, min(dates), max(dates)
            )
            therapists |= {w.therapist_id for w in windows}
        return therapists

    async def _load_context(self, dates: list[date]) -> tuple[list[Session], list, list]:
        start, end = min(dates), max(dates)
        sessions = await self._call("list_sessions", self.store.list_sessions, start, end)
        availabilities = await self._call(
            "list_availabilities", self.store.list_availabilities, start, end
        )
        rooms = await self._call("list_rooms", self.store.list_rooms)
        return sessions, availabilities, rooms

    async def _process_session(
        self,
        operation: BulkReschedulingOperation,
        session_id: str,
        emergency: bool,
    ) -> BulkItemResult:
        session = await self._call("get_session", self.store.get_session, session_id)
        if session is None:
            return BulkItemResult(session_id, False, message="Session not found")
        if not session.is_movable:
            return BulkItemResult(
                session_id,
                False,
                original=session.placement,
                message=f"Session with status {session.status.value} cannot be moved",
            )

        placement, dates, failure = self._target(session, operation)
        if placement is None:
            return BulkItemResult(session_id, False, original=session.placement, message=failure)

        search_dates = dates + [placement.date]
        therapists = await self._lockable_therapists(placement.therapist_id, search_dates)
        lock_keys = {(session.therapist_id, session.date)}
        lock_keys |= {(t, d) for t in therapists for d in search_dates}
        async with self.locks.hold(lock_keys):
            sessions, availabilities, rooms = await self._load_context(search_dates)
            snapshot = ScheduleSnapshot(sessions, availabilities, rooms)
            candidate = place_session(session, placement)
            blocking = self.detector.blocking_conflicts(candidate, snapshot)

            used_alternative = False
            if blocking:
                alternatives = self.engine.find_alternative_slots(
                    candidate,
                    sessions,
                    # Only therapist-days held above may receive the session
                    [w for w in availabilities if w.therapist_id in therapists],
                    rooms,
                    dates=dates,
                    limit=1,
                    prefer_quality=not emergency,
                )
                if not alternatives:
                    return BulkItemResult(
                        session_id,
                        False,
                        original=session.placement,
                        conflicts=blocking,
                        message=(
                            f"No conflict-free slot for {placement.date.isoformat()} "
                            f"{format_time(placement.start)}: "
                            + "; ".join(c.message for c in blocking)
                        ),
                    )
                placement = alternatives[0]
                candidate = place_session(session, placement)
                used_alternative = True

            # Re-read right before the write
            current = await self._call("get_session", self.store.get_session, session_id)
            if current is None or current != session:
                return BulkItemResult(
                    session_id,
                    False,
                    original=session.placement,
                    conflicts=[
                        _concurrent_modification(session, "Session changed while being rescheduled")
                    ],
                    message="Session changed while being rescheduled; retry with fresh data",
                )
            fresh, availabilities, rooms = await self._load_context([placement.date])
            clashes = self.detector.blocking_conflicts(
                candidate, ScheduleSnapshot(fresh, availabilities, rooms)
            )
            if clashes:
                return BulkItemResult(
                    session_id,
                    False,
                    original=session.placement,
                    conflicts=[
                        _concurrent_modification(
                            candidate, "; ".join(c.message for c in clashes)
                        )
                    ] + clashes,
                    message="Slot was taken by a concurrent change; retry with fresh data",
                )

            moved = session.moved_to(placement)
            await self._call("upsert_session", self.store.upsert_session, moved)

        await self.publish_change(ChangeType.RESCHEDULED, moved, session.placement)
        return BulkItemResult(
            session_id,
            True,
            original=session.placement,
            new=placement,
            message="Moved to alternative slot" if used_alternative else "Moved",
            used_alternative=used_alternative,
            previous=session,
        )

    async def publish_change(
        self, kind: ChangeType, session: Session, previous: Placement | None = None
    ) -> None:
        """Publish a change event; delivery failures never undo the commit."""
        if self.notifier is None:
            return
        event = SessionChangeEvent(
            type=kind,
            session=session,
            affected_user_ids=[session.student_id, session.therapist_id],
            previous=previous,
        )
        try:
            await call_with_retry(self.retry, "notifications", self.notifier.publish, event)
        except CollaboratorError as e:
            logger.warning(f"Notification for session {session.id} not delivered: {e}")

    async def get_operation(self, operation_id: str) -> BulkReschedulingOperation:
        operation = await self._call("get_operation", self.store.get_operation, operation_id)
        if operation is None:
            raise OperationNotFoundError(operation_id)
        return operation

    async def cancel_operation(self, operation_id: str) -> BulkReschedulingOperation:
        """
        Stop an operation between sessions.

        A pending operation is cancelled at once; an in-progress one stops
        before its next session. Sessions already moved stay moved.
        """
        operation = await self.get_operation(operation_id)
        if operation.is_terminal:
            raise InvalidSchedulingData(
                f"operation is already {operation.status.value}", "operation_id"
            )
        if operation.status == BulkOperationStatus.PENDING:
            operation.status = BulkOperationStatus.CANCELLED
            await self._call("upsert_operation", self.store.upsert_operation, operation)
        else:
            self._cancel_requested.add(operation_id)
        logger.info(f"Cancellation requested for bulk operation {operation_id}")
        return operation

    async def rollback_changes(self, operation_id: str) -> RollbackResult:
        """
        Restore every session the operation moved to its pre-operation record.

        Each restore is re-validated first. A session that was changed again
        since, or whose original slot is now taken, is reported in
        ``not_reverted`` and left alone.

        Raises:
            OperationNotFoundError: If the operation is unknown.
            InvalidSchedulingData: If it is still running or already rolled back.
        """
        operation = await self.get_operation(operation_id)
        if operation.status in (BulkOperationStatus.PENDING, BulkOperationStatus.IN_PROGRESS):
            raise InvalidSchedulingData(
                f"operation is {operation.status.value}; only finished operations can be rolled back",
                "operation_id",
            )
        if operation.status == BulkOperationStatus.ROLLED_BACK:
            raise InvalidSchedulingData("operation was already rolled back", "operation_id")
        result = await self._call(
            "get_operation_result", self.store.get_operation_result, operation_id
        )

        rollback = RollbackResult(
            operation_id=operation_id, success=True, status=BulkOperationStatus.ROLLED_BACK
        )
        items = [i for i in (result.items if result else []) if i.success and not i.reverted]
        for item in reversed(items):
            reason = await self._revert(item)
            if reason is None:
                item.reverted = True
                operation.progress.successful -= 1
                rollback.reverted_session_ids.append(item.session_id)
            else:
                rollback.not_reverted.append({"session_id": item.session_id, "reason": reason})
        rollback.reverted_session_ids.reverse()

        rollback.success = not rollback.not_reverted
        operation.status = BulkOperationStatus.ROLLED_BACK
        await self._call("upsert_operation", self.store.upsert_operation, operation)
        if result is not None:
            result.status = operation.status
            await self._call("upsert_operation_result", self.store.upsert_operation_result, result)
        logger.info(
            f"Rolled back bulk operation {operation_id}: "
            f"{len(rollback.reverted_session_ids)} reverted, {len(rollback.not_reverted)} not reverted"
        )
        return rollback

    async def _revert(self, item: BulkItemResult) -> str | None:
        """Restore one session; returns why it could not be restored."""
        previous = item.previous
        if previous is None:
            return "No pre-operation record"
        lock_keys = {(previous.therapist_id, previous.date)}
        if item.new is not None:
            lock_keys.add((item.new.therapist_id, item.new.date))
        async with self.locks.hold(lock_keys):
            current = await self._call("get_session", self.store.get_session, item.session_id)
            if current is None:
                return "Session no longer exists"
            if current.placement != item.new or not current.is_movable:
                return "Session was changed after the operation"
            sessions, availabilities, rooms = await self._load_context([previous.date])
            clashes = self.detector.blocking_conflicts(
                previous, ScheduleSnapshot(sessions, availabilities, rooms)
            )
            if clashes:
                return "; ".join(c.message for c in clashes)
            await self._call("upsert_session", self.store.upsert_session, previous)
        await self.publish_change(ChangeType.RESTORED, previous, current.placement)
        return None
