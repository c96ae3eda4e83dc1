"""Subscription freeze planning: impact analysis and the freeze lifecycle."""

import logging
import uuid
from collections import Counter
from dataclasses import replace
from datetime import date, timedelta

from ..exceptions import FreezeNotFoundError, FreezeValidationError, InvalidSchedulingData
from .bulk import BulkReschedulingCoordinator
from .collaborators import RetryPolicy, SessionStore, call_with_retry
from .conflicts import ScheduleSnapshot
from .constants import FREEZE_MAX_DAYS, FREEZE_MIN_REASON_LENGTH, WEEKEND_DAYS
from .models import (
    BulkOperationResult,
    BulkOperationStatus,
    BulkOperationType,
    BulkParameters,
    BulkReschedulingOperation,
    ChangeType,
    FreezeRequest,
    FreezeResult,
    FreezeStatus,
    FreezeStrategy,
    ImpactAnalysis,
    Session,
    SessionStatus,
    Subscription,
    SubscriptionFreeze,
    SubscriptionStatus,
)
from .utils import add_business_days, date_range

logger = logging.getLogger(__name__)

CALENDAR_DAYS = "calendar_days"
BUSINESS_DAYS = "business_days_only"

# Freezes in these states still hold their window
_HOLDING_STATUSES = (FreezeStatus.PENDING, FreezeStatus.ACTIVE)


def _error(field: str, code: str, message: str) -> dict[str, str]:
    return {"field": field, "code": code, "message": message}


def business_days_between(start: date, end: date) -> int:
    """Working days in the half-open range [start, end)."""
    if end <= start:
        return 0
    return sum(
        1 for day in date_range(start, end - timedelta(days=1)) if day.weekday() not in WEEKEND_DAYS
    )


class SubscriptionFreezePlanner:
    """
    Pauses subscriptions and moves or drops the sessions inside the pause.

    ``extend_program`` pushes the program end date back by the frozen
    duration and hands the affected sessions to the bulk coordinator as a
    ``reschedule_range`` operation into the extension. ``skip_sessions``
    cancels them and keeps the end date.
    """

    def __init__(
        self,
        store: SessionStore,
        coordinator: BulkReschedulingCoordinator | None = None,
        retry: RetryPolicy | None = None,
        max_freeze_days: int = FREEZE_MAX_DAYS,
        min_reason_length: int = FREEZE_MIN_REASON_LENGTH,
    ):
        self.store = store
        self.retry = retry or RetryPolicy()
        self.coordinator = coordinator or BulkReschedulingCoordinator(store, retry=self.retry)
        self.max_freeze_days = max_freeze_days
        self.min_reason_length = min_reason_length

    async def _call(self, name: str, func, *args, **kwargs):
        return await call_with_retry(self.retry, f"session store ({name})", func, *args, **kwargs)

    async def _subscription(self, subscription_id: str) -> Subscription:
        subscription = await self._call(
            "get_subscription", self.store.get_subscription, subscription_id
        )
        if subscription is None:
            raise InvalidSchedulingData(
                f"subscription '{subscription_id}' not found", "subscription_id"
            )
        return subscription

    def validate_request(
        self,
        request: FreezeRequest,
        subscription: Subscription,
        existing: list[SubscriptionFreeze],
    ) -> None:
        """
        Check a freeze request against the subscription rules.

        Every broken rule is collected before raising, so the caller sees all
        of them at once.

        Raises:
            FreezeValidationError: If any rule is broken.
        """
        errors: list[dict[str, str]] = []
        reason = request.reason.strip()
        if not reason:
            errors.append(_error("reason", "REQUIRED", "Reason is required"))
        elif len(reason) < self.min_reason_length:
            errors.append(
                _error(
                    "reason",
                    "TOO_SHORT",
                    f"Reason must be at least {self.min_reason_length} characters",
                )
            )

        days = request.duration_days
        if days <= 0:
            errors.append(_error("end_date", "INVALID_RANGE", "End date must be after start date"))
        elif days > self.max_freeze_days:
            errors.append(
                _error(
                    "duration",
                    "TOO_LONG",
                    f"Maximum freeze duration is {self.max_freeze_days} days per request",
                )
            )

        if subscription.status != SubscriptionStatus.ACTIVE:
            errors.append(
                _error(
                    "status",
                    "INVALID_STATUS",
                    f"Only active subscriptions can be frozen. Current status: {subscription.status.value}",
                )
            )
        if request.start_date > subscription.end_date:
            errors.append(
                _error(
                    "start_date",
                    "BEYOND_SUBSCRIPTION",
                    "Freeze cannot start after the subscription ends",
                )
            )
        if days > 0 and days > subscription.remaining_freeze_days:
            errors.append(
                _error(
                    "freeze_days",
                    "INSUFFICIENT_FREEZE_DAYS",
                    f"Insufficient freeze days. Available: {subscription.remaining_freeze_days}, "
                    f"Requested: {days}",
                )
            )

        for freeze in existing:
            if freeze.status in _HOLDING_STATUSES and freeze.overlaps(
                request.start_date, request.end_date
            ):
                errors.append(
                    _error(
                        "start_date",
                        "OVERLAPPING_FREEZE",
                        f"Overlaps freeze {freeze.id} "
                        f"({freeze.start_date.isoformat()} to {freeze.end_date.isoformat()})",
                    )
                )

        if errors:
            raise FreezeValidationError(errors)

    async def calculate_impact_analysis(self, request: FreezeRequest) -> ImpactAnalysis:
        """
        Work out what freezing the subscription over [start_date, end_date) changes.

        Args:
            request: The freeze request.

        Returns:
            ImpactAnalysis listing the affected sessions, the new program end
            date and the freed sessions per therapist (negative counts).
        """
        subscription = await self._subscription(request.subscription_id)
        return await self._impact(request, subscription)

    async def _impact(self, request: FreezeRequest, subscription: Subscription) -> ImpactAnalysis:
        if request.end_date <= request.start_date:
            raise InvalidSchedulingData("must be after start_date", "end_date")
        sessions = await self._call(
            "list_sessions",
            self.store.list_sessions,
            request.start_date,
            request.end_date - timedelta(days=1),
            None,
            subscription.student_id,
        )
        affected = sorted(
            (
                s
                for s in sessions
                if s.is_movable
                and (not subscription.program_id or s.program_id in ("", subscription.program_id))
            ),
            key=lambda s: (s.date, s.start, s.id),
        )

        original_end = subscription.end_date
        if subscription.exclude_weekends:
            method = BUSINESS_DAYS
            extension = business_days_between(request.start_date, request.end_date)
            extended_end = add_business_days(original_end, extension)
        else:
            method = CALENDAR_DAYS
            extended_end = original_end + timedelta(days=request.duration_days)

        if request.strategy == FreezeStrategy.EXTEND_PROGRAM:
            new_end = extended_end
            cost = 0.0
        else:
            new_end = original_end
            cost = len(affected) * request.session_rate

        workload = Counter(s.therapist_id for s in affected)
        return ImpactAnalysis(
            subscription_id=subscription.id,
            student_id=subscription.student_id,
            strategy=request.strategy,
            freeze_days=request.duration_days,
            affected_sessions=affected,
            original_end_date=original_end,
            new_end_date=new_end,
            adjustment_days=(new_end - original_end).days,
            calculation_method=method,
            therapist_workload_delta={t: -n for t, n in sorted(workload.items())},
            cost_adjustment=cost,
        )

    async def freeze_subscription(self, request: FreezeRequest) -> FreezeResult:
        """
        Validate, persist and carry out a freeze.

        The freeze is stored as ``active`` before any session is touched and
        ``rescheduling_complete`` is set once the bulk operation reaches a
        terminal state. Failed session moves are reported through the bulk
        result; they do not undo the freeze.

        Raises:
            FreezeValidationError: If the request breaks a subscription rule.
            InvalidSchedulingData: If the subscription does not exist.
        """
        subscription = await self._subscription(request.subscription_id)
        existing = await self._call("list_freezes", self.store.list_freezes, subscription.id)
        self.validate_request(request, subscription, existing)
        impact = await self._impact(request, subscription)

        if request.preview_only:
            return FreezeResult(
                success=True,
                message=f"Preview: {len(impact.affected_sessions)} session(s) affected",
                impact=impact,
            )

        freeze = SubscriptionFreeze(
            id=f"freeze-{uuid.uuid4().hex[:12]}",
            subscription_id=subscription.id,
            student_id=subscription.student_id,
            start_date=request.start_date,
            end_date=request.end_date,
            reason=request.reason.strip(),
            strategy=request.strategy,
            status=FreezeStatus.ACTIVE,
            impact=impact,
        )
        await self._call("upsert_freeze", self.store.upsert_freeze, freeze)
        logger.info(
            f"Freeze {freeze.id} for subscription {subscription.id}: "
            f"{request.start_date.isoformat()} to {request.end_date.isoformat()}, "
            f"{len(impact.affected_sessions)} session(s), strategy {request.strategy.value}"
        )

        bulk_result = None
        if request.strategy == FreezeStrategy.EXTEND_PROGRAM:
            if impact.affected_sessions:
                bulk_result = await self._reschedule(freeze, impact, subscription)
        else:
            await self._skip(impact.affected_sessions)

        await self._call(
            "upsert_subscription",
            self.store.upsert_subscription,
            replace(
                subscription,
                end_date=impact.new_end_date,
                freeze_days_used=subscription.freeze_days_used + freeze.duration_days,
            ),
        )

        operation_done = bulk_result is None or bulk_result.status in (
            BulkOperationStatus.COMPLETED,
            BulkOperationStatus.FAILED,
            BulkOperationStatus.CANCELLED,
        )
        freeze.rescheduling_complete = operation_done
        await self._call("upsert_freeze", self.store.upsert_freeze, freeze)

        if bulk_result is not None and not bulk_result.success:
            message = (
                f"Subscription frozen; {len(bulk_result.failed_session_ids)} of "
                f"{len(impact.affected_sessions)} session(s) could not be rescheduled"
            )
            return FreezeResult(False, message, impact, freeze, bulk_result)
        return FreezeResult(
            True,
            f"Subscription frozen until {request.end_date.isoformat()}; "
            f"program ends {impact.new_end_date.isoformat()}",
            impact,
            freeze,
            bulk_result,
        )

    async def _reschedule(
        self,
        freeze: SubscriptionFreeze,
        impact: ImpactAnalysis,
        subscription: Subscription,
    ) -> BulkOperationResult:
        target_start = impact.original_end_date + timedelta(days=1)
        # Shifted sessions keep their spacing, so the window spans the calendar duration
        target_end = max(
            impact.new_end_date, target_start + timedelta(days=freeze.duration_days - 1)
        )
        blocked: frozenset[date] = frozenset()
        if subscription.exclude_weekends:
            blocked = frozenset(
                d
                for d in date_range(target_start, target_end)
                if d.weekday() in WEEKEND_DAYS
            )
        operation = BulkReschedulingOperation(
            id=f"bulk-{freeze.id}",
            operation_type=BulkOperationType.RESCHEDULE_RANGE,
            session_ids=impact.affected_session_ids,
            parameters=BulkParameters(
                source_start=freeze.start_date,
                source_end=freeze.end_date - timedelta(days=1),
                target_start=target_start,
                target_end=target_end,
                blocked_dates=blocked,
                reason=f"Subscription freeze: {freeze.reason}",
            ),
        )
        freeze.bulk_operation_id = operation.id
        await self._call("upsert_freeze", self.store.upsert_freeze, freeze)
        return await self.coordinator.process_bulk_operation(operation)

    async def _skip(self, sessions: list[Session]) -> None:
        for session in sessions:
            cancelled = session.cancelled()
            await self._call("upsert_session", self.store.upsert_session, cancelled)
            await self.coordinator.publish_change(ChangeType.CANCELLED, cancelled, session.placement)
        if sessions:
            logger.info(f"Cancelled {len(sessions)} session(s) inside the freeze window")

    async def _freeze(self, freeze_id: str) -> SubscriptionFreeze:
        freeze = await self._call("get_freeze", self.store.get_freeze, freeze_id)
        if freeze is None:
            raise FreezeNotFoundError(freeze_id)
        return freeze

    async def cancel_freeze(self, freeze_id: str) -> SubscriptionFreeze:
        """
        Undo an active freeze.

        Moved sessions go back through the coordinator's rollback, skipped
        sessions are restored where their slot is still free, and the
        subscription gets its end date and freeze days back.

        Raises:
            FreezeNotFoundError: If the freeze is unknown.
            InvalidSchedulingData: If the freeze is not active.
        """
        freeze = await self._freeze(freeze_id)
        if freeze.status != FreezeStatus.ACTIVE:
            raise InvalidSchedulingData(
                f"freeze is {freeze.status.value}; only active freezes can be cancelled", "freeze_id"
            )

        if freeze.bulk_operation_id:
            operation = await self.coordinator.get_operation(freeze.bulk_operation_id)
            if operation.status != BulkOperationStatus.ROLLED_BACK:
                rollback = await self.coordinator.rollback_changes(freeze.bulk_operation_id)
                if rollback.not_reverted:
                    logger.warning(
                        f"Freeze {freeze_id}: {len(rollback.not_reverted)} session(s) "
                        "could not be moved back"
                    )
        elif freeze.strategy == FreezeStrategy.SKIP_SESSIONS and freeze.impact:
            await self._restore_skipped(freeze.impact.affected_sessions)

        subscription = await self._subscription(freeze.subscription_id)
        original_end = freeze.impact.original_end_date if freeze.impact else subscription.end_date
        await self._call(
            "upsert_subscription",
            self.store.upsert_subscription,
            replace(
                subscription,
                end_date=original_end,
                freeze_days_used=max(0, subscription.freeze_days_used - freeze.duration_days),
            ),
        )

        freeze.status = FreezeStatus.CANCELLED
        await self._call("upsert_freeze", self.store.upsert_freeze, freeze)
        logger.info(f"Cancelled freeze {freeze_id}")
        return freeze

    async def _restore_skipped(self, sessions: list[Session]) -> None:
        detector = self.coordinator.detector
        for session in sessions:
            current = await self._call("get_session", self.store.get_session, session.id)
            if current is None or current.status != SessionStatus.CANCELLED:
                continue
            context = await self._call(
                "list_sessions", self.store.list_sessions, session.date, session.date
            )
            availabilities = await self._call(
                "list_availabilities", self.store.list_availabilities, session.date, session.date
            )
            rooms = await self._call("list_rooms", self.store.list_rooms)
            clashes = detector.blocking_conflicts(
                session, ScheduleSnapshot(context, availabilities, rooms)
            )
            if clashes:
                logger.warning(
                    f"Session {session.id} stays cancelled: "
                    + "; ".join(c.message for c in clashes)
                )
                continue
            await self._call("upsert_session", self.store.upsert_session, session)
            await self.coordinator.publish_change(ChangeType.RESTORED, session)

    async def complete_freeze(self, freeze_id: str) -> SubscriptionFreeze:
        """
        Close an active freeze whose sessions have been handled.

        Raises:
            FreezeNotFoundError: If the freeze is unknown.
            InvalidSchedulingData: If the freeze is not active or its bulk
                operation has not finished.
        """
        freeze = await self._freeze(freeze_id)
        if freeze.status != FreezeStatus.ACTIVE:
            raise InvalidSchedulingData(
                f"freeze is {freeze.status.value}; only active freezes can be completed", "freeze_id"
            )
        if freeze.bulk_operation_id:
            operation = await self.coordinator.get_operation(freeze.bulk_operation_id)
            if not operation.is_terminal:
                raise InvalidSchedulingData(
                    f"bulk operation {operation.id} is still {operation.status.value}", "freeze_id"
                )
            freeze.rescheduling_complete = True
        freeze.status = FreezeStatus.COMPLETED
        await self._call("upsert_freeze", self.store.upsert_freeze, freeze)
        logger.info(f"Completed freeze {freeze_id}")
        return freeze

    async def list_freezes(self, subscription_id: str) -> list[SubscriptionFreeze]:
        freezes = await self._call("list_freezes", self.store.list_freezes, subscription_id)
        return sorted(freezes, key=lambda f: f.start_date)
