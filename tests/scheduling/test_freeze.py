"""Tests for SubscriptionFreezePlanner."""

import asyncio
from dataclasses import replace
from datetime import date

import pytest

from conftest import make_session, windows_between
from therapy_scheduler.exceptions import (
    FreezeNotFoundError,
    FreezeValidationError,
    InvalidSchedulingData,
)
from therapy_scheduler.scheduling.bulk import BulkReschedulingCoordinator
from therapy_scheduler.scheduling.collaborators import (
    NO_RETRY,
    InMemoryNotificationSink,
    InMemorySessionStore,
)
from therapy_scheduler.scheduling.freeze import (
    BUSINESS_DAYS,
    CALENDAR_DAYS,
    SubscriptionFreezePlanner,
    business_days_between,
)
from therapy_scheduler.scheduling.models import (
    BulkOperationStatus,
    ChangeType,
    FreezeRequest,
    FreezeStatus,
    FreezeStrategy,
    SessionStatus,
    SubscriptionStatus,
)


@pytest.fixture
def december_sessions():
    return [
        make_session("d1", day=date(2025, 12, 2), student_id="ST1", program_id="P1"),
        make_session("d2", day=date(2025, 12, 9), student_id="ST1", program_id="P1"),
        # Outside the freeze window
        make_session("d3", day=date(2025, 12, 17), student_id="ST1", program_id="P1"),
        # Another student
        make_session("x1", "14:00", "15:00", day=date(2025, 12, 3), student_id="ST2"),
    ]


@pytest.fixture
def store(december_sessions, subscription, rooms):
    windows = windows_between(date(2025, 12, 1), date(2026, 1, 20))
    return InMemorySessionStore(december_sessions, windows, rooms, [subscription])


@pytest.fixture
def notifier():
    return InMemoryNotificationSink()


@pytest.fixture
def planner(store, notifier):
    coordinator = BulkReschedulingCoordinator(store, notifier=notifier, retry=NO_RETRY)
    return SubscriptionFreezePlanner(store, coordinator, retry=NO_RETRY)


def request(start=date(2025, 12, 1), end=date(2025, 12, 16), **kwargs):
    kwargs.setdefault("reason", "Family travel")
    return FreezeRequest("sub1", start, end, **kwargs)


class TestBusinessDays:
    def test_counts_weekdays_in_half_open_range(self):
        # Monday to the following Monday
        assert business_days_between(date(2025, 12, 1), date(2025, 12, 8)) == 5
        assert business_days_between(date(2025, 12, 6), date(2025, 12, 8)) == 0
        assert business_days_between(date(2025, 12, 8), date(2025, 12, 8)) == 0


class TestImpactAnalysis:
    def test_extend_program(self, planner):
        impact = asyncio.run(planner.calculate_impact_analysis(request()))

        assert impact.affected_session_ids == ["d1", "d2"]
        assert impact.freeze_days == 15
        assert impact.original_end_date == date(2025, 12, 31)
        assert impact.new_end_date == date(2026, 1, 15)
        assert impact.adjustment_days == 15
        assert impact.calculation_method == CALENDAR_DAYS
        assert impact.therapist_workload_delta == {"T1": -2}
        assert impact.cost_adjustment == 0.0

    def test_skip_sessions_costs_the_rate(self, planner):
        impact = asyncio.run(
            planner.calculate_impact_analysis(
                request(strategy=FreezeStrategy.SKIP_SESSIONS, session_rate=45.0)
            )
        )

        assert impact.new_end_date == date(2025, 12, 31)
        assert impact.adjustment_days == 0
        assert impact.cost_adjustment == 90.0

    def test_business_days_extension(self, planner, store):
        store.subscriptions["sub1"] = replace(store.subscriptions["sub1"], exclude_weekends=True)

        impact = asyncio.run(
            planner.calculate_impact_analysis(request(end=date(2025, 12, 15)))
        )

        assert impact.calculation_method == BUSINESS_DAYS
        assert impact.new_end_date == date(2026, 1, 14)

    def test_end_date_is_exclusive(self, planner):
        impact = asyncio.run(
            planner.calculate_impact_analysis(request(end=date(2025, 12, 9)))
        )
        assert impact.affected_session_ids == ["d1"]

    def test_cancelled_sessions_are_not_affected(self, planner, store):
        store.sessions["d1"] = store.sessions["d1"].cancelled()
        impact = asyncio.run(planner.calculate_impact_analysis(request()))
        assert impact.affected_session_ids == ["d2"]

    def test_unknown_subscription(self, planner):
        bad = FreezeRequest("nope", date(2025, 12, 1), date(2025, 12, 5), "Family travel")
        with pytest.raises(InvalidSchedulingData) as exc_info:
            asyncio.run(planner.calculate_impact_analysis(bad))
        assert exc_info.value.field == "subscription_id"


class TestValidation:
    def codes(self, planner, freeze_request):
        with pytest.raises(FreezeValidationError) as exc_info:
            asyncio.run(planner.freeze_subscription(freeze_request))
        return exc_info.value.codes

    def test_reason_required(self, planner):
        assert self.codes(planner, request(reason="  ")) == ["REQUIRED"]

    def test_reason_too_short(self, planner):
        assert self.codes(planner, request(reason="ill")) == ["TOO_SHORT"]

    def test_end_before_start(self, planner):
        assert self.codes(planner, request(end=date(2025, 12, 1))) == ["INVALID_RANGE"]

    def test_too_long(self, planner, store):
        store.subscriptions["sub1"] = replace(store.subscriptions["sub1"], freeze_days_allowed=60)
        assert self.codes(planner, request(end=date(2026, 1, 1))) == ["TOO_LONG"]

    def test_not_enough_freeze_days(self, planner, store):
        store.subscriptions["sub1"] = replace(store.subscriptions["sub1"], freeze_days_used=20)
        assert self.codes(planner, request()) == ["INSUFFICIENT_FREEZE_DAYS"]

    def test_inactive_subscription(self, planner, store):
        store.subscriptions["sub1"] = replace(
            store.subscriptions["sub1"], status=SubscriptionStatus.PAUSED
        )
        assert self.codes(planner, request()) == ["INVALID_STATUS"]

    def test_beyond_subscription(self, planner):
        codes = self.codes(planner, request(date(2026, 1, 5), date(2026, 1, 10)))
        assert codes == ["BEYOND_SUBSCRIPTION"]

    def test_every_error_is_reported(self, planner):
        codes = self.codes(planner, request(end=date(2025, 11, 30), reason=""))
        assert codes == ["REQUIRED", "INVALID_RANGE"]

    def test_overlapping_freeze(self, planner):
        async def run():
            await planner.freeze_subscription(
                request(date(2025, 11, 3), date(2025, 11, 8), reason="School trip")
            )
            await planner.freeze_subscription(
                request(date(2025, 11, 7), date(2025, 11, 10), reason="Family visit")
            )

        with pytest.raises(FreezeValidationError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.codes == ["OVERLAPPING_FREEZE"]

    def test_adjacent_freeze_is_allowed(self, planner):
        async def run():
            await planner.freeze_subscription(
                request(date(2025, 11, 3), date(2025, 11, 8), reason="School trip")
            )
            return await planner.freeze_subscription(
                request(date(2025, 11, 8), date(2025, 11, 10), reason="Family visit")
            )

        assert asyncio.run(run()).success


class TestFreezeSubscription:
    def test_extend_program_moves_sessions(self, planner, store, notifier):
        result = asyncio.run(planner.freeze_subscription(request()))

        assert result.success
        assert store.sessions["d1"].date == date(2026, 1, 2)
        assert store.sessions["d2"].date == date(2026, 1, 9)
        assert store.sessions["d3"].date == date(2025, 12, 17)
        assert store.sessions["d1"].status == SessionStatus.RESCHEDULED

        subscription = store.subscriptions["sub1"]
        assert subscription.end_date == date(2026, 1, 15)
        assert subscription.freeze_days_used == 15

        freeze = result.freeze
        assert freeze.status == FreezeStatus.ACTIVE
        assert freeze.rescheduling_complete
        assert freeze.bulk_operation_id == f"bulk-{freeze.id}"
        assert store.freezes[freeze.id] is freeze
        assert result.bulk_result.status == BulkOperationStatus.COMPLETED
        assert len(notifier.events) == 2

    def test_failed_moves_are_reported(self, planner, store):
        # No hours on the shifted date or the days either side
        closed = {date(2026, 1, 8), date(2026, 1, 9), date(2026, 1, 10)}
        store.availabilities = [a for a in store.availabilities if a.date not in closed]

        result = asyncio.run(planner.freeze_subscription(request()))

        assert not result.success
        assert result.bulk_result.failed_session_ids == ["d2"]
        assert "could not be rescheduled" in result.message
        # The freeze itself stands
        assert result.freeze.status == FreezeStatus.ACTIVE
        assert store.subscriptions["sub1"].end_date == date(2026, 1, 15)

    def test_skip_sessions_cancels(self, planner, store, notifier):
        result = asyncio.run(
            planner.freeze_subscription(
                request(strategy=FreezeStrategy.SKIP_SESSIONS, session_rate=30.0)
            )
        )

        assert result.success
        assert result.bulk_result is None
        assert store.sessions["d1"].status == SessionStatus.CANCELLED
        assert store.sessions["d2"].status == SessionStatus.CANCELLED
        assert store.subscriptions["sub1"].end_date == date(2025, 12, 31)
        assert store.subscriptions["sub1"].freeze_days_used == 15
        assert result.impact.cost_adjustment == 60.0
        assert [e.type for e in notifier.events] == [ChangeType.CANCELLED] * 2

    def test_business_day_freeze_skips_weekends(self, planner, store):
        store.subscriptions["sub1"] = replace(store.subscriptions["sub1"], exclude_weekends=True)

        result = asyncio.run(planner.freeze_subscription(request(end=date(2025, 12, 15))))

        assert result.success
        assert store.subscriptions["sub1"].end_date == date(2026, 1, 14)
        for session_id in ("d1", "d2"):
            assert store.sessions[session_id].date.weekday() < 5

    def test_preview_changes_nothing(self, planner, store):
        result = asyncio.run(planner.freeze_subscription(request(preview_only=True)))

        assert result.success
        assert result.message.startswith("Preview")
        assert result.freeze is None
        assert store.freezes == {}
        assert store.sessions["d1"].date == date(2025, 12, 2)
        assert store.subscriptions["sub1"].end_date == date(2025, 12, 31)


class TestFreezeLifecycle:
    def test_cancel_extend_freeze_restores_everything(self, planner, store):
        async def run():
            result = await planner.freeze_subscription(request())
            return await planner.cancel_freeze(result.freeze.id)

        freeze = asyncio.run(run())

        assert freeze.status == FreezeStatus.CANCELLED
        assert store.sessions["d1"].date == date(2025, 12, 2)
        assert store.sessions["d2"].date == date(2025, 12, 9)
        subscription = store.subscriptions["sub1"]
        assert subscription.end_date == date(2025, 12, 31)
        assert subscription.freeze_days_used == 0
        assert store.operations[freeze.bulk_operation_id].status == BulkOperationStatus.ROLLED_BACK

    def test_cancel_skip_freeze_restores_sessions(self, planner, store):
        async def run():
            result = await planner.freeze_subscription(
                request(strategy=FreezeStrategy.SKIP_SESSIONS)
            )
            return await planner.cancel_freeze(result.freeze.id)

        asyncio.run(run())

        assert store.sessions["d1"].status == SessionStatus.SCHEDULED
        assert store.sessions["d2"].status == SessionStatus.SCHEDULED

    def test_cancelled_freeze_releases_its_window(self, planner):
        async def run():
            first = await planner.freeze_subscription(request())
            await planner.cancel_freeze(first.freeze.id)
            return await planner.freeze_subscription(request(reason="Rebooked travel"))

        assert asyncio.run(run()).success

    def test_complete_freeze(self, planner):
        async def run():
            result = await planner.freeze_subscription(request())
            return await planner.complete_freeze(result.freeze.id)

        freeze = asyncio.run(run())
        assert freeze.status == FreezeStatus.COMPLETED

    def test_cancel_completed_freeze_is_rejected(self, planner):
        async def run():
            result = await planner.freeze_subscription(request())
            await planner.complete_freeze(result.freeze.id)
            await planner.cancel_freeze(result.freeze.id)

        with pytest.raises(InvalidSchedulingData):
            asyncio.run(run())

    def test_unknown_freeze(self, planner):
        with pytest.raises(FreezeNotFoundError):
            asyncio.run(planner.cancel_freeze("freeze-missing"))

    def test_list_freezes_sorted(self, planner):
        async def run():
            await planner.freeze_subscription(
                request(date(2025, 11, 10), date(2025, 11, 12), reason="Dentist visit")
            )
            await planner.freeze_subscription(
                request(date(2025, 10, 6), date(2025, 10, 8), reason="School trip")
            )
            return await planner.list_freezes("sub1")

        freezes = asyncio.run(run())
        assert [f.start_date for f in freezes] == [date(2025, 10, 6), date(2025, 11, 10)]
