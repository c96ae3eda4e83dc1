"""Tests for the JSON request handlers."""

import asyncio

import pytest

from therapy_scheduler.handlers import (
    handle_analyze,
    handle_bulk_operation,
    handle_detect_conflicts,
    handle_freeze,
    handle_impact_analysis,
    handle_operation_status,
    handle_optimize,
    handle_rollback,
    handle_validate_session,
)
from therapy_scheduler.scheduling.bulk import BulkReschedulingCoordinator
from therapy_scheduler.scheduling.collaborators import NO_RETRY, InMemorySessionStore
from therapy_scheduler.scheduling.freeze import SubscriptionFreezePlanner
from therapy_scheduler.scheduling.integration import IntegrationValidationFacade
from therapy_scheduler.scheduling.models import Session, Subscription, TherapistAvailability, TherapyRoom


def session(session_id, start="10:00", end="11:00", **overrides):
    data = {
        "id": session_id,
        "student_id": f"student-{session_id}",
        "therapist_id": "T1",
        "room_id": "R1",
        "date": "2025-09-01",
        "start_time": start,
        "end_time": end,
        "session_type": "speech",
    }
    data.update(overrides)
    return data


AVAILABILITY = {
    "therapist_id": "T1",
    "date": "2025-09-01",
    "start_time": "09:00",
    "end_time": "17:00",
    "breaks": [{"start_time": "12:00", "end_time": "13:00"}],
}
ROOMS = [
    {"id": "R1", "capacity": 1, "supported_session_types": ["speech"]},
    {"id": "R2", "capacity": 1, "supported_session_types": ["speech"]},
]


@pytest.fixture
def store():
    sessions = [Session.from_dict(session("a", "09:00", "10:00"))]
    return InMemorySessionStore(
        sessions,
        [TherapistAvailability.from_dict(AVAILABILITY)],
        [TherapyRoom.from_dict(r) for r in ROOMS],
        [Subscription.from_dict(
            {
                "id": "sub1",
                "student_id": "student-a",
                "start_date": "2025-08-01",
                "end_date": "2025-12-31",
            }
        )],
    )


@pytest.fixture
def coordinator(store):
    return BulkReschedulingCoordinator(store, retry=NO_RETRY)


class TestHandleDetectConflicts:
    def test_reports_double_booking(self):
        body = {
            "session": session("new"),
            "sessions": [session("a")],
            "availabilities": [AVAILABILITY],
            "rooms": ROOMS,
        }

        response = handle_detect_conflicts(body)

        assert response["success"]
        report = response["data"]
        assert report["has_blocking_conflicts"]
        kinds = {c["kind"] for c in report["conflicts"]}
        assert "therapist_double_booking" in kinds
        assert report["alternatives"]

    def test_invalid_session_is_an_error_response(self):
        response = handle_detect_conflicts({"session": session("new", end_time="99:00")})

        assert not response["success"]
        assert response["error"]["error"] == "InvalidSchedulingData"
        assert response["error"]["field"] == "session"

    def test_invalid_list_entry_names_its_index(self):
        body = {"session": session("new"), "sessions": [session("a"), {"id": "b"}]}
        response = handle_detect_conflicts(body)
        assert response["error"]["field"] == "sessions[1]"

    def test_sessions_must_be_a_list(self):
        response = handle_detect_conflicts({"session": session("new"), "sessions": "a"})
        assert response["error"]["field"] == "sessions"

    def test_non_numeric_room_capacity(self):
        body = {
            "session": session("new"),
            "rooms": [{"id": "R1", "capacity": "two", "supported_session_types": ["speech"]}],
        }

        response = handle_detect_conflicts(body)

        assert not response["success"]
        assert response["error"]["error"] == "InvalidSchedulingData"
        assert response["error"]["field"] == "capacity"

    def test_non_numeric_daily_limit(self):
        body = {
            "session": session("new"),
            "availabilities": [dict(AVAILABILITY, max_sessions_per_day=[8])],
        }
        response = handle_detect_conflicts(body)
        assert response["error"]["field"] == "max_sessions_per_day"


class TestHandleOptimize:
    def test_resolves_clash(self):
        body = {
            "sessions": [session("a"), session("b")],
            "availabilities": [AVAILABILITY],
            "rooms": ROOMS,
            "algorithm": "constraint_satisfaction",
            "seed": 7,
        }

        response = handle_optimize(body)

        assert response["success"]
        result = response["data"]
        assert result["success"]
        assert len(result["assignments"]) == 2
        assert result["unresolved"] == []

    def test_unknown_algorithm(self):
        response = handle_optimize({"sessions": [], "algorithm": "magic"})
        assert not response["success"]
        assert response["error"]["field"] == "algorithm"

    def test_bad_constraints(self):
        response = handle_optimize({"sessions": [], "constraints": {"therapist": {}}})
        assert not response["success"]
        assert response["error"]["error"] == "ConfigurationError"

    @pytest.mark.parametrize(
        "key, value",
        [
            ("time_budget_seconds", "5"),
            ("unresolved_tolerance", "half"),
            ("unresolved_tolerance", True),
            ("seed", 1.5),
        ],
    )
    def test_non_numeric_run_options(self, key, value):
        response = handle_optimize({"sessions": [], key: value})

        assert not response["success"]
        assert response["error"]["error"] == "InvalidSchedulingData"
        assert response["error"]["field"] == key


def test_handle_analyze():
    response = handle_analyze({"sessions": [session("a", "09:00", "10:00"), session("b", "11:00", "12:00")]})
    assert response["success"]
    assert response["data"]["average_utilization"] == 25.0


class TestBulkHandlers:
    def test_operation_status_and_rollback(self, store, coordinator):
        body = {
            "id": "op1",
            "operation_type": "time_shift",
            "session_ids": ["a"],
            "parameters": {"shift_minutes": 60},
        }

        async def run():
            processed = await handle_bulk_operation(body, coordinator)
            status = await handle_operation_status({"operation_id": "op1"}, coordinator)
            rolled_back = await handle_rollback({"operation_id": "op1"}, coordinator)
            return processed, status, rolled_back

        processed, status, rolled_back = asyncio.run(run())

        assert processed["data"]["status"] == "completed"
        assert status["data"]["status"] == "completed"
        assert rolled_back["data"]["reverted_session_ids"] == ["a"]
        assert store.sessions["a"].start == 9 * 60

    def test_unknown_operation(self, coordinator):
        response = asyncio.run(handle_operation_status({"operation_id": "nope"}, coordinator))
        assert not response["success"]
        assert response["error"]["error"] == "OperationNotFoundError"

    def test_missing_operation_id(self, coordinator):
        response = asyncio.run(handle_rollback({}, coordinator))
        assert response["error"]["field"] == "operation_id"

    def test_malformed_operation(self, coordinator):
        response = asyncio.run(handle_bulk_operation({"id": "op1"}, coordinator))
        assert response["error"]["field"] == "operation"

    def test_non_numeric_shift(self, coordinator):
        body = {
            "id": "op1",
            "operation_type": "time_shift",
            "session_ids": ["a"],
            "parameters": {"shift_minutes": "an hour"},
        }
        response = asyncio.run(handle_bulk_operation(body, coordinator))
        assert response["error"]["field"] == "shift_minutes"


class TestFreezeHandlers:
    def test_impact_and_preview(self, store, coordinator):
        planner = SubscriptionFreezePlanner(store, coordinator, retry=NO_RETRY)
        body = {
            "subscription_id": "sub1",
            "start_date": "2025-09-01",
            "end_date": "2025-09-08",
            "reason": "Family travel",
            "preview_only": True,
        }

        async def run():
            return (
                await handle_impact_analysis(body, planner),
                await handle_freeze(body, planner),
            )

        impact, preview = asyncio.run(run())

        assert impact["data"]["affected_session_ids"] == ["a"]
        assert impact["data"]["new_end_date"] == "2026-01-07"
        assert preview["data"]["success"]
        assert preview["data"]["freeze"] is None

    def test_validation_errors_are_listed(self, store, coordinator):
        planner = SubscriptionFreezePlanner(store, coordinator, retry=NO_RETRY)
        body = {
            "subscription_id": "sub1",
            "start_date": "2025-09-01",
            "end_date": "2025-09-08",
            "reason": "no",
        }

        response = asyncio.run(handle_freeze(body, planner))

        assert not response["success"]
        assert response["error"]["error"] == "FreezeValidationError"


def test_handle_validate_session(store):
    facade = IntegrationValidationFacade(store, retry=NO_RETRY)

    response = asyncio.run(handle_validate_session({"session": session("new")}, facade))

    assert response["success"]
    assert response["data"]["success"]
    assert "Enrollment not checked" in response["data"]["warnings"]
