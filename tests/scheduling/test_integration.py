"""Tests for IntegrationValidationFacade."""

import asyncio

import pytest

from conftest import make_session, make_window
from therapy_scheduler.exceptions import ConcurrentModificationError, SchedulingConflictError
from therapy_scheduler.scheduling.collaborators import (
    NO_RETRY,
    InMemoryNotificationSink,
    InMemorySessionStore,
)
from therapy_scheduler.scheduling.integration import IntegrationValidationFacade, aggregate
from therapy_scheduler.scheduling.models import (
    ChangeType,
    CollaboratorResult,
    ConflictKind,
    SessionType,
)


class FakeEnrollment:
    def __init__(self, enrolled=True):
        self.enrolled = enrolled
        self.calls = []

    async def check_enrollment(self, student_id, program_id):
        self.calls.append((student_id, program_id))
        if self.enrolled:
            return CollaboratorResult(success=True, data={"program_id": program_id})
        return CollaboratorResult(success=False, error=f"Student {student_id} is not enrolled")


class UnreachableEnrollment:
    async def check_enrollment(self, student_id, program_id):
        raise ConnectionError("enrollment service timed out")


class FakeBilling:
    async def check_billing_eligibility(self, session):
        return CollaboratorResult(success=True, warnings=["Authorization expires soon"])


class FakeQualification:
    def __init__(self, qualified=True):
        self.qualified = qualified

    async def check_qualification(self, therapist_id, session_type):
        return CollaboratorResult(success=self.qualified)


class RacingStore(InMemorySessionStore):
    """Adds a rival session on the second schedule read."""

    def __init__(self, *args, rival=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.rival = rival
        self.reads = 0

    async def list_sessions(self, *args, **kwargs):
        self.reads += 1
        if self.reads == 2 and self.rival is not None:
            self.sessions[self.rival.id] = self.rival
        return await super().list_sessions(*args, **kwargs)


@pytest.fixture
def store(rooms, monday_window):
    return InMemorySessionStore([make_session("existing", "09:00", "10:00")], [monday_window], rooms)


def facade(store, **kwargs):
    kwargs.setdefault("retry", NO_RETRY)
    return IntegrationValidationFacade(store, **kwargs)


class TestValidateSessionIntegration:
    def test_all_checks_pass(self, store):
        enrollment = FakeEnrollment()
        candidate = make_session("new", "10:00", "11:00", student_id="ST1", program_id="P1")
        checker = facade(
            store, enrollment=enrollment, billing=FakeBilling(), qualification=FakeQualification()
        )

        result = asyncio.run(checker.validate_session_integration(candidate))

        assert result.success
        assert result.error is None
        assert list(result.checks) == ["enrollment", "therapist", "room", "billing"]
        assert result.warnings == ["Authorization expires soon"]
        assert enrollment.calls == [("ST1", "P1")]

    def test_missing_services_are_warnings(self, store):
        candidate = make_session("new", "10:00", "11:00")

        result = asyncio.run(facade(store).validate_session_integration(candidate))

        assert result.success
        assert result.warnings == [
            "Enrollment not checked",
            "Therapist qualification not checked",
            "Billing eligibility not checked",
        ]

    def test_unreachable_service_fails_its_check(self, store):
        candidate = make_session("new", "10:00", "11:00")

        result = asyncio.run(
            facade(store, enrollment=UnreachableEnrollment()).validate_session_integration(candidate)
        )

        assert not result.success
        assert not result.checks["enrollment"].success
        assert "enrollment unavailable" in result.error
        assert result.checks["therapist"].success

    def test_not_enrolled(self, store):
        candidate = make_session("new", "10:00", "11:00", student_id="ST9")

        result = asyncio.run(
            facade(store, enrollment=FakeEnrollment(False)).validate_session_integration(candidate)
        )

        assert not result.success
        assert "ST9 is not enrolled" in result.error

    def test_unqualified_therapist(self, store):
        candidate = make_session("new", "10:00", "11:00")

        result = asyncio.run(
            facade(store, qualification=FakeQualification(False)).validate_session_integration(candidate)
        )

        assert not result.checks["therapist"].success
        assert "not qualified for speech sessions" in result.error

    def test_double_booking_fails_therapist_check(self, store):
        candidate = make_session("new", "09:30", "10:30", room_id="R2")

        result = asyncio.run(facade(store).validate_session_integration(candidate))

        assert not result.checks["therapist"].success
        assert result.checks["room"].success
        assert ConflictKind.THERAPIST_DOUBLE_BOOKING in {c.kind for c in result.conflicts}

    def test_room_problems_fail_room_check(self, store):
        candidate = make_session("new", "10:00", "11:00", room_id="GYM")

        result = asyncio.run(facade(store).validate_session_integration(candidate))

        assert not result.checks["room"].success
        assert result.checks["therapist"].success
        assert result.error.startswith("Room: ")

    def test_every_failure_is_joined(self, store):
        candidate = make_session("new", "09:30", "10:30", room_id="GYM")

        result = asyncio.run(
            facade(store, enrollment=FakeEnrollment(False)).validate_session_integration(candidate)
        )

        assert result.error.count("; ") >= 2
        assert not result.checks["enrollment"].success
        assert not result.checks["therapist"].success
        assert not result.checks["room"].success


class TestCommitSession:
    def test_commit_stores_and_announces(self, store):
        notifier = InMemoryNotificationSink()
        candidate = make_session("new", "10:00", "11:00")

        asyncio.run(facade(store, notifier=notifier).commit_session(candidate))

        assert store.sessions["new"] == candidate
        assert len(notifier.events) == 1
        event = notifier.events[0]
        assert event.type == ChangeType.CREATED
        assert event.previous is None
        assert event.affected_user_ids == ["student-new", "T1"]

    def test_commit_of_known_session_is_a_reschedule(self, store):
        notifier = InMemoryNotificationSink()
        original = store.sessions["existing"]
        moved = make_session("existing", "14:00", "15:00")

        asyncio.run(facade(store, notifier=notifier).commit_session(moved))

        assert store.sessions["existing"].start == moved.start
        assert notifier.events[0].type == ChangeType.RESCHEDULED
        assert notifier.events[0].previous == original.placement

    def test_conflicting_commit_is_rejected(self, store):
        candidate = make_session("new", "09:00", "10:00", room_id="R2")

        with pytest.raises(SchedulingConflictError) as exc_info:
            asyncio.run(facade(store).commit_session(candidate))

        assert exc_info.value.conflicts
        assert all(c.is_blocking for c in exc_info.value.conflicts)
        assert "new" not in store.sessions

    def test_concurrent_write_is_detected(self, rooms):
        rival = make_session("rival", "10:00", "11:00", room_id="R2")
        store = RacingStore([], [make_window()], rooms, rival=rival)
        candidate = make_session("new", "10:00", "11:00")

        with pytest.raises(ConcurrentModificationError):
            asyncio.run(facade(store).commit_session(candidate))

        assert "new" not in store.sessions

    def test_unqualified_specialization_blocks_commit(self, rooms):
        window = make_window(specializations={SessionType.ABA})
        store = InMemorySessionStore([], [window], rooms)

        with pytest.raises(SchedulingConflictError):
            asyncio.run(facade(store).commit_session(make_session("new")))


class TestAggregate:
    def test_warnings_keep_first_seen_order(self):
        result = aggregate(
            {
                "a": CollaboratorResult(True, warnings=["x", "y"]),
                "b": CollaboratorResult(True, warnings=["y", "z"]),
            }
        )
        assert result.success
        assert result.warnings == ["x", "y", "z"]

    def test_failure_without_message_is_named(self):
        result = aggregate({"billing": CollaboratorResult(False)})
        assert not result.success
        assert result.error == "billing check failed"
