"""Contracts of the external collaborators and the retry policy used to call them.

The persistence, enrollment, billing, qualification and notification
systems live outside this package. Services receive them as constructor
arguments; nothing here is a process-wide singleton.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Iterable, Protocol, TypeVar

from ..exceptions import CollaboratorError
from .constants import RETRY_BACKOFF_SECONDS, RETRY_MAX_ATTEMPTS
from .models import (
    BulkOperationResult,
    BulkReschedulingOperation,
    CollaboratorResult,
    Session,
    SessionChangeEvent,
    SessionType,
    Subscription,
    SubscriptionFreeze,
    TherapistAvailability,
    TherapyRoom,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionStore(Protocol):
    """Persistence collaborator. Writes are single-record upserts."""

    async def get_session(self, session_id: str) -> Session | None: ...

    async def list_sessions(
        self,
        start: date | None = None,
        end: date | None = None,
        therapist_ids: Iterable[str] | None = None,
        student_id: str | None = None,
    ) -> list[Session]: ...

    async def upsert_session(self, session: Session) -> None: ...

    async def list_availabilities(
        self,
        start: date | None = None,
        end: date | None = None,
        therapist_ids: Iterable[str] | None = None,
    ) -> list[TherapistAvailability]: ...

    async def list_rooms(self) -> list[TherapyRoom]: ...

    async def get_subscription(self, subscription_id: str) -> Subscription | None: ...

    async def upsert_subscription(self, subscription: Subscription) -> None: ...

    async def list_freezes(self, subscription_id: str) -> list[SubscriptionFreeze]: ...

    async def get_freeze(self, freeze_id: str) -> SubscriptionFreeze | None: ...

    async def upsert_freeze(self, freeze: SubscriptionFreeze) -> None: ...

    async def get_operation(self, operation_id: str) -> BulkReschedulingOperation | None: ...

    async def upsert_operation(self, operation: BulkReschedulingOperation) -> None: ...

    async def get_operation_result(self, operation_id: str) -> BulkOperationResult | None: ...

    async def upsert_operation_result(self, result: BulkOperationResult) -> None: ...


class EnrollmentService(Protocol):
    async def check_enrollment(self, student_id: str, program_id: str) -> CollaboratorResult: ...


class BillingService(Protocol):
    async def check_billing_eligibility(self, session: Session) -> CollaboratorResult: ...


class QualificationService(Protocol):
    async def check_qualification(
        self, therapist_id: str, session_type: SessionType
    ) -> CollaboratorResult: ...


class NotificationSink(Protocol):
    """Delivers change events. Delivery is best effort."""

    async def publish(self, event: SessionChangeEvent) -> None: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule for collaborator calls."""

    max_attempts: int = RETRY_MAX_ATTEMPTS
    backoff_seconds: tuple[float, ...] = RETRY_BACKOFF_SECONDS
    retry_on: tuple[type[BaseException], ...] = (ConnectionError, TimeoutError, OSError)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay(self, attempt: int) -> float:
        """Sleep before retry number ``attempt`` (1-based)."""
        if not self.backoff_seconds:
            return 0.0
        return self.backoff_seconds[min(attempt, len(self.backoff_seconds)) - 1]


NO_RETRY = RetryPolicy(max_attempts=1, backoff_seconds=())


async def call_with_retry(
    policy: RetryPolicy,
    service: str,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Await ``func`` until it succeeds or the policy is exhausted.

    Only exceptions listed in ``policy.retry_on`` are retried; anything else
    propagates at once.

    Raises:
        CollaboratorError: If every attempt failed with a retryable error.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except policy.retry_on as e:
            if attempt == policy.max_attempts:
                logger.error(f"{service} failed after {attempt} attempt(s): {e}")
                raise CollaboratorError(service, str(e), attempt) from e
            delay = policy.delay(attempt)
            logger.warning(
                f"{service} attempt {attempt}/{policy.max_attempts} failed: {e}; "
                f"retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")


def _in_range(day: date, start: date | None, end: date | None) -> bool:
    return (start is None or day >= start) and (end is None or day <= end)


class InMemorySessionStore:
    """Dictionary-backed ``SessionStore`` for the command line and tests."""

    def __init__(
        self,
        sessions: Iterable[Session] = (),
        availabilities: Iterable[TherapistAvailability] = (),
        rooms: Iterable[TherapyRoom] = (),
        subscriptions: Iterable[Subscription] = (),
    ):
        self.sessions: dict[str, Session] = {s.id: s for s in sessions}
        self.availabilities = list(availabilities)
        self.rooms: dict[str, TherapyRoom] = {r.id: r for r in rooms}
        self.subscriptions: dict[str, Subscription] = {s.id: s for s in subscriptions}
        self.freezes: dict[str, SubscriptionFreeze] = {}
        self.operations: dict[str, BulkReschedulingOperation] = {}
        self.operation_results: dict[str, BulkOperationResult] = {}

    async def get_session(self, session_id: str) -> Session | None:
        return self.sessions.get(session_id)

    async def list_sessions(
        self,
        start: date | None = None,
        end: date | None = None,
        therapist_ids: Iterable[str] | None = None,
        student_id: str | None = None,
    ) -> list[Session]:
        wanted = set(therapist_ids) if therapist_ids is not None else None
        return [
            s
            for s in self.sessions.values()
            if _in_range(s.date, start, end)
            and (wanted is None or s.therapist_id in wanted)
            and (student_id is None or s.student_id == student_id)
        ]

    async def upsert_session(self, session: Session) -> None:
        self.sessions[session.id] = session

    async def list_availabilities(
        self,
        start: date | None = None,
        end: date | None = None,
        therapist_ids: Iterable[str] | None = None,
    ) -> list[TherapistAvailability]:
        wanted = set(therapist_ids) if therapist_ids is not None else None
        return [
            a
            for a in self.availabilities
            if _in_range(a.date, start, end) and (wanted is None or a.therapist_id in wanted)
        ]

    async def list_rooms(self) -> list[TherapyRoom]:
        return list(self.rooms.values())

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        return self.subscriptions.get(subscription_id)

    async def upsert_subscription(self, subscription: Subscription) -> None:
        self.subscriptions[subscription.id] = subscription

    async def list_freezes(self, subscription_id: str) -> list[SubscriptionFreeze]:
        return [f for f in self.freezes.values() if f.subscription_id == subscription_id]

    async def get_freeze(self, freeze_id: str) -> SubscriptionFreeze | None:
        return self.freezes.get(freeze_id)

    async def upsert_freeze(self, freeze: SubscriptionFreeze) -> None:
        self.freezes[freeze.id] = freeze

    async def get_operation(self, operation_id: str) -> BulkReschedulingOperation | None:
        return self.operations.get(operation_id)

    async def upsert_operation(self, operation: BulkReschedulingOperation) -> None:
        self.operations[operation.id] = operation

    async def get_operation_result(self, operation_id: str) -> BulkOperationResult | None:
        return self.operation_results.get(operation_id)

    async def upsert_operation_result(self, result: BulkOperationResult) -> None:
        self.operation_results[result.operation_id] = result


class InMemoryNotificationSink:
    """Collects published events."""

    def __init__(self):
        self.events: list[SessionChangeEvent] = []

    async def publish(self, event: SessionChangeEvent) -> None:
        self.events.append(event)
