"""Cross-system validation of a session before it is committed."""

import logging

from ..exceptions import (
    CollaboratorError,
    ConcurrentModificationError,
    SchedulingConflictError,
)
from .bulk import SchedulingLockRegistry
from .collaborators import (
    BillingService,
    EnrollmentService,
    NotificationSink,
    QualificationService,
    RetryPolicy,
    SessionStore,
    call_with_retry,
)
from .conflicts import ConflictDetector, ScheduleSnapshot
from .models import (
    ChangeType,
    CollaboratorResult,
    Conflict,
    ConflictKind,
    Session,
    SessionChangeEvent,
    ValidationResult,
)

logger = logging.getLogger(__name__)

ROOM_KINDS = frozenset(
    {
        ConflictKind.ROOM_UNAVAILABLE,
        ConflictKind.ROOM_CAPACITY,
        ConflictKind.ROOM_UNSUPPORTED_TYPE,
        ConflictKind.EQUIPMENT_UNAVAILABLE,
        ConflictKind.EQUIPMENT_IN_USE,
    }
)


def _internal_result(conflicts: list[Conflict], label: str) -> CollaboratorResult:
    blocking = [c for c in conflicts if c.is_blocking]
    warnings = [c.message for c in conflicts if not c.is_blocking]
    if blocking:
        return CollaboratorResult(
            success=False,
            conflicts=conflicts,
            warnings=warnings,
            error=f"{label}: " + "; ".join(c.message for c in blocking),
        )
    return CollaboratorResult(success=True, conflicts=conflicts, warnings=warnings)


def aggregate(checks: dict[str, CollaboratorResult]) -> ValidationResult:
    """
    Combine sub-check results.

    Success is the AND of every check, the error joins every failing
    check's message and warnings keep their first-seen order without
    duplicates.
    """
    errors = [
        result.error or f"{name} check failed" for name, result in checks.items() if not result.success
    ]
    warnings: list[str] = []
    conflicts: list[Conflict] = []
    for result in checks.values():
        for warning in result.warnings:
            if warning not in warnings:
                warnings.append(warning)
        conflicts.extend(result.conflicts)
    return ValidationResult(
        success=not errors,
        error="; ".join(errors) if errors else None,
        warnings=warnings,
        conflicts=conflicts,
        checks=dict(checks),
    )


class IntegrationValidationFacade:
    """
    Runs enrollment, therapist, room and billing checks for one session.

    External services are optional; a missing one is reported as a warning
    rather than silently passing. An unreachable service fails its check.
    """

    def __init__(
        self,
        store: SessionStore,
        detector: ConflictDetector | None = None,
        enrollment: EnrollmentService | None = None,
        billing: BillingService | None = None,
        qualification: QualificationService | None = None,
        notifier: NotificationSink | None = None,
        locks: SchedulingLockRegistry | None = None,
        retry: RetryPolicy | None = None,
    ):
        self.store = store
        self.detector = detector or ConflictDetector()
        self.enrollment = enrollment
        self.billing = billing
        self.qualification = qualification
        self.notifier = notifier
        self.locks = locks or SchedulingLockRegistry()
        self.retry = retry or RetryPolicy()

    async def _external(self, service: str, func, *args) -> CollaboratorResult:
        try:
            return await call_with_retry(self.retry, service, func, *args)
        except CollaboratorError as e:
            return CollaboratorResult(success=False, error=str(e))

    async def _snapshot(self, candidate: Session) -> ScheduleSnapshot:
        sessions = await call_with_retry(
            self.retry, "session store", self.store.list_sessions, candidate.date, candidate.date
        )
        availabilities = await call_with_retry(
            self.retry,
            "session store",
            self.store.list_availabilities,
            candidate.date,
            candidate.date,
        )
        rooms = await call_with_retry(self.retry, "session store", self.store.list_rooms)
        return ScheduleSnapshot(sessions, availabilities, rooms)

    async def check_enrollment(self, candidate: Session) -> CollaboratorResult:
        if self.enrollment is None:
            return CollaboratorResult(success=True, warnings=["Enrollment not checked"])
        return await self._external(
            "enrollment", self.enrollment.check_enrollment, candidate.student_id, candidate.program_id
        )

    async def check_therapist(
        self, candidate: Session, snapshot: ScheduleSnapshot
    ) -> CollaboratorResult:
        """Qualification from the external service plus availability and double-booking checks."""
        conflicts = [
            c
            for c in self.detector.check(candidate, snapshot, suggest_alternatives=False).conflicts
            if c.kind not in ROOM_KINDS
        ]
        internal = _internal_result(conflicts, "Therapist")
        if self.qualification is None:
            internal.warnings.append("Therapist qualification not checked")
            return internal

        external = await self._external(
            "qualification",
            self.qualification.check_qualification,
            candidate.therapist_id,
            candidate.session_type,
        )
        errors = [e for e in (internal.error, external.error) if e]
        if not external.success and not external.error:
            errors.append(
                f"Therapist {candidate.therapist_id} is not qualified for "
                f"{candidate.session_type.value} sessions"
            )
        return CollaboratorResult(
            success=internal.success and external.success,
            data=external.data,
            conflicts=internal.conflicts + external.conflicts,
            warnings=internal.warnings + external.warnings,
            error="; ".join(errors) if errors else None,
        )

    def check_room(self, candidate: Session, snapshot: ScheduleSnapshot) -> CollaboratorResult:
        conflicts = [
            c for c in self.detector.blocking_conflicts(candidate, snapshot) if c.kind in ROOM_KINDS
        ]
        return _internal_result(conflicts, "Room")

    async def check_billing(self, candidate: Session) -> CollaboratorResult:
        if self.billing is None:
            return CollaboratorResult(success=True, warnings=["Billing eligibility not checked"])
        return await self._external(
            "billing", self.billing.check_billing_eligibility, candidate
        )

    async def validate_session_integration(self, candidate: Session) -> ValidationResult:
        """
        Validate a candidate session against every subsystem.

        Args:
            candidate: The session as it would be committed.

        Returns:
            ValidationResult with one entry per check in ``checks``.
        """
        snapshot = await self._snapshot(candidate)
        checks = {
            "enrollment": await self.check_enrollment(candidate),
            "therapist": await self.check_therapist(candidate, snapshot),
            "room": self.check_room(candidate, snapshot),
            "billing": await self.check_billing(candidate),
        }
        result = aggregate(checks)
        if result.success:
            logger.debug(f"Session {candidate.id} passed integration validation")
        else:
            logger.info(f"Session {candidate.id} failed integration validation: {result.error}")
        return result

    async def commit_session(self, candidate: Session) -> ValidationResult:
        """
        Validate and store a session, then announce the change.

        The schedule is re-read and re-checked right before the write under
        the therapist-day lock.

        Returns:
            The validation result of the committed session.

        Raises:
            SchedulingConflictError: If validation fails.
            ConcurrentModificationError: If a conflict appeared after validation.
        """
        result = await self.validate_session_integration(candidate)
        if not result.success:
            raise SchedulingConflictError(
                [c for c in result.conflicts if c.is_blocking], result.error
            )

        async with self.locks.hold([(candidate.therapist_id, candidate.date)]):
            existing = await call_with_retry(
                self.retry, "session store", self.store.get_session, candidate.id
            )
            snapshot = await self._snapshot(candidate)
            clashes = self.detector.blocking_conflicts(candidate, snapshot)
            if clashes:
                raise ConcurrentModificationError(clashes)
            await call_with_retry(self.retry, "session store", self.store.upsert_session, candidate)

        kind = ChangeType.CREATED if existing is None else ChangeType.RESCHEDULED
        logger.info(f"Committed session {candidate.id} ({kind.value})")
        await self._announce(kind, candidate, existing)
        return result

    async def _announce(self, kind: ChangeType, session: Session, existing: Session | None) -> None:
        if self.notifier is None:
            return
        event = SessionChangeEvent(
            type=kind,
            session=session,
            affected_user_ids=[session.student_id, session.therapist_id],
            previous=existing.placement if existing else None,
        )
        try:
            await call_with_retry(self.retry, "notifications", self.notifier.publish, event)
        except CollaboratorError as e:
            logger.warning(f"Notification for session {session.id} not delivered: {e}")
