"""Therapy Scheduler - schedule optimization and conflict resolution for therapy centers.

This package places therapy sessions across therapists, rooms and time
slots without double bookings, moves sessions in bulk with an explicit
rollback, and pauses student subscriptions while keeping their programs
intact.

Example usage:
    from therapy_scheduler import ConflictDetector, Session

    detector = ConflictDetector()
    report = detector.detect_conflicts(candidate, sessions, availabilities, rooms)

    for conflict in report.blocking:
        print(f"{conflict.kind.value}: {conflict.message}")
    for slot in report.alternatives:
        print(slot.to_dict())
"""

from .exceptions import (
    CollaboratorError,
    ConcurrentModificationError,
    ConfigurationError,
    FreezeNotFoundError,
    FreezeValidationError,
    InvalidSchedulingData,
    OperationNotFoundError,
    SchedulingConflictError,
    SchedulingError,
)
from .exporters import export_json, export_sessions_csv, load_sessions
from .scheduling import (
    BulkReschedulingCoordinator,
    ConflictDetector,
    IntegrationValidationFacade,
    OptimizationEngine,
    Session,
    SubscriptionFreezePlanner,
    TherapistAvailability,
    TherapyRoom,
)

__version__ = "0.1.0"

__all__ = [
    # Services
    "BulkReschedulingCoordinator",
    "ConflictDetector",
    "IntegrationValidationFacade",
    "OptimizationEngine",
    "SubscriptionFreezePlanner",
    # Models
    "Session",
    "TherapistAvailability",
    "TherapyRoom",
    # Export
    "export_json",
    "export_sessions_csv",
    "load_sessions",
    # Exceptions
    "CollaboratorError",
    "ConcurrentModificationError",
    "ConfigurationError",
    "FreezeNotFoundError",
    "FreezeValidationError",
    "InvalidSchedulingData",
    "OperationNotFoundError",
    "SchedulingConflictError",
    "SchedulingError",
]
