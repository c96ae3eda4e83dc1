"""Therapy session scheduling: conflict detection, optimization and batch changes.

Main classes:
- ConflictDetector: checks one placement against a schedule snapshot
- OptimizationEngine: generates conflict-free schedules with a selectable strategy
- BulkReschedulingCoordinator: moves many sessions with per-session results and rollback
- SubscriptionFreezePlanner: pauses subscriptions and moves or drops affected sessions
- IntegrationValidationFacade: validates a session against every subsystem before commit

Usage:
    from therapy_scheduler.scheduling import ConfigLoader, OptimizationEngine

    config = ConfigLoader(Path("config"))
    engine = OptimizationEngine(config.constraints, config.algorithms, seed=7)
    result = engine.generate_optimal_schedule(
        sessions, config.availability.get_all(), config.rooms.get_all_rooms()
    )
"""

from .analytics import analyze_schedule, compare_metrics
from .bulk import BulkReschedulingCoordinator, SchedulingLockRegistry
from .collaborators import (
    NO_RETRY,
    InMemoryNotificationSink,
    InMemorySessionStore,
    RetryPolicy,
    call_with_retry,
)
from .config import AlgorithmSettings, ConfigLoader, OptimizationConstraints
from .conflicts import ConflictDetector, ScheduleSnapshot
from .engine import OptimizationEngine
from .freeze import SubscriptionFreezePlanner
from .integration import IntegrationValidationFacade
from .models import (
    Algorithm,
    BreakInterval,
    BulkOperationResult,
    BulkOperationStatus,
    BulkOperationType,
    BulkParameters,
    BulkReschedulingOperation,
    Conflict,
    ConflictKind,
    ConflictReport,
    FreezeRequest,
    FreezeResult,
    FreezeStatus,
    FreezeStrategy,
    ImpactAnalysis,
    OptimizationResult,
    PerformanceMode,
    Placement,
    RollbackResult,
    Session,
    SessionStatus,
    SessionType,
    Severity,
    Subscription,
    SubscriptionFreeze,
    TherapistAvailability,
    TherapyRoom,
    ValidationResult,
)
from .strategies import STRATEGIES, OptimizerStrategy

__all__ = [
    # Services
    "BulkReschedulingCoordinator",
    "ConflictDetector",
    "IntegrationValidationFacade",
    "OptimizationEngine",
    "SubscriptionFreezePlanner",
    "SchedulingLockRegistry",
    "ScheduleSnapshot",
    # Strategies
    "OptimizerStrategy",
    "STRATEGIES",
    # Configuration
    "AlgorithmSettings",
    "ConfigLoader",
    "OptimizationConstraints",
    # Collaborators
    "InMemoryNotificationSink",
    "InMemorySessionStore",
    "NO_RETRY",
    "RetryPolicy",
    "call_with_retry",
    # Models
    "Algorithm",
    "BreakInterval",
    "BulkOperationResult",
    "BulkOperationStatus",
    "BulkOperationType",
    "BulkParameters",
    "BulkReschedulingOperation",
    "Conflict",
    "ConflictKind",
    "ConflictReport",
    "FreezeRequest",
    "FreezeResult",
    "FreezeStatus",
    "FreezeStrategy",
    "ImpactAnalysis",
    "OptimizationResult",
    "PerformanceMode",
    "Placement",
    "RollbackResult",
    "Session",
    "SessionStatus",
    "SessionType",
    "Severity",
    "Subscription",
    "SubscriptionFreeze",
    "TherapistAvailability",
    "TherapyRoom",
    "ValidationResult",
    # Analytics
    "analyze_schedule",
    "compare_metrics",
]
