"""Request/response functions over JSON bodies.

Each handler takes a decoded JSON object and returns a JSON-ready
dictionary ``{"success": ..., "data": ...}`` or
``{"success": False, "error": {...}}``. Scheduling errors never escape a
handler; unexpected exceptions do.
"""

import logging
from typing import Any, Awaitable, Callable

from .exceptions import SchedulingError
from .scheduling.analytics import analyze_schedule
from .scheduling.bulk import BulkReschedulingCoordinator
from .scheduling.config import AlgorithmSettings, OptimizationConstraints
from .scheduling.conflicts import ConflictDetector
from .scheduling.engine import OptimizationEngine
from .scheduling.freeze import SubscriptionFreezePlanner
from .scheduling.integration import IntegrationValidationFacade
from .scheduling.models import (
    BulkReschedulingOperation,
    FreezeRequest,
    Session,
    TherapistAvailability,
    TherapyRoom,
)
from .validators import (
    require,
    validate_freeze_payload,
    validate_operation_payload,
    validate_session_payload,
)

logger = logging.getLogger(__name__)

Response = dict[str, Any]


def ok(data: Any) -> Response:
    return {"success": True, "data": data}


def error_response(error: SchedulingError) -> Response:
    return {"success": False, "error": error.to_dict()}


def _list(body: dict[str, Any], key: str) -> list[Any]:
    value = body.get(key, [])
    if not isinstance(value, list):
        require((False, "must be a list"), key)
    return value


def _sessions(body: dict[str, Any], key: str = "sessions") -> list[Session]:
    sessions = []
    for index, item in enumerate(_list(body, key)):
        require(validate_session_payload(item), f"{key}[{index}]")
        sessions.append(Session.from_dict(item))
    return sessions


def _availabilities(body: dict[str, Any]) -> list[TherapistAvailability]:
    return [TherapistAvailability.from_dict(a) for a in _list(body, "availabilities")]


def _rooms(body: dict[str, Any]) -> list[TherapyRoom]:
    return [TherapyRoom.from_dict(r) for r in _list(body, "rooms")]


def _number(body: dict[str, Any], key: str, kinds: tuple[type, ...] = (int, float)) -> Any:
    value = body.get(key)
    # bool is an int subclass
    if value is not None and (isinstance(value, bool) or not isinstance(value, kinds)):
        require((False, f"must be a number, got {value!r}"), key)
    return value


def _constraints(body: dict[str, Any]) -> OptimizationConstraints | None:
    data = body.get("constraints")
    return OptimizationConstraints.from_dict(data) if data is not None else None


def _guard(func: Callable[[], Any]) -> Response:
    try:
        return ok(func())
    except SchedulingError as e:
        logger.info(f"Request rejected: {e}")
        return error_response(e)


async def _guard_async(func: Callable[[], Awaitable[Any]]) -> Response:
    try:
        return ok(await func())
    except SchedulingError as e:
        logger.info(f"Request rejected: {e}")
        return error_response(e)


def handle_detect_conflicts(body: dict[str, Any]) -> Response:
    """
    Body: ``session``, ``sessions``, ``availabilities``, ``rooms`` and
    optional ``constraints`` and ``suggest_alternatives``.
    """

    def run() -> Any:
        require(validate_session_payload(body.get("session")), "session")
        detector = ConflictDetector(_constraints(body))
        report = detector.detect_conflicts(
            Session.from_dict(body["session"]),
            _sessions(body),
            _availabilities(body),
            _rooms(body),
            suggest_alternatives=bool(body.get("suggest_alternatives", True)),
        )
        return report.to_dict()

    return _guard(run)


def handle_optimize(body: dict[str, Any]) -> Response:
    """
    Body: ``sessions``, ``availabilities``, ``rooms`` and optional
    ``fixed_sessions``, ``constraints``, ``algorithms``, ``algorithm``,
    ``mode``, ``time_budget_seconds``, ``unresolved_tolerance``, ``seed``.
    """

    def run() -> Any:
        settings = body.get("algorithms")
        engine = OptimizationEngine(
            constraints=_constraints(body),
            settings=AlgorithmSettings.from_dict(settings) if settings is not None else None,
        )
        result = engine.generate_optimal_schedule(
            _sessions(body),
            _availabilities(body),
            _rooms(body),
            algorithm=body.get("algorithm", "hybrid"),
            mode=body.get("mode", "standard"),
            fixed_sessions=_sessions(body, "fixed_sessions"),
            time_budget_seconds=_number(body, "time_budget_seconds"),
            unresolved_tolerance=_number(body, "unresolved_tolerance"),
            seed=_number(body, "seed", (int,)),
        )
        return result.to_dict()

    return _guard(run)


def handle_analyze(body: dict[str, Any]) -> Response:
    """Body: ``sessions``."""
    return _guard(lambda: analyze_schedule(_sessions(body)))


async def handle_bulk_operation(
    body: dict[str, Any], coordinator: BulkReschedulingCoordinator
) -> Response:
    """Body: a bulk operation record (``id``, ``operation_type``, ``session_ids``, ``parameters``)."""

    async def run() -> Any:
        require(validate_operation_payload(body), "operation")
        operation = BulkReschedulingOperation.from_dict(body)
        result = await coordinator.process_bulk_operation(operation)
        return result.to_dict()

    return await _guard_async(run)


async def handle_rollback(body: dict[str, Any], coordinator: BulkReschedulingCoordinator) -> Response:
    """Body: ``operation_id``."""

    async def run() -> Any:
        operation_id = body.get("operation_id")
        require((bool(operation_id), "Missing required field: operation_id"), "operation_id")
        result = await coordinator.rollback_changes(str(operation_id))
        return result.to_dict()

    return await _guard_async(run)


async def handle_operation_status(
    body: dict[str, Any], coordinator: BulkReschedulingCoordinator
) -> Response:
    """Body: ``operation_id``."""

    async def run() -> Any:
        operation_id = body.get("operation_id")
        require((bool(operation_id), "Missing required field: operation_id"), "operation_id")
        operation = await coordinator.get_operation(str(operation_id))
        return operation.to_dict()

    return await _guard_async(run)


async def handle_impact_analysis(body: dict[str, Any], planner: SubscriptionFreezePlanner) -> Response:
    """Body: a freeze request."""

    async def run() -> Any:
        require(validate_freeze_payload(body), "freeze")
        impact = await planner.calculate_impact_analysis(FreezeRequest.from_dict(body))
        return impact.to_dict()

    return await _guard_async(run)


async def handle_freeze(body: dict[str, Any], planner: SubscriptionFreezePlanner) -> Response:
    """Body: a freeze request; ``preview_only`` returns the impact analysis only."""

    async def run() -> Any:
        require(validate_freeze_payload(body), "freeze")
        result = await planner.freeze_subscription(FreezeRequest.from_dict(body))
        return result.to_dict()

    return await _guard_async(run)


async def handle_validate_session(
    body: dict[str, Any], facade: IntegrationValidationFacade
) -> Response:
    """Body: ``session``. The validation result is returned even when it fails."""

    async def run() -> Any:
        require(validate_session_payload(body.get("session")), "session")
        result = await facade.validate_session_integration(Session.from_dict(body["session"]))
        return result.to_dict()

    return await _guard_async(run)
