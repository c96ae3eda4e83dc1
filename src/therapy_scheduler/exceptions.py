"""Custom exceptions for the therapy scheduler."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .scheduling.models import Conflict


class SchedulingError(Exception):
    """Base exception for scheduling errors."""

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": str(self)}


class InvalidSchedulingData(SchedulingError):
    """Request data is malformed or missing a required field."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        self.message = message
        location = f" (field '{field}')" if field else ""
        super().__init__(f"Invalid scheduling data{location}: {message}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class ConfigurationError(SchedulingError):
    """Configuration has unknown, missing, or invalid keys."""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        prefix = f"'{key}': " if key else ""
        super().__init__(f"Invalid configuration {prefix}{message}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["key"] = self.key
        return data


class SchedulingConflictError(SchedulingError):
    """A placement has blocking conflicts and cannot be committed."""

    def __init__(self, conflicts: list["Conflict"], message: str | None = None):
        self.conflicts = list(conflicts)
        if message is None:
            kinds = sorted({c.kind.value for c in self.conflicts})
            message = f"{len(self.conflicts)} blocking conflict(s): {', '.join(kinds)}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["conflicts"] = [c.to_dict() for c in self.conflicts]
        return data


class ConcurrentModificationError(SchedulingConflictError):
    """Re-validation right before commit found a conflict written by someone else."""

    def __init__(self, conflicts: list["Conflict"]):
        super().__init__(
            conflicts,
            "Schedule changed since it was read; retry with fresh data",
        )


class CollaboratorError(SchedulingError):
    """An external collaborator kept failing after all retry attempts."""

    def __init__(self, service: str, message: str, attempts: int = 1):
        self.service = service
        self.attempts = attempts
        super().__init__(f"{service} unavailable after {attempts} attempt(s): {message}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["service"] = self.service
        data["attempts"] = self.attempts
        return data


class OperationNotFoundError(SchedulingError):
    """Bulk operation id is unknown to the coordinator."""

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Bulk operation '{operation_id}' not found")


class FreezeNotFoundError(SchedulingError):
    """Freeze id is unknown to the store."""

    def __init__(self, freeze_id: str):
        self.freeze_id = freeze_id
        super().__init__(f"Freeze '{freeze_id}' not found")


class FreezeValidationError(SchedulingError):
    """Freeze request broke one or more subscription rules."""

    def __init__(self, errors: list[dict[str, str]]):
        self.errors = list(errors)
        codes = ", ".join(e["code"] for e in self.errors)
        super().__init__(f"Freeze request rejected: {codes}")

    @property
    def codes(self) -> list[str]:
        return [e["code"] for e in self.errors]

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data
