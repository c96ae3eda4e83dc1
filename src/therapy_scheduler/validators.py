"""Validation of JSON request bodies before any scheduling work starts."""

import re
from datetime import date
from typing import Any

from .exceptions import InvalidSchedulingData
from .scheduling.models import BulkOperationType, FreezeStrategy, SessionType

TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$|^24:00$")

SESSION_REQUIRED_FIELDS = (
    "id",
    "student_id",
    "therapist_id",
    "room_id",
    "date",
    "start_time",
    "end_time",
    "session_type",
)


def validate_time(value: Any) -> tuple[bool, str | None]:
    """Validate an ``HH:MM`` time string.

    Args:
        value: Value to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(value, str) or not value.strip():
        return False, "Time is empty"
    if not TIME_PATTERN.match(value.strip()):
        return False, f"Time must be HH:MM: '{value}'"
    return True, None


def validate_date(value: Any) -> tuple[bool, str | None]:
    """Validate an ISO ``YYYY-MM-DD`` date string.

    Args:
        value: Value to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if isinstance(value, date):
        return True, None
    if not isinstance(value, str) or not value.strip():
        return False, "Date is empty"
    try:
        date.fromisoformat(value.strip())
    except ValueError:
        return False, f"Date must be YYYY-MM-DD: '{value}'"
    return True, None


def validate_session_payload(data: Any) -> tuple[bool, str | None]:
    """Validate a session record.

    Checks required fields, the time and date formats, the session type and
    that the session starts before it ends.

    Args:
        data: Session dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Session must be an object"

    missing = [f for f in SESSION_REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        return False, f"Missing required field(s): {', '.join(missing)}"

    for key in ("start_time", "end_time"):
        is_valid, error = validate_time(data[key])
        if not is_valid:
            return False, f"{key}: {error}"

    is_valid, error = validate_date(data["date"])
    if not is_valid:
        return False, f"date: {error}"

    if data["session_type"] not in {t.value for t in SessionType}:
        return False, f"Unknown session_type: '{data['session_type']}'"

    if data["start_time"].zfill(5) >= data["end_time"].zfill(5):
        return False, "start_time must be before end_time"

    return True, None


def validate_operation_payload(data: Any) -> tuple[bool, str | None]:
    """Validate the outer shape of a bulk operation request."""
    if not isinstance(data, dict):
        return False, "Operation must be an object"
    if not data.get("id"):
        return False, "Missing required field: id"
    if data.get("operation_type") not in {t.value for t in BulkOperationType}:
        return False, f"Unknown operation_type: '{data.get('operation_type')}'"
    session_ids = data.get("session_ids")
    if not isinstance(session_ids, list) or not session_ids:
        return False, "session_ids must be a non-empty list"
    return True, None


def validate_freeze_payload(data: Any) -> tuple[bool, str | None]:
    """Validate the outer shape of a freeze request."""
    if not isinstance(data, dict):
        return False, "Freeze request must be an object"
    if not data.get("subscription_id"):
        return False, "Missing required field: subscription_id"
    for key in ("start_date", "end_date"):
        is_valid, error = validate_date(data.get(key))
        if not is_valid:
            return False, f"{key}: {error}"
    strategy = data.get("strategy", FreezeStrategy.EXTEND_PROGRAM.value)
    if strategy not in {s.value for s in FreezeStrategy}:
        return False, f"Unknown strategy: '{strategy}'"
    return True, None


def require(result: tuple[bool, str | None], field: str) -> None:
    """Raise ``InvalidSchedulingData`` for a failed validation result."""
    is_valid, error = result
    if not is_valid:
        raise InvalidSchedulingData(error or "invalid value", field)
