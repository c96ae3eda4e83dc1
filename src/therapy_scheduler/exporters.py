"""Loading schedule snapshots and exporting results."""

import json
from pathlib import Path
from typing import Any

import pandas as pd

from .exceptions import InvalidSchedulingData
from .scheduling.models import Session


def load_json(input_path: Path | str) -> Any:
    """Load a JSON document.

    Args:
        input_path: Path to JSON file

    Returns:
        Parsed JSON value
    """
    with open(input_path, encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidSchedulingData(f"not valid JSON: {e}", str(input_path)) from e


def load_sessions(input_path: Path | str) -> list[Session]:
    """Load sessions from a JSON list or an object with a ``sessions`` key."""
    data = load_json(input_path)
    if isinstance(data, dict):
        data = data.get("sessions", [])
    if not isinstance(data, list):
        raise InvalidSchedulingData("expected a list of sessions", "sessions")
    return [Session.from_dict(item) for item in data]


def export_json(result: Any, output_path: Path | str) -> None:
    """Export a result to a JSON file.

    Args:
        result: Object with ``to_dict()`` or a plain JSON value
        output_path: Path to output JSON file
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    data = result.to_dict() if hasattr(result, "to_dict") else result

    with open(output, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def export_sessions_csv(sessions: list[Session], output_path: Path | str) -> None:
    """Export sessions to a CSV file, one row per session."""
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    rows = []
    for session in sorted(sessions, key=lambda s: (s.date, s.start, s.therapist_id, s.id)):
        row = session.to_dict()
        row["required_equipment"] = ", ".join(row["required_equipment"])
        rows.append(row)
    pd.DataFrame(rows).to_csv(output, index=False, encoding="utf-8")
