"""Therapist availability configuration loader."""

import json
from collections import defaultdict
from datetime import date
from pathlib import Path

from ...exceptions import ConfigurationError, InvalidSchedulingData
from ..models import TherapistAvailability


class AvailabilityConfig:
    """Loader for therapist availability windows from availability.json.

    The file holds a list of availability records, one per therapist and date.
    """

    def __init__(self, availability_path: Path | None = None):
        self.windows: list[TherapistAvailability] = []
        self._by_therapist: dict[str, list[TherapistAvailability]] = defaultdict(list)

        if availability_path and availability_path.exists():
            self._load(availability_path)

    def _load(self, path: Path) -> None:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ConfigurationError("expected a list of availability records", path.name)
        for index, record in enumerate(data):
            try:
                window = TherapistAvailability.from_dict(record)
            except InvalidSchedulingData as e:
                raise ConfigurationError(f"record {index}: {e}", path.name) from e
            self.windows.append(window)
            self._by_therapist[window.therapist_id].append(window)

    def get_all(self) -> list[TherapistAvailability]:
        return self.windows

    def get_therapist_windows(
        self, therapist_id: str, on_date: date | None = None
    ) -> list[TherapistAvailability]:
        windows = self._by_therapist.get(therapist_id, [])
        if on_date is None:
            return list(windows)
        return [w for w in windows if w.date == on_date]

    def get_therapist_ids(self) -> list[str]:
        return sorted(self._by_therapist)
