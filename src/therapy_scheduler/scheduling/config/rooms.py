"""Room configuration loader."""

import csv
from pathlib import Path

from ...exceptions import ConfigurationError, InvalidSchedulingData
from ..models import SessionType, TherapyRoom


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(";") if part.strip()]


class RoomConfig:
    """Loader for therapy rooms from rooms.csv.

    Columns: id, name, capacity, supported_session_types, equipment, active.
    List columns are separated by ``;``.
    """

    def __init__(self, rooms_path: Path | None = None):
        self.rooms: list[TherapyRoom] = []
        self._by_id: dict[str, TherapyRoom] = {}

        if rooms_path and rooms_path.exists():
            self._load(rooms_path)

    def _load(self, path: Path) -> None:
        """Load rooms from CSV file."""
        with open(path, encoding="utf-8") as f:
            reader = csv.DictReader(f)
            for line_no, row in enumerate(reader, start=2):
                try:
                    room = TherapyRoom(
                        id=row["id"].strip(),
                        name=(row.get("name") or "").strip(),
                        capacity=int(row.get("capacity") or 1),
                        supported_session_types=frozenset(
                            SessionType(t) for t in _split(row.get("supported_session_types"))
                        ),
                        equipment=frozenset(_split(row.get("equipment"))),
                        active=(row.get("active") or "true").strip().lower() != "false",
                    )
                except (KeyError, ValueError, InvalidSchedulingData) as e:
                    raise ConfigurationError(f"{path.name} line {line_no}: {e}", "rooms") from e
                self.rooms.append(room)
                self._by_id[room.id] = room

    def get_room(self, room_id: str) -> TherapyRoom | None:
        """Get a room by id."""
        return self._by_id.get(room_id)

    def get_all_rooms(self) -> list[TherapyRoom]:
        """Get all rooms."""
        return self.rooms

    def get_active_rooms(self) -> list[TherapyRoom]:
        """Get rooms that can currently be booked."""
        return [r for r in self.rooms if r.active]

    def get_rooms_for_type(self, session_type: SessionType) -> list[TherapyRoom]:
        """Get active rooms that support a session type."""
        return [r for r in self.rooms if r.active and r.supports(session_type)]
