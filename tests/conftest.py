"""Test fixtures for therapy scheduler tests."""

from datetime import date, timedelta

import pytest

from therapy_scheduler.scheduling.models import (
    BreakInterval,
    Session,
    SessionType,
    Subscription,
    TherapistAvailability,
    TherapyRoom,
)
from therapy_scheduler.scheduling.utils import date_range, parse_time

MONDAY = date(2025, 9, 1)


def make_session(
    session_id: str,
    start: str = "10:00",
    end: str = "11:00",
    day: date = MONDAY,
    therapist_id: str = "T1",
    room_id: str = "R1",
    student_id: str | None = None,
    **kwargs,
) -> Session:
    """Session with sensible defaults; each session gets its own student unless given."""
    return Session(
        id=session_id,
        student_id=student_id or f"student-{session_id}",
        therapist_id=therapist_id,
        room_id=room_id,
        date=day,
        start=parse_time(start),
        end=parse_time(end),
        session_type=kwargs.pop("session_type", SessionType.SPEECH),
        **kwargs,
    )


def make_window(
    day: date = MONDAY,
    therapist_id: str = "T1",
    start: str = "09:00",
    end: str = "17:00",
    breaks: list[tuple[str, str]] | None = None,
    **kwargs,
) -> TherapistAvailability:
    if breaks is None:
        breaks = [("12:00", "13:00")]
    return TherapistAvailability(
        therapist_id=therapist_id,
        date=day,
        start=parse_time(start),
        end=parse_time(end),
        breaks=[BreakInterval(parse_time(s), parse_time(e)) for s, e in breaks],
        **kwargs,
    )


def windows_between(first: date, last: date, therapist_id: str = "T1") -> list[TherapistAvailability]:
    return [make_window(day, therapist_id) for day in date_range(first, last)]


@pytest.fixture
def rooms():
    """Two speech rooms and a sensory gym."""
    return [
        TherapyRoom(
            id="R1",
            capacity=1,
            supported_session_types={SessionType.SPEECH, SessionType.ABA},
            equipment={"mirror"},
        ),
        TherapyRoom(
            id="R2",
            capacity=1,
            supported_session_types={SessionType.SPEECH},
        ),
        TherapyRoom(
            id="GYM",
            capacity=2,
            supported_session_types={SessionType.OCCUPATIONAL, SessionType.PHYSICAL},
            equipment={"swing", "trampoline"},
        ),
    ]


@pytest.fixture
def monday_window():
    """09:00-17:00 with a 12:00-13:00 break, at most 8 sessions."""
    return make_window()


@pytest.fixture
def september_sessions():
    """Five sessions on 2025-09-15..19; session 3 belongs to a therapist with no October hours."""
    first = date(2025, 9, 15)
    return [
        make_session(
            f"s{n}",
            day=first + timedelta(days=n - 1),
            therapist_id="T2" if n == 3 else "T1",
            student_id="ST1",
        )
        for n in range(1, 6)
    ]


@pytest.fixture
def september_october_windows():
    return (
        windows_between(date(2025, 9, 15), date(2025, 9, 19))
        + windows_between(date(2025, 9, 15), date(2025, 9, 19), "T2")
        + windows_between(date(2025, 10, 1), date(2025, 10, 6))
    )


@pytest.fixture
def subscription():
    return Subscription(
        id="sub1",
        student_id="ST1",
        program_id="P1",
        start_date=date(2025, 9, 1),
        end_date=date(2025, 12, 31),
        freeze_days_allowed=30,
    )
