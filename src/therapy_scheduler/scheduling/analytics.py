"""Schedule efficiency metrics computed with pandas."""

from typing import Any, Iterable

import pandas as pd

from .constants import WORKDAY_MINUTES
from .models import Session
from .utils import format_time

# Score deductions: (target, weight per unit past the target)
UTILIZATION_TARGET = 80.0
UTILIZATION_WEIGHT = 0.5
UTILIZATION_VARIANCE_TARGET = 20.0
UTILIZATION_VARIANCE_WEIGHT = 0.3
GAP_LOSS_TARGET = 10.0
GAP_LOSS_WEIGHT = 1.5
WORKLOAD_VARIANCE_TARGET = 50.0
WORKLOAD_VARIANCE_WEIGHT = 0.1

PEAK_HOURS_REPORTED = 3


def sessions_frame(sessions: Iterable[Session]) -> pd.DataFrame:
    """One row per resource-occupying session."""
    rows = [
        {
            "session_id": s.id,
            "therapist_id": s.therapist_id,
            "room_id": s.room_id,
            "student_id": s.student_id,
            "date": s.date,
            "start": s.start,
            "end": s.end,
            "duration": s.end - s.start,
        }
        for s in sessions
        if s.is_occupying
    ]
    return pd.DataFrame(
        rows,
        columns=[
            "session_id", "therapist_id", "room_id", "student_id",
            "date", "start", "end", "duration",
        ],
    )


def _population_variance(values: pd.Series) -> float:
    if values.empty:
        return 0.0
    return float(values.var(ddof=0))


def _gap_metrics(df: pd.DataFrame) -> dict[str, float]:
    ordered = df.sort_values(["therapist_id", "date", "start"])
    previous_end = ordered.groupby(["therapist_id", "date"])["end"].shift()
    gaps = (ordered["start"] - previous_end).dropna()
    gaps = gaps[gaps > 0]
    total_gap = float(gaps.sum())
    working = float(df["duration"].sum())
    loss = total_gap / (working + total_gap) * 100 if working > 0 else 0.0
    return {
        "total_gap_minutes": total_gap,
        "average_gap_minutes": float(gaps.mean()) if len(gaps) else 0.0,
        "gap_count": int(len(gaps)),
        "efficiency_loss_percentage": loss,
    }


def _overall_score(
    average_utilization: float,
    utilization_variance: float,
    gap_loss: float,
    workload_variance: float,
) -> float:
    score = 100.0
    if average_utilization < UTILIZATION_TARGET:
        score -= (UTILIZATION_TARGET - average_utilization) * UTILIZATION_WEIGHT
    if utilization_variance > UTILIZATION_VARIANCE_TARGET:
        score -= (utilization_variance - UTILIZATION_VARIANCE_TARGET) * UTILIZATION_VARIANCE_WEIGHT
    if gap_loss > GAP_LOSS_TARGET:
        score -= (gap_loss - GAP_LOSS_TARGET) * GAP_LOSS_WEIGHT
    if workload_variance > WORKLOAD_VARIANCE_TARGET:
        score -= (workload_variance - WORKLOAD_VARIANCE_TARGET) * WORKLOAD_VARIANCE_WEIGHT
    return max(0.0, min(100.0, score))


def efficiency_rating(score: float) -> str:
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 60:
        return "fair"
    return "poor"


def empty_metrics() -> dict[str, Any]:
    return {
        "total_sessions": 0,
        "total_duration_minutes": 0,
        "unique_therapists": 0,
        "unique_students": 0,
        "therapist_utilization": {},
        "average_utilization": 0.0,
        "utilization_variance": 0.0,
        "gap_metrics": {
            "total_gap_minutes": 0.0,
            "average_gap_minutes": 0.0,
            "gap_count": 0,
            "efficiency_loss_percentage": 0.0,
        },
        "sessions_per_day_variance": 0.0,
        "therapist_workload_variance": 0.0,
        "peak_hours": [],
        "overall_score": 0.0,
        "efficiency_rating": efficiency_rating(0.0),
    }


def analyze_schedule(sessions: Iterable[Session]) -> dict[str, Any]:
    """
    Compute efficiency metrics for a schedule.

    Utilization is booked minutes per therapist-day against an 8-hour day,
    averaged per therapist. The overall score starts at 100 and loses points
    for low or uneven utilization, idle gaps and uneven workload.

    Args:
        sessions: Sessions to analyze; cancelled sessions are ignored.

    Returns:
        Dictionary of plain JSON-serializable metrics.
    """
    df = sessions_frame(sessions)
    if df.empty:
        return empty_metrics()

    per_day = df.groupby(["therapist_id", "date"])["duration"].sum() / WORKDAY_MINUTES * 100
    utilization = per_day.groupby(level="therapist_id").mean()
    workload = df.groupby("therapist_id")["duration"].sum()
    daily_counts = df.groupby("date").size()
    hourly = (df["start"] // 60).value_counts()
    peak = hourly.sort_values(ascending=False, kind="stable").head(PEAK_HOURS_REPORTED)

    gap_metrics = _gap_metrics(df)
    average_utilization = float(utilization.mean())
    utilization_variance = _population_variance(utilization)
    workload_variance = _population_variance(workload)
    score = _overall_score(
        average_utilization,
        utilization_variance,
        gap_metrics["efficiency_loss_percentage"],
        workload_variance,
    )

    return {
        "total_sessions": int(len(df)),
        "total_duration_minutes": int(df["duration"].sum()),
        "unique_therapists": int(df["therapist_id"].nunique()),
        "unique_students": int(df["student_id"].nunique()),
        "therapist_utilization": {k: round(float(v), 2) for k, v in utilization.items()},
        "average_utilization": round(average_utilization, 2),
        "utilization_variance": round(utilization_variance, 2),
        "gap_metrics": gap_metrics,
        "sessions_per_day_variance": round(_population_variance(daily_counts), 2),
        "therapist_workload_variance": round(workload_variance, 2),
        "peak_hours": [format_time(int(hour) * 60) for hour in peak.index],
        "overall_score": round(score, 2),
        "efficiency_rating": efficiency_rating(score),
    }


def compare_metrics(before: dict[str, Any], after: dict[str, Any]) -> dict[str, float]:
    """Relative change of the overall score and the absolute change of key metrics."""
    initial = before.get("overall_score", 0.0)
    final = after.get("overall_score", 0.0)
    improvement = (final - initial) / initial * 100 if initial else 0.0
    return {
        "improvement_percentage": round(improvement, 2),
        "score_delta": round(final - initial, 2),
        "gap_minutes_delta": round(
            after["gap_metrics"]["total_gap_minutes"] - before["gap_metrics"]["total_gap_minutes"], 2
        ),
        "utilization_delta": round(
            after["average_utilization"] - before["average_utilization"], 2
        ),
    }
