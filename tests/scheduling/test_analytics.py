"""Tests for schedule efficiency metrics."""

import pytest

from conftest import make_session
from therapy_scheduler.scheduling.analytics import (
    analyze_schedule,
    compare_metrics,
    efficiency_rating,
    empty_metrics,
)


class TestAnalyzeSchedule:
    def test_gap_between_two_sessions(self):
        sessions = [
            make_session("a", "09:00", "10:00"),
            make_session("b", "11:00", "12:00"),
        ]

        metrics = analyze_schedule(sessions)

        assert metrics["total_sessions"] == 2
        assert metrics["therapist_utilization"] == {"T1": 25.0}
        assert metrics["average_utilization"] == 25.0
        assert metrics["utilization_variance"] == 0.0
        gaps = metrics["gap_metrics"]
        assert gaps["total_gap_minutes"] == 60.0
        assert gaps["gap_count"] == 1
        assert gaps["efficiency_loss_percentage"] == pytest.approx(33.33, abs=0.01)
        assert metrics["overall_score"] == pytest.approx(37.5, abs=0.01)
        assert metrics["efficiency_rating"] == "poor"
        assert set(metrics["peak_hours"]) == {"09:00", "11:00"}

    def test_back_to_back_sessions_have_no_gap(self):
        sessions = [
            make_session("a", "09:00", "10:00"),
            make_session("b", "10:00", "11:00"),
        ]
        gaps = analyze_schedule(sessions)["gap_metrics"]
        assert gaps["gap_count"] == 0
        assert gaps["efficiency_loss_percentage"] == 0.0

    def test_gaps_are_per_therapist(self):
        sessions = [
            make_session("a", "09:00", "10:00"),
            make_session("b", "11:00", "12:00", therapist_id="T2"),
        ]
        metrics = analyze_schedule(sessions)
        assert metrics["gap_metrics"]["gap_count"] == 0
        assert metrics["unique_therapists"] == 2

    def test_cancelled_sessions_are_ignored(self):
        sessions = [
            make_session("a", "09:00", "10:00"),
            make_session("b", "11:00", "12:00").cancelled(),
        ]
        metrics = analyze_schedule(sessions)
        assert metrics["total_sessions"] == 1
        assert metrics["gap_metrics"]["gap_count"] == 0

    def test_score_is_bounded(self):
        full_day = [make_session(f"f{h}", f"{h:02d}:00", f"{h + 1:02d}:00") for h in range(9, 17)]
        one_hour = [make_session("t2", "09:00", "10:00", therapist_id="T2")]

        metrics = analyze_schedule(full_day + one_hour)

        assert 0.0 <= metrics["overall_score"] <= 100.0
        assert metrics["therapist_utilization"]["T1"] == 100.0

    def test_empty_schedule(self):
        assert analyze_schedule([]) == empty_metrics()


class TestCompareMetrics:
    def test_improvement(self):
        before = dict(empty_metrics(), overall_score=50.0, average_utilization=40.0)
        after = dict(empty_metrics(), overall_score=75.0, average_utilization=55.0)

        comparison = compare_metrics(before, after)

        assert comparison["improvement_percentage"] == 50.0
        assert comparison["score_delta"] == 25.0
        assert comparison["utilization_delta"] == 15.0
        assert comparison["gap_minutes_delta"] == 0.0

    def test_zero_baseline(self):
        comparison = compare_metrics(empty_metrics(), dict(empty_metrics(), overall_score=80.0))
        assert comparison["improvement_percentage"] == 0.0
        assert comparison["score_delta"] == 80.0


@pytest.mark.parametrize(
    "score,rating",
    [(95, "excellent"), (90, "excellent"), (80, "good"), (60, "fair"), (59.9, "poor")],
)
def test_efficiency_rating(score, rating):
    assert efficiency_rating(score) == rating
