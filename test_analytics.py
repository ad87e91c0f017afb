import datetime

import pytest

from database.repositories import attempt_repository
from services.analytics_service import AnalyticsAggregator, normalize_preset, preset_start

UTC = datetime.timezone.utc
NOW = datetime.datetime(2026, 3, 10, 18, 0, tzinfo=UTC)


def _answers(section_id, correct, total, difficulty):
    return [
        {"section_id": section_id, "is_correct": i < correct, "difficulty": difficulty, "time_spent_seconds": 30}
        for i in range(total)
    ]


@pytest.fixture
def seeded(db, record_attempt):
    # Monday 2026-03-09 10:xx twice, Tuesday 2026-03-10 09:00 once, one old attempt in January.
    record_attempt(
        1, _answers("algebra", 8, 10, "easy"),
        submitted_at=datetime.datetime(2026, 3, 9, 10, 5, tzinfo=UTC), test_type="mock", time_spent_seconds=600,
    )
    record_attempt(
        1, _answers("algebra", 4, 10, "hard"),
        submitted_at=datetime.datetime(2026, 3, 9, 10, 40, tzinfo=UTC), test_type="mock", time_spent_seconds=600,
    )
    record_attempt(
        1, _answers("physics", 3, 10, "medium"),
        submitted_at=datetime.datetime(2026, 3, 10, 9, 0, tzinfo=UTC), test_type="practice", time_spent_seconds=300,
    )
    record_attempt(
        1, _answers("physics", 10, 10, "medium"),
        submitted_at=datetime.datetime(2026, 1, 5, 9, 0, tzinfo=UTC), test_type="practice", time_spent_seconds=300,
    )
    return AnalyticsAggregator(db)


def test_overview_over_recent_window(seeded):
    overview = seeded.get_overview(1, "30d", NOW)
    assert overview == {
        "total_tests": 3,
        "total_questions": 30,
        "overall_accuracy": 50,
        "total_time_minutes": 25,
        "current_streak": 2,
        "tests_this_week": 3,
    }


def test_overview_all_time_includes_old_attempts(seeded):
    overview = seeded.get_overview(1, "all", NOW)
    assert overview["total_tests"] == 4
    assert overview["tests_this_week"] == 3


def test_accuracy_trend(seeded):
    trend = seeded.get_accuracy_trend(1, "7d", NOW)
    assert [(p["date"], p["accuracy"], p["test_type"]) for p in trend] == [
        ("2026-03-09", 80, "mock"),
        ("2026-03-09", 40, "mock"),
        ("2026-03-10", 30, "practice"),
    ]


def test_section_performance_sorted_by_accuracy(seeded):
    sections = seeded.get_section_performance(1, "30d", NOW)
    assert [(s["section_id"], s["accuracy"]) for s in sections] == [("algebra", 60), ("physics", 30)]
    assert sections[0]["questions_attempted"] == 20
    assert sections[0]["incorrect_answers"] == 8
    assert sections[0]["avg_time_per_question"] == 30


def test_difficulty_breakdown_order(seeded):
    breakdown = seeded.get_difficulty_breakdown(1, "all", NOW)
    assert [d["difficulty"] for d in breakdown] == ["easy", "medium", "hard"]
    assert breakdown[1] == {"difficulty": "medium", "attempted": 20, "correct": 13, "accuracy": 65}


def test_test_type_comparison_pass_rate(seeded):
    comparison = seeded.get_test_type_comparison(1, "30d", NOW)
    assert comparison == [
        {"test_type": "mock", "avg_accuracy": 60, "test_count": 2, "total_questions": 20, "pass_rate": 50},
        {"test_type": "practice", "avg_accuracy": 30, "test_count": 1, "total_questions": 10, "pass_rate": 0},
    ]


def test_activity_groups_by_day(seeded):
    activity = seeded.get_activity(1, "7d", NOW)
    assert [(a["date"], a["test_count"]) for a in activity] == [("2026-03-09", 2), ("2026-03-10", 1)]


def test_time_analysis_requires_two_tests_per_hour(seeded):
    analysis = seeded.get_time_analysis(1, "30d", NOW)
    assert analysis["hour_performance"] == [
        {"hour": 10, "day_of_week": 1, "avg_accuracy": 60, "test_count": 2},
    ]
    assert [d["day_name"] for d in analysis["day_of_week_performance"]] == ["Monday", "Tuesday"]
    assert analysis["best_time"]["description"] == "Mondays at 10:00 AM"


def test_insights_sorted_by_priority(seeded):
    insights = seeded.get_insights(1, "30d", NOW)
    ids = [i["id"] for i in insights]
    assert "low-accuracy" in ids
    assert "weak-section" in ids
    priorities = [i["priority"] for i in insights]
    assert priorities == sorted(priorities, reverse=True)


def test_empty_history_returns_empty_shapes(db):
    analytics = AnalyticsAggregator(db)
    assert analytics.get_overview(1, "30d", NOW)["total_tests"] == 0
    assert analytics.get_accuracy_trend(1, "30d", NOW) == []
    assert analytics.get_time_analysis(1, "30d", NOW)["best_time"] is None
    assert analytics.get_insights(1, "30d", NOW) == []


def test_store_failure_degrades_to_defaults(seeded, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(attempt_repository, "get_submitted_attempts", broken)
    monkeypatch.setattr(attempt_repository, "get_submitted_answers", broken)

    assert seeded.get_overview(1, "30d", NOW) == {
        "total_tests": 0,
        "total_questions": 0,
        "overall_accuracy": 0,
        "total_time_minutes": 0,
        "current_streak": 0,
        "tests_this_week": 0,
    }
    assert seeded.get_accuracy_trend(1, "30d", NOW) == []
    assert seeded.get_section_performance(1, "30d", NOW) == []
    assert seeded.get_difficulty_breakdown(1, "30d", NOW) == []
    assert seeded.get_test_type_comparison(1, "30d", NOW) == []
    assert seeded.get_activity(1, "30d", NOW) == []
    assert seeded.get_time_analysis(1, "30d", NOW) == {
        "hour_performance": [],
        "day_of_week_performance": [],
        "best_time": None,
    }
    assert seeded.get_insights(1, "30d", NOW) == []


def test_unknown_preset_falls_back_to_30_days():
    assert normalize_preset("yesterday") == "30d"
    assert normalize_preset(None) == "30d"
    assert preset_start("all", NOW) is None
    assert preset_start("bogus", NOW) == NOW - datetime.timedelta(days=30)
