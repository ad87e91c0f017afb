"""
Read-side rollups for the progress dashboards.

Every public method is stateless and never raises: on any failure it logs
the error and returns an empty result of the usual shape, so a broken
widget never takes the whole dashboard down with it.
"""
import datetime
import functools
import logging
from collections import defaultdict

from database.connection import Database
from database.repositories import attempt_repository as ledger
from services.streak_service import calculate_streak
from utils.time_utils import to_utc_datetime, utc_now

PRESET_DAYS = {"7d": 7, "30d": 30, "90d": 90, "all": None}
DEFAULT_PRESET = "30d"
PASS_ACCURACY = 60
MIN_TESTS_PER_HOUR_BUCKET = 2
DIFFICULTY_ORDER = ("easy", "medium", "hard")
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def _empty_overview() -> dict:
    return {
        "total_tests": 0,
        "total_questions": 0,
        "overall_accuracy": 0,
        "total_time_minutes": 0,
        "current_streak": 0,
        "tests_this_week": 0,
    }


def _empty_time_analysis() -> dict:
    return {"hour_performance": [], "day_of_week_performance": [], "best_time": None}


def _fallback(default_factory, label: str):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, user_id, *args, **kwargs):
            try:
                return func(self, user_id, *args, **kwargs)
            except Exception:
                logging.exception("Error fetching %s for user %s", label, user_id)
                return default_factory()
        return wrapper
    return decorator


def normalize_preset(preset: str | None) -> str:
    return preset if preset in PRESET_DAYS else DEFAULT_PRESET


def preset_start(preset: str | None, now: datetime.datetime | None = None) -> datetime.datetime | None:
    days = PRESET_DAYS[normalize_preset(preset)]
    if days is None:
        return None
    return to_utc_datetime(now or utc_now()) - datetime.timedelta(days=days)


def _accuracy(correct, total) -> float | None:
    total = int(total or 0)
    if total <= 0:
        return None
    return int(correct or 0) / total * 100


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _dow(dt: datetime.datetime) -> int:
    # 0 = Sunday
    return (dt.weekday() + 1) % 7


class AnalyticsAggregator:
    def __init__(self, db: Database):
        self.db = db

    def _attempts(self, user_id: int, preset: str | None, now=None) -> list[dict]:
        rows = ledger.get_submitted_attempts(self.db, user_id, since=preset_start(preset, now))
        for row in rows:
            row["submitted_dt"] = to_utc_datetime(row["submitted_at"])
            row["accuracy"] = _accuracy(row.get("correct_answers"), row.get("total_questions"))
        return [r for r in rows if r["submitted_dt"] is not None]

    def _answers(self, user_id: int, preset: str | None, now=None) -> list[dict]:
        return ledger.get_submitted_answers(self.db, user_id, since=preset_start(preset, now))

    @_fallback(_empty_overview, "overview stats")
    def get_overview(self, user_id: int, preset: str = "all", now: datetime.datetime | None = None) -> dict:
        now = to_utc_datetime(now or utc_now())
        attempts = self._attempts(user_id, preset, now)
        if not attempts:
            stats = _empty_overview()
        else:
            seconds = sum(int(a.get("time_spent_seconds") or 0) for a in attempts)
            stats = {
                "total_tests": len(attempts),
                "total_questions": sum(int(a.get("total_questions") or 0) for a in attempts),
                "overall_accuracy": round(_mean([a["accuracy"] for a in attempts if a["accuracy"] is not None])),
                "total_time_minutes": round(seconds / 60),
                "current_streak": 0,
                "tests_this_week": len(self._attempts(user_id, "7d", now)),
            }
        # The streak always spans the whole history, whatever the preset.
        stamps = ledger.get_submission_timestamps(self.db, user_id)
        stats["current_streak"] = calculate_streak(stamps, now.date()).current_streak_days
        return stats

    @_fallback(list, "accuracy trend")
    def get_accuracy_trend(self, user_id: int, preset: str = DEFAULT_PRESET, now=None) -> list[dict]:
        return [
            {
                "date": a["submitted_dt"].date().isoformat(),
                "accuracy": round(a["accuracy"] or 0),
                "test_type": a.get("test_type"),
                "total_questions": int(a.get("total_questions") or 0),
                "attempt_id": int(a["id"]),
            }
            for a in self._attempts(user_id, preset, now)
        ]

    @_fallback(list, "section performance")
    def get_section_performance(self, user_id: int, preset: str = DEFAULT_PRESET, now=None) -> list[dict]:
        grouped: dict[str, dict] = defaultdict(lambda: {"attempted": 0, "correct": 0, "seconds": 0})
        for answer in self._answers(user_id, preset, now):
            bucket = grouped[str(answer["section_id"])]
            bucket["attempted"] += 1
            bucket["correct"] += 1 if answer["is_correct"] else 0
            bucket["seconds"] += int(answer.get("time_spent_seconds") or 0)

        result = []
        for section_id, b in grouped.items():
            result.append({
                "section_id": section_id,
                "accuracy": round(_accuracy(b["correct"], b["attempted"]) or 0),
                "questions_attempted": b["attempted"],
                "correct_answers": b["correct"],
                "incorrect_answers": b["attempted"] - b["correct"],
                "avg_time_per_question": round(b["seconds"] / b["attempted"]) if b["attempted"] else 0,
            })
        result.sort(key=lambda r: (-r["accuracy"], r["section_id"]))
        return result

    @_fallback(list, "difficulty breakdown")
    def get_difficulty_breakdown(self, user_id: int, preset: str = DEFAULT_PRESET, now=None) -> list[dict]:
        grouped: dict[str, list[int]] = {}
        for answer in self._answers(user_id, preset, now):
            difficulty = (answer.get("difficulty") or "").strip().lower()
            if not difficulty:
                continue
            counts = grouped.setdefault(difficulty, [0, 0])
            counts[0] += 1
            counts[1] += 1 if answer["is_correct"] else 0

        def order(name: str):
            if name in DIFFICULTY_ORDER:
                return (DIFFICULTY_ORDER.index(name), name)
            return (len(DIFFICULTY_ORDER), name)

        return [
            {
                "difficulty": name,
                "attempted": grouped[name][0],
                "correct": grouped[name][1],
                "accuracy": round(_accuracy(grouped[name][1], grouped[name][0]) or 0),
            }
            for name in sorted(grouped, key=order)
        ]

    @_fallback(list, "test type comparison")
    def get_test_type_comparison(self, user_id: int, preset: str = DEFAULT_PRESET, now=None) -> list[dict]:
        grouped: dict[str, list[dict]] = defaultdict(list)
        for attempt in self._attempts(user_id, preset, now):
            grouped[attempt.get("test_type") or "practice"].append(attempt)

        result = []
        for test_type in sorted(grouped):
            attempts = grouped[test_type]
            scores = [a["accuracy"] for a in attempts if a["accuracy"] is not None]
            passed = sum(1 for s in scores if s >= PASS_ACCURACY)
            result.append({
                "test_type": test_type,
                "avg_accuracy": round(_mean(scores)),
                "test_count": len(attempts),
                "total_questions": sum(int(a.get("total_questions") or 0) for a in attempts),
                "pass_rate": round(passed / len(attempts) * 100) if attempts else 0,
            })
        return result

    @_fallback(list, "activity data")
    def get_activity(self, user_id: int, preset: str = DEFAULT_PRESET, now=None) -> list[dict]:
        grouped: dict[str, list[dict]] = defaultdict(list)
        for attempt in self._attempts(user_id, preset, now):
            grouped[attempt["submitted_dt"].date().isoformat()].append(attempt)
        return [
            {
                "date": day,
                "test_count": len(grouped[day]),
                "questions_count": sum(int(a.get("total_questions") or 0) for a in grouped[day]),
                "avg_accuracy": round(_mean([a["accuracy"] for a in grouped[day] if a["accuracy"] is not None])),
            }
            for day in sorted(grouped)
        ]

    @_fallback(_empty_time_analysis, "time analysis")
    def get_time_analysis(self, user_id: int, preset: str = DEFAULT_PRESET, now=None) -> dict:
        by_slot: dict[tuple[int, int], list[float]] = defaultdict(list)
        by_day: dict[int, list[float]] = defaultdict(list)
        for attempt in self._attempts(user_id, preset, now):
            if attempt["accuracy"] is None:
                continue
            dt = attempt["submitted_dt"]
            by_slot[(_dow(dt), dt.hour)].append(attempt["accuracy"])
            by_day[_dow(dt)].append(attempt["accuracy"])

        hour_performance = [
            {
                "hour": hour,
                "day_of_week": dow,
                "avg_accuracy": round(_mean(scores)),
                "test_count": len(scores),
            }
            for (dow, hour), scores in sorted(by_slot.items())
            if len(scores) >= MIN_TESTS_PER_HOUR_BUCKET
        ]
        day_of_week_performance = [
            {
                "day_of_week": dow,
                "day_name": DAY_NAMES[dow],
                "avg_accuracy": round(_mean(scores)),
                "test_count": len(scores),
            }
            for dow, scores in sorted(by_day.items())
        ]

        best_time = None
        if hour_performance:
            best = hour_performance[0]
            for slot in hour_performance[1:]:
                if slot["avg_accuracy"] > best["avg_accuracy"]:
                    best = slot
            hour12 = best["hour"] % 12 or 12
            ampm = "PM" if best["hour"] >= 12 else "AM"
            best_time = {
                "hour": best["hour"],
                "day_of_week": best["day_of_week"],
                "accuracy": best["avg_accuracy"],
                "description": f"{DAY_NAMES[best['day_of_week']]}s at {hour12}:00 {ampm}",
            }

        return {
            "hour_performance": hour_performance,
            "day_of_week_performance": day_of_week_performance,
            "best_time": best_time,
        }

    @_fallback(list, "learning insights")
    def get_insights(self, user_id: int, preset: str = DEFAULT_PRESET, now=None) -> list[dict]:
        stats = self.get_overview(user_id, preset, now)
        sections = self.get_section_performance(user_id, preset, now)
        difficulty = self.get_difficulty_breakdown(user_id, preset, now)
        insights = []

        accuracy = stats["overall_accuracy"]
        if stats["total_tests"] and accuracy >= 80:
            insights.append({
                "id": "high-accuracy", "type": "success", "icon": "🎯", "priority": 5,
                "title": "Excellent Performance!",
                "message": f"You're maintaining a {accuracy}% accuracy rate. Keep up the great work!",
            })
        elif stats["total_tests"] and accuracy < 60:
            insights.append({
                "id": "low-accuracy", "type": "warning", "icon": "📚", "priority": 4,
                "title": "Room for Improvement",
                "message": f"Your current accuracy is {accuracy}%. Focus on understanding concepts rather than memorization.",
            })

        streak = stats["current_streak"]
        if streak >= 7:
            insights.append({
                "id": "streak-milestone", "type": "success", "icon": "🔥", "priority": 4,
                "title": "On Fire!",
                "message": f"Amazing! You've maintained a {streak}-day study streak. Consistency is key to success.",
            })
        elif streak == 0 and stats["total_tests"] > 0:
            insights.append({
                "id": "broken-streak", "type": "info", "icon": "⏰", "priority": 3,
                "title": "Start a New Streak",
                "message": "Practice daily to build momentum and improve retention.",
            })

        if sections:
            weakest = sections[-1]
            if weakest["accuracy"] < 60:
                insights.append({
                    "id": "weak-section", "type": "recommendation", "icon": "💡", "priority": 5,
                    "title": "Focus Area Identified",
                    "message": (
                        f"{weakest['section_id']} needs attention ({weakest['accuracy']}% accuracy). "
                        "Practice more questions from this section."
                    ),
                })

        hard = next((d for d in difficulty if d["difficulty"] == "hard"), None)
        if hard and hard["attempted"] > 10:
            if hard["accuracy"] >= 70:
                insights.append({
                    "id": "hard-mastery", "type": "success", "icon": "💪", "priority": 3,
                    "title": "Mastering Difficult Questions",
                    "message": f"Impressive! You're scoring {hard['accuracy']}% on hard questions.",
                })
            elif hard["accuracy"] < 50:
                insights.append({
                    "id": "hard-struggle", "type": "recommendation", "icon": "📖", "priority": 4,
                    "title": "Build Foundation",
                    "message": "Focus on medium difficulty questions first to strengthen your fundamentals.",
                })

        if stats["tests_this_week"] == 0 and stats["total_tests"] > 0:
            insights.append({
                "id": "inactive-week", "type": "info", "icon": "📅", "priority": 3,
                "title": "Stay Active",
                "message": "You haven't taken any tests this week. Regular practice leads to better results.",
            })
        elif stats["tests_this_week"] >= 5:
            insights.append({
                "id": "active-week", "type": "success", "icon": "⚡", "priority": 2,
                "title": "Highly Active!",
                "message": f"You've completed {stats['tests_this_week']} tests this week.",
            })

        insights.sort(key=lambda i: i["priority"], reverse=True)
        return insights
