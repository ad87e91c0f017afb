import asyncio
import datetime
from types import SimpleNamespace

import pytest

from core.errors import NotAuthenticated
from core.texts import NO_REVISIONS_TEXT, NO_WEAK_SECTIONS_TEXT, SIGN_IN_TEXT
from handlers.analytics import format_analytics, parse_preset_callback
from handlers.common import require_user_id
from handlers.progress import format_limits, format_streak, format_weak_sections
from handlers.revision import format_schedule, parse_revision_callback
from services.revision_service import RevisionEntry
from services.streak_service import calculate_streak, get_streak_calendar, get_streak_milestone
from utils.update_tracking import UpdateTrackingMiddleware

TODAY = datetime.date(2026, 3, 10)


def test_parse_revision_callback():
    assert parse_revision_callback("rev:complete:12") == ("complete", 12)
    assert parse_revision_callback("rev:skip:3") == ("skip", 3)
    assert parse_revision_callback("rev:delete:3") is None
    assert parse_revision_callback("rev:skip:abc") is None
    assert parse_revision_callback("rev:skip:0") is None
    assert parse_revision_callback(None) is None


def test_parse_preset_callback():
    assert parse_preset_callback("analytics:7d") == "7d"
    assert parse_preset_callback("analytics:all") == "all"
    assert parse_preset_callback("analytics:forever") == "30d"
    assert parse_preset_callback("other:7d") == "30d"


def test_require_user_id():
    assert require_user_id(SimpleNamespace(from_user=SimpleNamespace(id=5))) == 5
    with pytest.raises(NotAuthenticated):
        require_user_id(SimpleNamespace(from_user=None))


def test_format_streak():
    dates = [TODAY, TODAY - datetime.timedelta(days=1)]
    state = calculate_streak(dates, TODAY)
    state.calendar = get_streak_calendar(dates, today=TODAY)
    state.milestone = get_streak_milestone(state.current_streak_days)

    text = format_streak(state)
    assert "Current streak:** 2" in text
    assert "🟩🟩" in text
    assert "Next milestone: 7 days (5 to go)" in text


def test_format_weak_sections():
    assert format_weak_sections([]) == NO_WEAK_SECTIONS_TEXT
    text = format_weak_sections([
        {"section_id": "number_series", "accuracy": 0.3, "sample_count": 10, "weakness_level": "critical"},
    ])
    assert "number\\_series: 30%" in text
    assert "critical" in text


def test_format_limits():
    assert "unlimited access" in format_limits({"mock_tests": None, "practice_questions": None, "is_unlimited": True})
    text = format_limits({"mock_tests": 2, "practice_questions": 40, "is_unlimited": False})
    assert "Mock tests: 2" in text
    assert "today: 40" in text


def test_format_schedule():
    assert format_schedule([]) == NO_REVISIONS_TEXT
    entry = RevisionEntry(
        id=1,
        user_id=1,
        scheduled_date=TODAY,
        status="pending",
        section_ids=["algebra", "physics"],
        interval_index=0,
        section_intervals={"algebra": 0, "physics": 2},
    )
    text = format_schedule([entry])
    assert "algebra (step 1)" in text
    assert "physics (step 3)" in text


def test_format_analytics_empty_period():
    text = format_analytics("7d", {"total_tests": 0}, [], [])
    assert "7 days" in text
    assert "No submitted tests" in text


def test_middleware_answers_unauthenticated_updates():
    answers = []

    async def answer(text, **kwargs):
        answers.append(text)

    event = SimpleNamespace(message=SimpleNamespace(from_user=None, answer=answer), callback_query=None)

    async def handler(event, data):
        raise NotAuthenticated("no sender")

    result = asyncio.run(UpdateTrackingMiddleware()(handler, event, {}))

    assert result is None
    assert answers == [SIGN_IN_TEXT]


def test_middleware_triggers_followup_drain_and_reraises():
    triggered = []
    engine = SimpleNamespace(trigger_followups=triggered.append)
    event = SimpleNamespace(message=None, callback_query=None, update_id=9)
    data = {"engine": engine, "event_from_user": SimpleNamespace(id=77)}

    async def handler(event, data):
        raise RuntimeError("handler bug")

    with pytest.raises(RuntimeError):
        asyncio.run(UpdateTrackingMiddleware()(handler, event, data))
    assert triggered == [77]
