import datetime
import threading

import pytest

from conftest import make_config
from core.errors import InvariantViolation
from database.repositories.entitlement_repository import set_entitlement
from database.repositories.usage_repository import get_consumed
from services.learning_engine import LearningEngine
from services.usage_service import MOCK_TEST, PRACTICE_QUESTION, UsageQuotaTracker, period_key_for

UTC = datetime.timezone.utc


def test_mock_test_cap_is_enforced(db, config):
    tracker = UsageQuotaTracker(db, config)

    results = [tracker.consume(1, MOCK_TEST).can_consume for _ in range(6)]

    assert results == [True] * 5 + [False]
    decision = tracker.check(1, MOCK_TEST)
    assert decision.can_consume is False
    assert decision.remaining == 0
    assert decision.used == 5
    assert decision.limit == 5
    assert decision.period_key == "lifetime"
    assert tracker.has_reached_mock_test_limit(1) is True


def test_concurrent_consumes_never_exceed_cap(db, config):
    tracker = UsageQuotaTracker(db, config)
    results = []
    lock = threading.Lock()
    start = threading.Barrier(6)

    def worker():
        start.wait()
        decision = tracker.consume(1, MOCK_TEST)
        with lock:
            results.append(decision.can_consume)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == [False] + [True] * 5
    assert get_consumed(db, 1, MOCK_TEST, "lifetime") == 5


def test_practice_quota_rolls_over_daily(db):
    tracker = UsageQuotaTracker(db, make_config(practice_question_cap=2))
    day_one = datetime.datetime(2026, 3, 10, 23, 0, tzinfo=UTC)
    day_two = datetime.datetime(2026, 3, 11, 0, 30, tzinfo=UTC)

    assert tracker.consume(1, PRACTICE_QUESTION, now=day_one).can_consume
    assert tracker.consume(1, PRACTICE_QUESTION, now=day_one).can_consume
    assert not tracker.consume(1, PRACTICE_QUESTION, now=day_one).can_consume
    assert tracker.has_reached_practice_limit(1, now=day_one)

    fresh = tracker.check(1, PRACTICE_QUESTION, now=day_two)
    assert fresh.period_key == "2026-03-11"
    assert fresh.remaining == 2
    assert tracker.consume(1, PRACTICE_QUESTION, now=day_two).can_consume
    # The previous day's counter is untouched.
    assert get_consumed(db, 1, PRACTICE_QUESTION, "2026-03-10") == 2


def test_unlimited_users_always_pass_and_are_not_metered(db, config):
    tracker = UsageQuotaTracker(db, config)
    for _ in range(10):
        decision = tracker.consume(1, MOCK_TEST, is_unlimited=True)
        assert decision.can_consume is True
        assert decision.remaining is None
        assert decision.is_unlimited is True
    assert get_consumed(db, 1, MOCK_TEST, "lifetime") == 0
    assert tracker.get_remaining_free_usage(1, is_unlimited=True) == {
        "mock_tests": None,
        "practice_questions": None,
        "is_unlimited": True,
    }


def test_remaining_free_usage_shape(db, config):
    tracker = UsageQuotaTracker(db, config)
    tracker.consume(1, MOCK_TEST)
    tracker.consume(1, PRACTICE_QUESTION)

    assert tracker.get_remaining_free_usage(1) == {
        "mock_tests": 4,
        "practice_questions": 49,
        "is_unlimited": False,
    }


def test_negative_stored_count_is_an_invariant_violation(db, config):
    with db.transaction() as cursor:
        cursor.execute(
            "INSERT INTO usage_counters (user_id, resource_kind, period_key, consumed_count) VALUES (?, ?, ?, ?)",
            (1, MOCK_TEST, "lifetime", -1),
        )
    with pytest.raises(InvariantViolation):
        UsageQuotaTracker(db, config).check(1, MOCK_TEST)


def test_unknown_resource_kind(db, config):
    with pytest.raises(ValueError):
        UsageQuotaTracker(db, config).consume(1, "video_minutes")
    with pytest.raises(ValueError):
        period_key_for("video_minutes")


def test_engine_reads_entitlement(db, config):
    engine = LearningEngine(db, config)
    assert engine.get_remaining_free_usage(1)["is_unlimited"] is False

    set_entitlement(db, 1, True)
    assert engine.get_remaining_free_usage(1)["mock_tests"] is None
    assert engine.has_reached_mock_test_limit(1) is False

    lapsed = datetime.datetime(2020, 1, 1, tzinfo=UTC)
    set_entitlement(db, 1, True, valid_until=lapsed)
    assert engine.is_unlimited(1) is False
    assert engine.consume(1, MOCK_TEST).remaining == 4
