import asyncio
import datetime

import pytest

from conftest import make_config, section_results
from core.errors import InvariantViolation, NotFound, TransientStoreError
from database.repositories import attempt_repository as ledger
from database.repositories import followup_repository as queue
from database.repositories.streak_repository import get_streak_snapshot
from services.followup_service import retry_delay
from services.learning_engine import LearningEngine

UTC = datetime.timezone.utc


def _answers(section_id, correct, total):
    return [{"section_id": s, "is_correct": ok} for s, ok in section_results(section_id, correct, total)]


@pytest.fixture
def engine(db, config):
    return LearningEngine(db, config)


def test_enqueue_is_deduplicated_per_attempt(db):
    assert queue.enqueue_followup(db, 1, 42) is True
    assert queue.enqueue_followup(db, 1, 42) is False
    assert queue.get_queue_counts(db)["pending"] == 1


def test_submit_enqueues_and_later_drain_analyzes(engine, db):
    attempt_id = engine.start_attempt(1, total_questions=5)
    submitted = engine.submit_attempt(1, attempt_id, _answers("algebra", 1, 5))

    assert submitted["status"] == "submitted"
    assert submitted["score"] == 20.0
    # No running loop here, so the task waits for the next trigger.
    assert queue.get_queue_counts(db, 1)["pending"] == 1
    assert get_streak_snapshot(db, 1)["current_streak"] == 1

    assert engine.process_followups(1) == 1
    assert queue.get_queue_counts(db, 1)["done"] == 1
    assert [r["section_id"] for r in engine.get_weak_sections(1)] == ["algebra"]
    assert len(engine.get_revision_schedule(1)) == 1

    # Draining again is a no-op.
    assert engine.process_followups(1) == 0


def test_submit_drains_in_background_on_running_loop(engine, db):
    async def scenario():
        attempt_id = engine.start_attempt(1, total_questions=5)
        engine.submit_attempt(1, attempt_id, _answers("algebra", 0, 5))
        pending = list(engine.followups._running)
        assert len(pending) == 1
        await asyncio.gather(*pending)

    asyncio.run(scenario())
    assert queue.get_queue_counts(db, 1)["done"] == 1
    assert engine.get_weak_sections(1)[0]["weakness_level"] == "critical"


def test_failed_queue_write_rolls_back_the_submission(engine, db, monkeypatch):
    attempt_id = engine.start_attempt(1, total_questions=5)

    def busy(*args, **kwargs):
        raise TransientStoreError("database is locked")

    monkeypatch.setattr(queue, "add_followup", busy)
    with pytest.raises(TransientStoreError):
        engine.submit_attempt(1, attempt_id, _answers("algebra", 1, 5))

    assert ledger.get_attempt(db, attempt_id)["status"] == "in_progress"
    assert ledger.get_recent_section_answers(db, 1, 10) == {}
    assert queue.get_queue_counts(db, 1)["pending"] == 0

    # The client retry goes through and the analysis still happens.
    monkeypatch.undo()
    engine.submit_attempt(1, attempt_id, _answers("algebra", 1, 5))
    assert queue.get_queue_counts(db, 1)["pending"] == 1
    assert engine.process_followups(1) == 1
    assert [r["section_id"] for r in engine.get_weak_sections(1)] == ["algebra"]


def test_analyze_swallows_failures(engine, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("store down")

    monkeypatch.setattr(engine.analyzer, "evaluate", boom)
    assert engine.analyze_user_weak_topics(1) is None
    assert engine.get_revision_schedule(1) == []


def test_second_submit_is_rejected(engine):
    attempt_id = engine.start_attempt(1, total_questions=1)
    engine.submit_attempt(1, attempt_id, _answers("algebra", 1, 1))
    with pytest.raises(InvariantViolation):
        engine.submit_attempt(1, attempt_id, _answers("algebra", 1, 1))


def test_submit_of_foreign_attempt_is_not_found(engine):
    attempt_id = engine.start_attempt(1)
    with pytest.raises(NotFound):
        engine.submit_attempt(2, attempt_id, [])
    assert ledger.get_attempt(engine.db, attempt_id)["status"] == "in_progress"


def test_abandoned_attempts_do_not_count(engine, db):
    attempt_id = engine.start_attempt(1, total_questions=5)
    ledger.abandon_attempt(db, attempt_id)

    assert ledger.get_attempt(db, attempt_id)["status"] == "abandoned"
    assert ledger.get_submission_timestamps(db, 1) == []
    assert engine.get_streak_data(1).current_streak_days == 0
    with pytest.raises(InvariantViolation):
        ledger.submit_attempt(db, attempt_id, _answers("algebra", 5, 5))


def test_transient_error_is_retried_once(engine, db, monkeypatch):
    queue.enqueue_followup(db, 1, 1)
    real_evaluate = engine.analyzer.evaluate
    calls = {"n": 0}

    def flaky(user_id, section_ids=None):
        calls["n"] += 1
        if calls["n"] == 1:
            raise TransientStoreError("database is locked")
        return real_evaluate(user_id, section_ids)

    monkeypatch.setattr(engine.analyzer, "evaluate", flaky)

    assert engine.process_followups(1) == 1
    assert calls["n"] == 2
    assert queue.get_queue_counts(db, 1)["done"] == 1


def test_failed_task_is_rescheduled_with_backoff(engine, db, monkeypatch):
    queue.enqueue_followup(db, 1, 1)

    def broken(user_id, section_ids=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine.analyzer, "evaluate", broken)

    assert engine.process_followups(1) == 0
    counts = queue.get_queue_counts(db, 1)
    assert counts["pending"] == 1
    with db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT attempts, last_error FROM followup_tasks")
        row = cursor.fetchone()
    assert row["attempts"] == 1
    assert "RuntimeError: boom" in row["last_error"]
    # Backoff keeps it out of the immediate next drain.
    assert engine.process_followups(1) == 0


def test_task_fails_permanently_after_max_attempts(db, monkeypatch):
    engine = LearningEngine(db, make_config(followup_max_attempts=1))
    queue.enqueue_followup(db, 1, 1)

    def broken(user_id, section_ids=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine.analyzer, "evaluate", broken)

    engine.process_followups(1)

    assert queue.get_queue_counts(db, 1)["failed"] == 1


def test_stale_processing_tasks_are_recovered(db):
    queue.enqueue_followup(db, 1, 1)
    claimed = queue.claim_pending(db, user_id=1)
    assert len(claimed) == 1
    assert queue.claim_pending(db, user_id=1) == []

    later = datetime.datetime.now(UTC) + datetime.timedelta(hours=1)
    assert queue.recover_stale_processing(db, stale_seconds=900, now=later) == 1
    assert queue.get_queue_counts(db, 1)["pending"] == 1


def test_claim_is_scoped_to_user(db):
    queue.enqueue_followup(db, 1, 1)
    queue.enqueue_followup(db, 2, 2)
    claimed = queue.claim_pending(db, user_id=2)
    assert [t["user_id"] for t in claimed] == [2]


def test_retry_delay_grows_and_caps():
    assert retry_delay(0) == 30
    assert retry_delay(1) == 60
    assert retry_delay(20) == 3600


def test_facade_skip_then_reanalysis_restarts_revision(engine):
    attempt_id = engine.start_attempt(1, total_questions=5)
    engine.submit_attempt(1, attempt_id, _answers("algebra", 1, 5))
    engine.process_followups(1)
    [entry] = engine.get_revision_schedule(1)

    skipped = engine.skip_revision(1, entry.id)
    assert skipped.status == "skipped"
    assert engine.get_revision_schedule(1) == []
    with pytest.raises(NotFound):
        engine.complete_revision(2, entry.id)

    engine.analyze_user_weak_topics(1)
    [restarted] = engine.get_revision_schedule(1)
    assert restarted.id != entry.id
    assert restarted.section_ids == ["algebra"]
    assert restarted.interval_index == 0
