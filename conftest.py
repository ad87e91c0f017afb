import datetime
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config import Config
from database import Database, create_schema
from database.repositories import attempt_repository as ledger

UTC = datetime.timezone.utc


def make_config(**overrides) -> Config:
    values = dict(
        db_backend="sqlite",
        weak_threshold=0.6,
        recovery_threshold=0.75,
        weak_min_samples=5,
        weak_window_size=10,
        revision_ladder=(1, 3, 7, 14, 30),
        revision_batch_size=3,
        mock_test_cap=5,
        practice_question_cap=50,
        followup_max_attempts=5,
    )
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def db(tmp_path):
    handle = Database(backend="sqlite", db_path=str(tmp_path / "engine.db"))
    create_schema(handle)
    yield handle
    handle.close()


@pytest.fixture
def record_attempt(db):
    """
    Writes one submitted attempt straight into the ledger.
    `results` is a list of (section_id, is_correct) or answer dicts.
    """
    counter = {"n": 0}

    def _record(user_id, results, submitted_at=None, test_type="practice", difficulty=None, time_spent_seconds=None):
        counter["n"] += 1
        if submitted_at is None:
            submitted_at = datetime.datetime(2026, 3, 1, 8, 0, tzinfo=UTC) + datetime.timedelta(minutes=counter["n"])
        answers = []
        for item in results:
            if isinstance(item, dict):
                answers.append(item)
            else:
                section_id, ok = item
                answers.append({"section_id": section_id, "is_correct": ok, "difficulty": difficulty})
        attempt_id = ledger.start_attempt(
            db,
            user_id,
            test_type=test_type,
            total_questions=len(answers),
            started_at=submitted_at - datetime.timedelta(minutes=10),
        )
        ledger.submit_attempt(db, attempt_id, answers, submitted_at=submitted_at, time_spent_seconds=time_spent_seconds)
        return attempt_id

    return _record


def section_results(section_id: str, correct: int, total: int):
    return [(section_id, i < correct) for i in range(total)]
