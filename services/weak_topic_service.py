import datetime
from dataclasses import dataclass
from typing import Iterable

from core.config import Config, settings
from database.connection import Database
from database.repositories.attempt_repository import get_recent_section_answers
from database.repositories.revision_repository import get_pending_items
from database.repositories.weak_section_repository import (
    get_section_states,
    get_weak_sections,
    upsert_sections,
)
from utils.ops_logging import log_structured
from utils.time_utils import to_utc_date, utc_today

CRITICAL_ACCURACY = 0.4


@dataclass
class SectionVerdict:
    section_id: str
    accuracy: float
    samples: int
    previous_status: str | None
    new_status: str | None

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status


def next_status(
    previous: str | None,
    accuracy: float,
    samples: int,
    weak_threshold: float,
    recovery_threshold: float,
    min_samples: int,
) -> str | None:
    """
    Hysteresis between the weak and recovered states.
    Accuracy between the two thresholds keeps whatever status the section had.
    """
    if samples < min_samples:
        return previous
    if previous == "weak":
        return "recovered" if accuracy >= recovery_threshold else "weak"
    if accuracy < weak_threshold:
        return "weak"
    return previous


def weakness_level(accuracy: float, weak_threshold: float) -> str:
    if accuracy < CRITICAL_ACCURACY:
        return "critical"
    if accuracy < weak_threshold:
        return "moderate"
    return "improving"


class WeakTopicAnalyzer:
    def __init__(self, db: Database, config: Config = settings):
        self.db = db
        self.config = config

    def evaluate(self, user_id: int, section_ids: Iterable[str] | None = None) -> list[SectionVerdict]:
        """
        Re-scores the trailing answer window of each section and upserts the
        sections that are (or have ever been) flagged. Returns one verdict per
        section seen in the window.
        """
        cfg = self.config
        windows = get_recent_section_answers(self.db, user_id, cfg.weak_window_size, section_ids)
        states = get_section_states(self.db, user_id)

        verdicts: list[SectionVerdict] = []
        rows = []
        for section_id in sorted(windows):
            window = windows[section_id]
            samples = len(window)
            accuracy = sum(1 for ok in window if ok) / samples if samples else 0.0
            previous = states.get(section_id, {}).get("status")
            status = next_status(
                previous,
                accuracy,
                samples,
                cfg.weak_threshold,
                cfg.recovery_threshold,
                cfg.weak_min_samples,
            )
            verdict = SectionVerdict(section_id, round(accuracy, 4), samples, previous, status)
            verdicts.append(verdict)
            if status is None:
                continue
            rows.append({
                "section_id": section_id,
                "accuracy": verdict.accuracy,
                "sample_count": samples,
                "status": status,
                "weakness_level": weakness_level(accuracy, cfg.weak_threshold) if status == "weak" else None,
                "became_weak": status == "weak" and previous != "weak",
            })

        if rows:
            upsert_sections(self.db, user_id, rows)

        for verdict in verdicts:
            if verdict.changed:
                log_structured(
                    "weak_section_status_changed",
                    user_id=user_id,
                    section_id=verdict.section_id,
                    previous=verdict.previous_status,
                    status=verdict.new_status,
                    accuracy=verdict.accuracy,
                    samples=verdict.samples,
                )
        return verdicts

    def get_weak_sections(self, user_id: int, include_recovered: bool = False) -> list[dict]:
        return get_weak_sections(self.db, user_id, include_recovered=include_recovered)

    def get_recommended_sections(self, user_id: int, limit: int = 5, today: datetime.date | None = None) -> list[dict]:
        # Weak sections with nothing pending, or whose revision is due, most critical first.
        today = today or utc_today()
        weak = get_weak_sections(self.db, user_id)
        with self.db.connection() as conn:
            pending = get_pending_items(conn.cursor(), user_id)

        recommended = []
        for row in weak:
            item = pending.get(str(row["section_id"]))
            if item is not None and to_utc_date(item["scheduled_date"]) > today:
                continue
            recommended.append(row)
        return recommended[:max(0, limit)]
