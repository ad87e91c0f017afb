"""
Spaced-repetition scheduling of weak sections.

Each weak section walks a ladder of review intervals (1, 3, 7, 14, 30 days
by default, the last step repeating). A run through the ladder is a
"cycle": skipping or missing a review ends the cycle, and the section
starts a fresh one at the first step on the next evaluation.

Sections due on the same day share one revision entry, up to the batch
size; further sections spill over to the next day with room.
"""
import datetime
import logging
from dataclasses import dataclass, field
from typing import Iterable

from core.config import Config, settings
from core.errors import InvariantViolation, NotFound
from database.connection import Database
from database.repositories import revision_repository as repo
from services.weak_topic_service import SectionVerdict, WeakTopicAnalyzer
from utils.ops_logging import log_structured
from utils.time_utils import to_utc_date, utc_today

_ONE_DAY = datetime.timedelta(days=1)


@dataclass
class RevisionEntry:
    id: int
    user_id: int
    scheduled_date: datetime.date
    status: str
    section_ids: list[str] = field(default_factory=list)
    interval_index: int = 0
    section_intervals: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict) -> "RevisionEntry":
        items = row.get("items") or []
        if row["status"] == "pending":
            items = [i for i in items if i["status"] == "pending"]
        intervals = {str(i["section_id"]): int(i["interval_index"]) for i in items}
        return cls(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            scheduled_date=to_utc_date(row["scheduled_date"]),
            status=str(row["status"]),
            section_ids=sorted(intervals),
            interval_index=min(intervals.values()) if intervals else 0,
            section_intervals=intervals,
        )


class RevisionScheduler:
    def __init__(self, db: Database, analyzer: WeakTopicAnalyzer, config: Config = settings):
        self.db = db
        self.analyzer = analyzer
        self.ladder = tuple(config.revision_ladder)
        self.batch_size = config.revision_batch_size

    def interval_for(self, index: int) -> int:
        return self.ladder[min(index, len(self.ladder) - 1)]

    def _place(
        self,
        cursor,
        user_id: int,
        section_id: str,
        interval_index: int,
        ladder_cycle: int,
        target: datetime.date,
    ) -> datetime.date:
        earlier = [
            to_utc_date(i["scheduled_date"])
            for i in repo.get_cycle_items(cursor, user_id, section_id, ladder_cycle)
            if int(i["interval_index"]) <= interval_index
        ]
        day = target
        while True:
            entry_id, taken = repo.count_open_slots(cursor, user_id, day)
            if entry_id is None:
                entry_id = repo.create_entry(self.db, cursor, user_id, day)
                break
            if taken < self.batch_size:
                break
            day += _ONE_DAY

        if earlier and day <= max(earlier):
            raise InvariantViolation(
                f"revision for user={user_id} section={section_id} step={interval_index} "
                f"on {day} is not after {max(earlier)}"
            )
        repo.add_item(self.db, cursor, entry_id, user_id, section_id, interval_index, ladder_cycle, day)
        return day

    def _start_cycle(self, cursor, user_id: int, section_id: str, today: datetime.date) -> datetime.date:
        latest = repo.get_latest_item(cursor, user_id, section_id)
        cycle = int(latest["ladder_cycle"]) + 1 if latest else 1
        return self._place(cursor, user_id, section_id, 0, cycle, today + datetime.timedelta(days=self.ladder[0]))

    def evaluate(self, user_id: int, verdicts: Iterable[SectionVerdict], today: datetime.date | None = None) -> int:
        """
        Applies analyzer verdicts in one transaction. Weak sections without a
        pending review start a new cycle; recovered sections drop theirs.
        Returns the number of newly scheduled sections.
        """
        today = today or utc_today()
        verdicts = list(verdicts)
        scheduled = 0
        try:
            with self.db.transaction() as cursor:
                repo.expire_overdue(cursor, user_id, today)
                pending = repo.get_pending_items(cursor, user_id)
                for verdict in verdicts:
                    if verdict.new_status == "recovered":
                        if verdict.section_id in pending:
                            repo.expire_section_items(cursor, user_id, verdict.section_id)
                    elif verdict.new_status == "weak" and verdict.section_id not in pending:
                        self._start_cycle(cursor, user_id, verdict.section_id, today)
                        scheduled += 1
        except InvariantViolation as exc:
            logging.error(f"Revision scheduling invariant broken for user {user_id}: {exc}")
            raise
        return scheduled

    def complete_entry(self, user_id: int, entry_id: int, today: datetime.date | None = None) -> RevisionEntry:
        """
        Marks a pending entry completed and moves each of its sections along
        the ladder, or off it once the section has recovered. Completing
        before the scheduled day is allowed. Already closed entries are
        returned unchanged.
        """
        today = today or utc_today()
        with self.db.connection() as conn:
            entry = repo.get_entry(conn.cursor(), user_id, entry_id)
        if entry is None:
            raise NotFound(f"revision entry {entry_id}")
        if entry["status"] != "pending":
            return RevisionEntry.from_row(entry)

        pending_sections = [str(i["section_id"]) for i in entry["items"] if i["status"] == "pending"]
        verdicts = {v.section_id: v for v in self.analyzer.evaluate(user_id, pending_sections)}

        try:
            with self.db.transaction() as cursor:
                entry = repo.get_entry(cursor, user_id, entry_id)
                if entry is None:
                    raise NotFound(f"revision entry {entry_id}")
                if entry["status"] != "pending":
                    return RevisionEntry.from_row(entry)
                items = [i for i in entry["items"] if i["status"] == "pending"]
                repo.close_entry(cursor, entry_id, "completed")

                for item in items:
                    section_id = str(item["section_id"])
                    verdict = verdicts.get(section_id)
                    if verdict is None or verdict.new_status != "weak":
                        repo.expire_section_items(cursor, user_id, section_id)
                        continue
                    if section_id in repo.get_pending_items(cursor, user_id):
                        continue
                    next_index = min(int(item["interval_index"]) + 1, len(self.ladder) - 1)
                    previous = to_utc_date(item["scheduled_date"])
                    target = max(
                        today + datetime.timedelta(days=self.interval_for(next_index)),
                        previous + _ONE_DAY,
                    )
                    self._place(cursor, user_id, section_id, next_index, int(item["ladder_cycle"]), target)

                completed = repo.get_entry(cursor, user_id, entry_id)
        except InvariantViolation as exc:
            logging.error(f"Revision scheduling invariant broken for user {user_id}: {exc}")
            raise

        log_structured(
            "revision_completed",
            user_id=user_id,
            entry_id=entry_id,
            sections=[str(i["section_id"]) for i in items],
        )
        return RevisionEntry.from_row(completed)

    def skip_entry(self, user_id: int, entry_id: int) -> RevisionEntry:
        """The entry's sections re-enter the ladder at the first step on the next evaluation."""
        with self.db.transaction() as cursor:
            entry = repo.get_entry(cursor, user_id, entry_id)
            if entry is None:
                raise NotFound(f"revision entry {entry_id}")
            if entry["status"] == "pending":
                repo.close_entry(cursor, entry_id, "skipped")
                entry = repo.get_entry(cursor, user_id, entry_id)
        return RevisionEntry.from_row(entry)

    def expire_overdue(self, user_id: int, today: datetime.date | None = None) -> int:
        today = today or utc_today()
        with self.db.transaction() as cursor:
            return repo.expire_overdue(cursor, user_id, today)

    def get_revision_schedule(
        self,
        user_id: int,
        today: datetime.date | None = None,
        include_history: bool = False,
    ) -> list[RevisionEntry]:
        self.expire_overdue(user_id, today)
        statuses = None if include_history else ("pending",)
        return [RevisionEntry.from_row(row) for row in repo.list_entries(self.db, user_id, statuses)]
