"""
Post-submission follow-up work.

Submitting an attempt enqueues an "analyze" task keyed by the attempt, so a
re-delivered submission cannot queue it twice. Tasks are drained off the
request path: right after submission on an asyncio task, and again on the
user's next interaction for anything left behind. Re-running a task is
harmless because both the analyzer and the scheduler are idempotent.
"""
import asyncio
import datetime
import logging

from core.config import Config, settings
from core.errors import InvariantViolation, TransientStoreError
from database.connection import Database
from database.repositories import followup_repository as queue
from services.revision_service import RevisionScheduler
from services.weak_topic_service import WeakTopicAnalyzer
from utils.ops_logging import log_structured

ANALYZE = "analyze"
BASE_RETRY_DELAY_SECONDS = 30
MAX_RETRY_DELAY_SECONDS = 3600


def retry_delay(attempts_done: int) -> int:
    return min(MAX_RETRY_DELAY_SECONDS, BASE_RETRY_DELAY_SECONDS * (2 ** max(0, attempts_done)))


class FollowupDispatcher:
    def __init__(
        self,
        db: Database,
        analyzer: WeakTopicAnalyzer,
        scheduler: RevisionScheduler,
        config: Config = settings,
    ):
        self.db = db
        self.analyzer = analyzer
        self.scheduler = scheduler
        self.max_attempts = config.followup_max_attempts
        self._running: set[asyncio.Task] = set()

    def _execute(self, task: dict, today: datetime.date | None):
        if task["kind"] != ANALYZE:
            raise ValueError(f"Unknown follow-up kind: {task['kind']}")
        verdicts = self.analyzer.evaluate(task["user_id"])
        self.scheduler.evaluate(task["user_id"], verdicts, today)

    def _run_task(self, task: dict, today: datetime.date | None) -> bool:
        try:
            try:
                self._execute(task, today)
            except TransientStoreError as exc:
                logging.warning(f"Follow-up {task['id']} hit a busy store, retrying once: {exc}")
                self._execute(task, today)
        except Exception as exc:
            if isinstance(exc, InvariantViolation):
                logging.error(f"Follow-up {task['id']} broke an invariant: {exc}")
            else:
                logging.exception("Follow-up %s failed", task["id"])
            status = queue.reschedule(
                self.db,
                task["id"],
                attempts_done=task["attempts"],
                error_msg=f"{type(exc).__name__}: {exc}",
                delay_seconds=retry_delay(task["attempts"]),
                max_attempts=self.max_attempts,
            )
            log_structured(
                "followup_failed",
                task_id=task["id"],
                user_id=task["user_id"],
                attempt_id=task["attempt_id"],
                error_type=type(exc).__name__,
                status=status,
            )
            return False
        queue.mark_done(self.db, task["id"])
        return True

    def process_pending(self, user_id: int | None = None, limit: int = 20, today: datetime.date | None = None) -> int:
        """Claims and runs due tasks. Returns how many finished successfully."""
        queue.recover_stale_processing(self.db)
        tasks = queue.claim_pending(self.db, user_id=user_id, limit=limit)
        done = 0
        for task in tasks:
            if self._run_task(task, today):
                done += 1
        return done

    async def drain(self, user_id: int) -> int:
        try:
            return await asyncio.to_thread(self.process_pending, user_id)
        except Exception:
            logging.exception("Follow-up drain failed for user %s", user_id)
            return 0

    def schedule_drain(self, user_id: int) -> asyncio.Task | None:
        """Starts a background drain on the running loop. Outside a loop the tasks wait for the next trigger."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        task = loop.create_task(self.drain(user_id))
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        return task

    def get_queue_counts(self, user_id: int | None = None) -> dict[str, int]:
        return queue.get_queue_counts(self.db, user_id)
