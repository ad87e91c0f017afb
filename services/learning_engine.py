import datetime
import logging
from typing import Any, Iterable

from core.config import Config, settings
from core.errors import NotFound
from database.connection import Database
from database.repositories import attempt_repository as ledger
from database.repositories.entitlement_repository import is_unlimited
from services.analytics_service import AnalyticsAggregator
from services.followup_service import ANALYZE, FollowupDispatcher
from services.revision_service import RevisionEntry, RevisionScheduler
from services.streak_service import StreakService, StreakState
from services.usage_service import MOCK_TEST, QuotaDecision, UsageQuotaTracker
from services.weak_topic_service import WeakTopicAnalyzer


class LearningEngine:
    """
    Entry point used by the bot handlers. Wires the components to one
    Database handle and exposes the per-user operations.
    """

    def __init__(self, db: Database, config: Config = settings):
        self.db = db
        self.config = config
        self.streaks = StreakService(db)
        self.analyzer = WeakTopicAnalyzer(db, config)
        self.scheduler = RevisionScheduler(db, self.analyzer, config)
        self.quotas = UsageQuotaTracker(db, config)
        self.analytics = AnalyticsAggregator(db)
        self.followups = FollowupDispatcher(db, self.analyzer, self.scheduler, config)

    # Attempts
    def start_attempt(self, user_id: int, test_type: str = "practice", total_questions: int = 0, session_id: str | None = None) -> int:
        return ledger.start_attempt(
            self.db, user_id, session_id=session_id, test_type=test_type, total_questions=total_questions
        )

    def submit_attempt(
        self,
        user_id: int,
        attempt_id: int,
        answers: Iterable[dict[str, Any]],
        submitted_at: datetime.datetime | None = None,
        time_spent_seconds: int | None = None,
    ) -> dict[str, Any]:
        """
        Closes the attempt and queues the weak-section analysis in the same
        transaction, then refreshes the streak and starts a drain. Analysis
        failures never reach the caller.
        """
        attempt = ledger.get_attempt(self.db, attempt_id)
        if not attempt or int(attempt["user_id"]) != int(user_id):
            raise NotFound(f"attempt {attempt_id}")

        submitted = ledger.submit_attempt(
            self.db,
            attempt_id,
            answers,
            submitted_at=submitted_at,
            time_spent_seconds=time_spent_seconds,
            followup_kind=ANALYZE,
        )
        try:
            self.streaks.refresh_streak(user_id)
        except Exception:
            logging.exception("Streak refresh failed for user %s", user_id)
        self.followups.schedule_drain(user_id)
        return submitted

    # Streak
    def get_streak_data(self, user_id: int) -> StreakState:
        return self.streaks.get_streak_data(user_id)

    # Weak sections / revision
    def analyze_user_weak_topics(self, user_id: int) -> None:
        try:
            verdicts = self.analyzer.evaluate(user_id)
            self.scheduler.evaluate(user_id, verdicts)
        except Exception:
            logging.exception("Weak section analysis failed for user %s", user_id)

    def get_weak_sections(self, user_id: int, include_recovered: bool = False) -> list[dict]:
        return self.analyzer.get_weak_sections(user_id, include_recovered=include_recovered)

    def get_recommended_sections(self, user_id: int, limit: int = 5) -> list[dict]:
        return self.analyzer.get_recommended_sections(user_id, limit=limit)

    def get_revision_schedule(self, user_id: int, include_history: bool = False) -> list[RevisionEntry]:
        return self.scheduler.get_revision_schedule(user_id, include_history=include_history)

    def complete_revision(self, user_id: int, entry_id: int) -> RevisionEntry:
        return self.scheduler.complete_entry(user_id, entry_id)

    def skip_revision(self, user_id: int, entry_id: int) -> RevisionEntry:
        return self.scheduler.skip_entry(user_id, entry_id)

    # Quotas
    def is_unlimited(self, user_id: int) -> bool:
        return is_unlimited(self.db, user_id)

    def consume(self, user_id: int, resource_kind: str) -> QuotaDecision:
        return self.quotas.consume(user_id, resource_kind, self.is_unlimited(user_id))

    def check_quota(self, user_id: int, resource_kind: str = MOCK_TEST) -> QuotaDecision:
        return self.quotas.check(user_id, resource_kind, self.is_unlimited(user_id))

    def get_remaining_free_usage(self, user_id: int) -> dict:
        return self.quotas.get_remaining_free_usage(user_id, self.is_unlimited(user_id))

    def has_reached_mock_test_limit(self, user_id: int) -> bool:
        return self.quotas.has_reached_mock_test_limit(user_id, self.is_unlimited(user_id))

    def has_reached_practice_limit(self, user_id: int) -> bool:
        return self.quotas.has_reached_practice_limit(user_id, self.is_unlimited(user_id))

    # Analytics
    def get_overview(self, user_id: int, preset: str = "all") -> dict:
        return self.analytics.get_overview(user_id, preset)

    def get_accuracy_trend(self, user_id: int, preset: str = "30d") -> list[dict]:
        return self.analytics.get_accuracy_trend(user_id, preset)

    def get_section_performance(self, user_id: int, preset: str = "30d") -> list[dict]:
        return self.analytics.get_section_performance(user_id, preset)

    def get_difficulty_breakdown(self, user_id: int, preset: str = "30d") -> list[dict]:
        return self.analytics.get_difficulty_breakdown(user_id, preset)

    def get_test_type_comparison(self, user_id: int, preset: str = "30d") -> list[dict]:
        return self.analytics.get_test_type_comparison(user_id, preset)

    def get_activity(self, user_id: int, preset: str = "30d") -> list[dict]:
        return self.analytics.get_activity(user_id, preset)

    def get_time_analysis(self, user_id: int, preset: str = "30d") -> dict:
        return self.analytics.get_time_analysis(user_id, preset)

    def get_insights(self, user_id: int, preset: str = "30d") -> list[dict]:
        return self.analytics.get_insights(user_id, preset)

    # Follow-ups
    def process_followups(self, user_id: int) -> int:
        return self.followups.process_pending(user_id)

    def trigger_followups(self, user_id: int):
        self.followups.schedule_drain(user_id)
