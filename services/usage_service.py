import datetime
from dataclasses import dataclass

from core.config import Config, settings
from database.connection import Database
from database.repositories.usage_repository import get_consumed, try_increment
from utils.ops_logging import log_structured
from utils.time_utils import to_utc_datetime, utc_now

MOCK_TEST = "mock_test"
PRACTICE_QUESTION = "practice_question"
LIFETIME_PERIOD = "lifetime"

# kind -> period
RESOURCE_PERIODS = {
    MOCK_TEST: "lifetime",
    PRACTICE_QUESTION: "daily",
}


@dataclass
class QuotaDecision:
    can_consume: bool
    remaining: int | None
    used: int
    limit: int | None
    period_key: str
    is_unlimited: bool = False


def period_key_for(resource_kind: str, now: datetime.datetime | None = None) -> str:
    period = RESOURCE_PERIODS.get(resource_kind)
    if period is None:
        raise ValueError(f"Unknown resource kind: {resource_kind}")
    if period == "lifetime":
        return LIFETIME_PERIOD
    return to_utc_datetime(now or utc_now()).date().isoformat()


class UsageQuotaTracker:
    def __init__(self, db: Database, config: Config = settings):
        self.db = db
        self.caps = {
            MOCK_TEST: config.mock_test_cap,
            PRACTICE_QUESTION: config.practice_question_cap,
        }

    def cap_for(self, resource_kind: str) -> int:
        if resource_kind not in self.caps:
            raise ValueError(f"Unknown resource kind: {resource_kind}")
        return self.caps[resource_kind]

    def check(
        self,
        user_id: int,
        resource_kind: str,
        is_unlimited: bool = False,
        now: datetime.datetime | None = None,
    ) -> QuotaDecision:
        cap = self.cap_for(resource_kind)
        key = period_key_for(resource_kind, now)
        used = get_consumed(self.db, user_id, resource_kind, key)
        if is_unlimited:
            return QuotaDecision(True, None, used, None, key, True)
        return QuotaDecision(used < cap, max(0, cap - used), used, cap, key, False)

    def consume(
        self,
        user_id: int,
        resource_kind: str,
        is_unlimited: bool = False,
        now: datetime.datetime | None = None,
    ) -> QuotaDecision:
        """
        Takes one unit of the resource if the user still has quota.
        `can_consume` on the result tells whether the unit was granted.
        Unlimited users are always granted and not metered.
        """
        cap = self.cap_for(resource_kind)
        key = period_key_for(resource_kind, now)
        if is_unlimited:
            return QuotaDecision(True, None, get_consumed(self.db, user_id, resource_kind, key), None, key, True)

        granted = try_increment(self.db, user_id, resource_kind, key, cap)
        used = get_consumed(self.db, user_id, resource_kind, key)
        if not granted:
            log_structured(
                "quota_rejected",
                user_id=user_id,
                resource_kind=resource_kind,
                period_key=key,
                used=used,
                limit=cap,
            )
        return QuotaDecision(granted, max(0, cap - used), used, cap, key, False)

    def get_remaining_free_usage(
        self,
        user_id: int,
        is_unlimited: bool = False,
        now: datetime.datetime | None = None,
    ) -> dict:
        if is_unlimited:
            return {"mock_tests": None, "practice_questions": None, "is_unlimited": True}
        mock = self.check(user_id, MOCK_TEST, False, now)
        practice = self.check(user_id, PRACTICE_QUESTION, False, now)
        return {
            "mock_tests": mock.remaining,
            "practice_questions": practice.remaining,
            "is_unlimited": False,
        }

    def has_reached_mock_test_limit(self, user_id: int, is_unlimited: bool = False) -> bool:
        return not self.check(user_id, MOCK_TEST, is_unlimited).can_consume

    def has_reached_practice_limit(
        self,
        user_id: int,
        is_unlimited: bool = False,
        now: datetime.datetime | None = None,
    ) -> bool:
        return not self.check(user_id, PRACTICE_QUESTION, is_unlimited, now).can_consume
