import datetime
from dataclasses import dataclass, field
from typing import Iterable

from database.connection import Database
from database.repositories.attempt_repository import get_submission_timestamps
from database.repositories.streak_repository import save_streak_snapshot
from utils.time_utils import to_utc_date, utc_today

STREAK_MILESTONES = (7, 14, 30, 50, 100, 365)


@dataclass
class StreakState:
    user_id: int | None = None
    current_streak_days: int = 0
    longest_streak_days: int = 0
    last_practice_date: datetime.date | None = None
    total_active_days: int = 0
    streak_status: str = "broken"
    streak_protection: bool = False
    calendar: list[dict] = field(default_factory=list)
    milestone: dict = field(default_factory=dict)


def _distinct_days(dates: Iterable) -> list[datetime.date]:
    days = {to_utc_date(d) for d in dates}
    days.discard(None)
    return sorted(days)


def _longest_run(days: list[datetime.date]) -> int:
    longest = 0
    run = 0
    prev = None
    for day in days:
        if prev is not None and (day - prev).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        prev = day
    return longest


def calculate_streak(dates: Iterable, today: datetime.date | None = None) -> StreakState:
    """
    Recomputes the streak from scratch over the given activity timestamps.

    Every value is projected onto its UTC calendar day first, so same-day
    attempts collapse and time of day never matters. If today has no
    activity but yesterday does, the run through yesterday is kept and the
    streak is reported as at risk.
    """
    today = today or utc_today()
    days = [d for d in _distinct_days(dates) if d <= today]
    state = StreakState(total_active_days=len(days))
    if not days:
        return state

    state.last_practice_date = days[-1]
    state.longest_streak_days = _longest_run(days)

    day_set = set(days)
    yesterday = today - datetime.timedelta(days=1)
    if today in day_set:
        anchor = today
        state.streak_status = "active"
    elif yesterday in day_set:
        anchor = yesterday
        state.streak_status = "at_risk"
        state.streak_protection = True
    else:
        return state

    current = 0
    cursor = anchor
    while cursor in day_set:
        current += 1
        cursor -= datetime.timedelta(days=1)
    state.current_streak_days = current
    return state


def get_streak_calendar(dates: Iterable, days: int = 30, today: datetime.date | None = None) -> list[dict]:
    """Trailing window of days, oldest first, flagging the ones with activity."""
    today = today or utc_today()
    active = set(_distinct_days(dates))
    calendar = []
    for offset in range(days - 1, -1, -1):
        day = today - datetime.timedelta(days=offset)
        calendar.append({"date": day, "has_activity": day in active})
    return calendar


def get_streak_milestone(current_streak: int) -> dict:
    next_milestone = next((m for m in STREAK_MILESTONES if m > current_streak), None)
    if next_milestone is None:
        next_milestone = current_streak + 30

    if current_streak >= 100:
        icon = "🏆"
    elif current_streak >= 30:
        icon = "💎"
    elif current_streak >= 7:
        icon = "🔥"
    else:
        icon = "✨"

    return {
        "current": current_streak,
        "next": next_milestone,
        "remaining": next_milestone - current_streak,
        "icon": icon,
    }


class StreakService:
    def __init__(self, db: Database):
        self.db = db

    def get_streak_data(self, user_id: int, today: datetime.date | None = None) -> StreakState:
        today = today or utc_today()
        timestamps = get_submission_timestamps(self.db, user_id)
        state = calculate_streak(timestamps, today)
        state.user_id = user_id
        state.calendar = get_streak_calendar(timestamps, today=today)
        state.milestone = get_streak_milestone(state.current_streak_days)
        return state

    def refresh_streak(self, user_id: int, today: datetime.date | None = None) -> StreakState:
        """Recomputes from the ledger and persists the snapshot. Called after every submission."""
        state = self.get_streak_data(user_id, today)
        save_streak_snapshot(
            self.db,
            user_id,
            state.current_streak_days,
            state.longest_streak_days,
            state.last_practice_date,
            state.total_active_days,
        )
        return state
