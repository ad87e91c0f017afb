from aiogram import Router, F
from aiogram.filters import Command
from aiogram.types import Message

from core.texts import (
    BTN_LIMITS,
    BTN_STREAK,
    BTN_WEAK,
    NO_WEAK_SECTIONS_TEXT,
    STREAK_STATUS_LABELS,
    WEAKNESS_LABELS,
)
from handlers.common import require_user_id
from services.learning_engine import LearningEngine
from services.streak_service import StreakState
from utils.ui_utils import _get_progress_bar, _md_escape

router = Router()


def format_streak(state: StreakState) -> str:
    milestone = state.milestone or {}
    week = "".join("🟩" if day["has_activity"] else "⬜" for day in state.calendar[-7:])
    lines = [
        f"{milestone.get('icon', '🔥')} **Current streak:** {state.current_streak_days} day(s)",
        f"🏅 **Longest streak:** {state.longest_streak_days} day(s)",
        f"📅 **Active days:** {state.total_active_days}",
        f"Status: {STREAK_STATUS_LABELS.get(state.streak_status, state.streak_status)}",
    ]
    if week:
        lines.append(f"Last 7 days: {week}")
    if milestone:
        lines.append(f"🎯 Next milestone: {milestone['next']} days ({milestone['remaining']} to go)")
    return "\n".join(lines)


def format_weak_sections(rows: list[dict]) -> str:
    if not rows:
        return NO_WEAK_SECTIONS_TEXT
    lines = ["📉 **Weak sections**", ""]
    for row in rows:
        pct = round(float(row["accuracy"]) * 100)
        level = WEAKNESS_LABELS.get(row.get("weakness_level") or "", "")
        lines.append(
            f"• {_md_escape(row['section_id'])}: {pct}% {_get_progress_bar(pct)} "
            f"({row['sample_count']} answers) {level}".rstrip()
        )
    return "\n".join(lines)


def format_limits(usage: dict) -> str:
    if usage.get("is_unlimited"):
        return "🎟 **Usage**\n\n♾ You have unlimited access."

    def _fmt(value):
        return "unlimited" if value is None else str(value)

    return (
        "🎟 **Free usage left**\n\n"
        f"📝 Mock tests: {_fmt(usage.get('mock_tests'))}\n"
        f"❓ Practice questions today: {_fmt(usage.get('practice_questions'))}"
    )


@router.message(Command("streak"))
@router.message(F.text == BTN_STREAK)
async def cmd_streak(message: Message, engine: LearningEngine):
    user_id = require_user_id(message)
    state = engine.get_streak_data(user_id)
    await message.answer(format_streak(state), parse_mode="Markdown")


@router.message(Command("weak"))
@router.message(F.text == BTN_WEAK)
async def cmd_weak(message: Message, engine: LearningEngine):
    user_id = require_user_id(message)
    rows = engine.get_weak_sections(user_id)
    await message.answer(format_weak_sections(rows), parse_mode="Markdown")


@router.message(Command("limits"))
@router.message(F.text == BTN_LIMITS)
async def cmd_limits(message: Message, engine: LearningEngine):
    user_id = require_user_id(message)
    usage = engine.get_remaining_free_usage(user_id)
    await message.answer(format_limits(usage), parse_mode="Markdown")
