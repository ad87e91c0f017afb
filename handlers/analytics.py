from aiogram import Router, F
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from core.texts import ANALYTICS_EMPTY_TEXT, BTN_ANALYTICS, PRESET_LABELS
from handlers.common import require_user_id
from keyboards.builders import ANALYTICS_CALLBACK_PREFIX, get_analytics_presets_keyboard
from services.analytics_service import DEFAULT_PRESET, normalize_preset
from services.learning_engine import LearningEngine
from utils.ui_utils import _get_progress_bar, _md_escape, edit_or_answer

router = Router()


def parse_preset_callback(data: str | None) -> str:
    prefix = f"{ANALYTICS_CALLBACK_PREFIX}:"
    raw = (data or "")[len(prefix):] if (data or "").startswith(prefix) else ""
    return normalize_preset(raw)


def format_analytics(preset: str, overview: dict, sections: list[dict], insights: list[dict]) -> str:
    label = PRESET_LABELS.get(preset, preset)
    if not overview.get("total_tests"):
        return f"📊 **Analytics** ({label})\n\n{ANALYTICS_EMPTY_TEXT}"

    lines = [
        f"📊 **Analytics** ({label})",
        "",
        f"📝 Tests: {overview['total_tests']} ({overview['tests_this_week']} this week)",
        f"❓ Questions: {overview['total_questions']}",
        f"🎯 Accuracy: {overview['overall_accuracy']}% {_get_progress_bar(overview['overall_accuracy'])}",
        f"⏱ Time: {overview['total_time_minutes']} min",
        f"🔥 Streak: {overview['current_streak']} day(s)",
    ]
    if sections:
        lines += ["", "**Sections**"]
        for row in sections[:5]:
            lines.append(f"• {_md_escape(row['section_id'])}: {row['accuracy']}% ({row['questions_attempted']} q)")
    if insights:
        lines += ["", "**Insights**"]
        for insight in insights[:3]:
            lines.append(f"{insight['icon']} {_md_escape(insight['message'])}")
    return "\n".join(lines)


def _render(engine: LearningEngine, user_id: int, preset: str) -> str:
    return format_analytics(
        preset,
        engine.get_overview(user_id, preset),
        engine.get_section_performance(user_id, preset),
        engine.get_insights(user_id, preset),
    )


@router.message(Command("analytics"))
@router.message(F.text == BTN_ANALYTICS)
async def cmd_analytics(message: Message, engine: LearningEngine):
    user_id = require_user_id(message)
    await message.answer(
        _render(engine, user_id, DEFAULT_PRESET),
        reply_markup=get_analytics_presets_keyboard(DEFAULT_PRESET),
        parse_mode="Markdown",
    )


@router.callback_query(F.data.startswith(f"{ANALYTICS_CALLBACK_PREFIX}:"))
async def analytics_preset_callback(call: CallbackQuery, engine: LearningEngine):
    user_id = require_user_id(call)
    preset = parse_preset_callback(call.data)
    await call.answer()
    await edit_or_answer(
        call,
        _render(engine, user_id, preset),
        reply_markup=get_analytics_presets_keyboard(preset),
    )
