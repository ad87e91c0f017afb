import logging

from aiogram import Router, F
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from core.errors import NotFound
from core.texts import (
    BTN_REVISION,
    NO_REVISIONS_TEXT,
    NOT_FOUND_TEXT,
    REVISION_CLOSED_TEXT,
    REVISION_DONE_TEXT,
    REVISION_SKIPPED_TEXT,
)
from handlers.common import require_user_id
from keyboards.builders import REVISION_CALLBACK_PREFIX, get_revision_keyboard
from services.learning_engine import LearningEngine
from services.revision_service import RevisionEntry
from utils.ui_utils import _md_escape, edit_or_answer

router = Router()
REVISION_ACTIONS = ("complete", "skip")


def parse_revision_callback(data: str | None) -> tuple[str, int] | None:
    """'rev:complete:12' -> ('complete', 12). Anything malformed -> None."""
    parts = (data or "").split(":")
    if len(parts) != 3 or parts[0] != REVISION_CALLBACK_PREFIX or parts[1] not in REVISION_ACTIONS:
        return None
    try:
        entry_id = int(parts[2])
    except ValueError:
        return None
    if entry_id <= 0:
        return None
    return parts[1], entry_id


def format_schedule(entries: list[RevisionEntry]) -> str:
    if not entries:
        return NO_REVISIONS_TEXT
    lines = ["🗓 **Revision plan**", ""]
    for entry in entries:
        sections = ", ".join(
            f"{_md_escape(s)} (step {entry.section_intervals.get(s, 0) + 1})" for s in entry.section_ids
        )
        lines.append(f"• {entry.scheduled_date.strftime('%a %b %d')}: {sections}")
    return "\n".join(lines)


async def _send_schedule(message: Message, engine: LearningEngine, user_id: int):
    entries = engine.get_revision_schedule(user_id)
    await message.answer(
        format_schedule(entries),
        reply_markup=get_revision_keyboard(entries) if entries else None,
        parse_mode="Markdown",
    )


@router.message(Command("revision"))
@router.message(F.text == BTN_REVISION)
async def cmd_revision(message: Message, engine: LearningEngine):
    user_id = require_user_id(message)
    await _send_schedule(message, engine, user_id)


@router.callback_query(F.data.startswith(f"{REVISION_CALLBACK_PREFIX}:"))
async def revision_action_callback(call: CallbackQuery, engine: LearningEngine):
    user_id = require_user_id(call)
    parsed = parse_revision_callback(call.data)
    if parsed is None:
        await call.answer(NOT_FOUND_TEXT, show_alert=True)
        return
    action, entry_id = parsed

    try:
        if action == "complete":
            entry = engine.complete_revision(user_id, entry_id)
        else:
            entry = engine.skip_revision(user_id, entry_id)
    except NotFound:
        logging.info("Revision %s not found for user %s", entry_id, user_id)
        await call.answer(NOT_FOUND_TEXT, show_alert=True)
        return

    expected = "completed" if action == "complete" else "skipped"
    if entry.status != expected:
        await call.answer(REVISION_CLOSED_TEXT, show_alert=True)
    else:
        await call.answer(REVISION_DONE_TEXT if action == "complete" else REVISION_SKIPPED_TEXT)

    entries = engine.get_revision_schedule(user_id)
    await edit_or_answer(
        call,
        format_schedule(entries),
        reply_markup=get_revision_keyboard(entries) if entries else None,
    )
