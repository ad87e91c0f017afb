import re

from aiogram.exceptions import TelegramBadRequest
from aiogram.types import CallbackQuery, Message

_MD_ESC_RE = re.compile(r"([_*`\[])")


def _md_escape(value):
    """Escapes the characters legacy Markdown treats as markup."""
    if value is None:
        return ""
    return _MD_ESC_RE.sub(r"\\\1", str(value))


def _get_progress_bar(percentage: float, width: int = 10) -> str:
    pct = max(0.0, min(100.0, float(percentage or 0)))
    filled = int(round(pct / 100 * width))
    return "▰" * filled + "▱" * (width - filled)


async def edit_or_answer(call: CallbackQuery, text: str, reply_markup=None, parse_mode: str | None = "Markdown"):
    """Edits the message the button belongs to, or sends a new one when it cannot be edited."""
    message = call.message if isinstance(call.message, Message) else None
    if message is None:
        return None
    try:
        return await message.edit_text(text, reply_markup=reply_markup, parse_mode=parse_mode)
    except TelegramBadRequest as exc:
        if "message is not modified" in str(exc):
            return message
        return await message.answer(text, reply_markup=reply_markup, parse_mode=parse_mode)
