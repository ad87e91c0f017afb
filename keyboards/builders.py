from aiogram.types import InlineKeyboardButton, KeyboardButton
from aiogram.utils.keyboard import InlineKeyboardBuilder, ReplyKeyboardBuilder

from core.texts import (
    BTN_ANALYTICS,
    BTN_HOME,
    BTN_LIMITS,
    BTN_REVISION,
    BTN_STREAK,
    BTN_WEAK,
    PRESET_LABELS,
)

REVISION_CALLBACK_PREFIX = "rev"
ANALYTICS_CALLBACK_PREFIX = "analytics"


def get_main_menu_keyboard():
    builder = ReplyKeyboardBuilder()
    builder.row(KeyboardButton(text=BTN_STREAK), KeyboardButton(text=BTN_WEAK))
    builder.row(KeyboardButton(text=BTN_REVISION), KeyboardButton(text=BTN_LIMITS))
    builder.row(KeyboardButton(text=BTN_ANALYTICS))
    return builder.as_markup(resize_keyboard=True)


def get_revision_keyboard(entries):
    """One done/skip row per pending entry."""
    builder = InlineKeyboardBuilder()
    for entry in entries:
        if entry.status != "pending":
            continue
        label = entry.scheduled_date.strftime("%b %d")
        builder.row(
            InlineKeyboardButton(
                text=f"✅ {label}",
                callback_data=f"{REVISION_CALLBACK_PREFIX}:complete:{entry.id}",
            ),
            InlineKeyboardButton(
                text=f"⏭ {label}",
                callback_data=f"{REVISION_CALLBACK_PREFIX}:skip:{entry.id}",
            ),
        )
    builder.row(InlineKeyboardButton(text=BTN_HOME, callback_data="home"))
    return builder.as_markup()


def get_analytics_presets_keyboard(active: str | None = None):
    builder = InlineKeyboardBuilder()
    for preset, label in PRESET_LABELS.items():
        text = f"• {label} •" if preset == active else label
        builder.button(text=text, callback_data=f"{ANALYTICS_CALLBACK_PREFIX}:{preset}")
    builder.adjust(4)
    builder.row(InlineKeyboardButton(text=BTN_HOME, callback_data="home"))
    return builder.as_markup()
