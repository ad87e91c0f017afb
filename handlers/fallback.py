from aiogram import Router
from aiogram.types import CallbackQuery, Message

from core.texts import FALLBACK_TEXT, STALE_BUTTON_TEXT
from keyboards.builders import get_main_menu_keyboard

router = Router()


@router.message()
async def unknown_text_fallback(message: Message):
    # Guide the user back to supported commands.
    await message.answer(FALLBACK_TEXT, reply_markup=get_main_menu_keyboard())


@router.callback_query()
async def unknown_callback_fallback(call: CallbackQuery):
    # Prevent stale inline buttons from confusing users.
    await call.answer(STALE_BUTTON_TEXT, show_alert=True)
