from aiogram import Router, F
from aiogram.filters import CommandStart, Command
from aiogram.types import CallbackQuery, Message

from core.errors import NotAuthenticated
from core.texts import MAIN_MENU_TEXT
from keyboards.builders import get_main_menu_keyboard
from utils.ui_utils import edit_or_answer

router = Router()


def require_user_id(event: Message | CallbackQuery) -> int:
    """Telegram identity of the caller. Channel posts and anonymous admins have none."""
    user = getattr(event, "from_user", None)
    if user is None or not getattr(user, "id", None):
        raise NotAuthenticated("update carries no sender")
    return int(user.id)


@router.message(CommandStart())
@router.message(Command("menu"))
async def cmd_start(message: Message):
    require_user_id(message)
    await message.answer(MAIN_MENU_TEXT, reply_markup=get_main_menu_keyboard(), parse_mode="Markdown")


@router.callback_query(F.data == "home")
async def home_callback(call: CallbackQuery):
    require_user_id(call)
    await call.answer()
    await edit_or_answer(call, MAIN_MENU_TEXT)
