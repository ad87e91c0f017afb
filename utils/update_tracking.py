import logging

from aiogram import BaseMiddleware

from core.errors import NotAuthenticated
from core.texts import SIGN_IN_TEXT
from utils.ops_logging import log_structured


class UpdateTrackingMiddleware(BaseMiddleware):
    """
    Outer update middleware.

    Kicks off a drain of the user's leftover follow-up tasks, answers
    identity-less updates with a sign-in hint, and logs every unhandled
    handler error before it reaches the dispatcher's error handler.
    """

    async def __call__(self, handler, event, data):
        user_id = _extract_user_id(event, data)
        engine = data.get("engine")
        if engine is not None and user_id:
            engine.trigger_followups(user_id)

        try:
            return await handler(event, data)
        except NotAuthenticated:
            await _reply(event, SIGN_IN_TEXT)
            return None
        except Exception as exc:
            log_structured(
                "update_failed",
                where_ctx=type(event).__name__,
                user_id=user_id,
                update_id=_extract_update_id(event, data),
                error_type=type(exc).__name__,
                message_short=str(exc)[:300],
            )
            logging.exception("Unhandled update exception", exc_info=exc)
            raise


def _extract_update_id(event, data):
    update = data.get("event_update") or event
    value = getattr(update, "update_id", None)
    return int(value) if value else None


def _extract_user_id(event, data):
    user = data.get("event_from_user")
    if user is not None and getattr(user, "id", None):
        return int(user.id)
    for attr in ("message", "callback_query"):
        inner = getattr(event, attr, None)
        from_user = getattr(inner, "from_user", None) if inner is not None else None
        if from_user is not None and getattr(from_user, "id", None):
            return int(from_user.id)
    return None


async def _reply(event, text: str):
    message = getattr(event, "message", None)
    callback = getattr(event, "callback_query", None)
    if callback is not None:
        await callback.answer(text, show_alert=True)
    elif message is not None:
        await message.answer(text)
