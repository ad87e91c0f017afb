import asyncio
import logging
import sys
from aiohttp import web
from aiogram import Bot, Dispatcher, types
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.webhook.aiohttp_server import SimpleRequestHandler, setup_application

from core.config import settings
from core.errors import TransientStoreError
from core.texts import GENERIC_ERROR_TEXT, STORE_BUSY_TEXT
from database import Database, create_schema
from services.learning_engine import LearningEngine
from utils.update_tracking import UpdateTrackingMiddleware

from handlers.common import router as common_router
from handlers.progress import router as progress_router
from handlers.revision import router as revision_router
from handlers.analytics import router as analytics_router
from handlers.fallback import router as fallback_router


async def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout
    )

    try:
        settings.validate()
    except ValueError as exc:
        logging.error(f"Invalid configuration: {exc}")
        return

    if not settings.bot_token:
        logging.error("BOT_TOKEN is not set!")
        return

    # Initialize Database
    db = Database.from_settings(settings)
    create_schema(db)
    if db.is_postgres:
        logging.info("DB backend: postgres")
    else:
        logging.info("DB path: %s", settings.db_path)

    engine = LearningEngine(db, settings)
    # Pick up follow-ups left behind by a previous run.
    recovered = await asyncio.to_thread(engine.followups.process_pending)
    if recovered:
        logging.info("Processed %s leftover follow-up tasks", recovered)

    is_webhook_mode = settings.delivery_mode == "webhook"

    # Bot & Dispatcher
    bot = Bot(token=settings.bot_token)
    dp = Dispatcher(storage=MemoryStorage())
    dp["engine"] = engine

    # Middlewares
    dp.update.outer_middleware(UpdateTrackingMiddleware())

    # Register Routers
    routers = [
        common_router, progress_router, revision_router,
        analytics_router, fallback_router
    ]
    for router in routers:
        dp.include_router(router)

    # Global Error Handler
    @dp.error()
    async def global_error_handler(event: types.ErrorEvent):
        logging.exception(f"Global error: {event.exception}")
        text = STORE_BUSY_TEXT if isinstance(event.exception, TransientStoreError) else GENERIC_ERROR_TEXT
        if event.update.message:
            await event.update.message.answer(text)
        elif event.update.callback_query:
            await event.update.callback_query.answer(text, show_alert=True)
        return True

    user_commands = [
        types.BotCommand(command="start", description="Main menu"),
        types.BotCommand(command="streak", description="Practice streak"),
        types.BotCommand(command="weak", description="Weak sections"),
        types.BotCommand(command="revision", description="Revision plan"),
        types.BotCommand(command="limits", description="Free usage left"),
        types.BotCommand(command="analytics", description="Progress analytics"),
    ]
    await bot.set_my_commands(
        user_commands,
        scope=types.BotCommandScopeDefault(),
    )

    if is_webhook_mode:
        if not settings.webhook_url:
            logging.error("WEBHOOK_URL (or WEBHOOK_BASE_URL + WEBHOOK_PATH) is required in webhook mode.")
            db.close()
            return

        await bot.set_webhook(
            url=settings.webhook_url,
            secret_token=(settings.webhook_secret_token or None),
            drop_pending_updates=False,
        )

        app = web.Application()
        webhook_requests_handler = SimpleRequestHandler(
            dispatcher=dp,
            bot=bot,
            secret_token=(settings.webhook_secret_token or None),
        )
        webhook_requests_handler.register(app, path=settings.webhook_path)
        setup_application(app, dp, bot=bot)

        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, host=settings.webhook_host, port=settings.webhook_port)
        await site.start()

        logging.info(
            "🚀 Prep bot started in webhook mode. listen=%s:%s path=%s webhook_url=%s",
            settings.webhook_host,
            settings.webhook_port,
            settings.webhook_path,
            settings.webhook_url,
        )
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await runner.cleanup()
            db.close()
    else:
        await bot.delete_webhook(drop_pending_updates=True)
        logging.info("🚀 Prep bot started in polling mode.")
        try:
            await dp.start_polling(bot)
        finally:
            db.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Bot stopped by user.")
