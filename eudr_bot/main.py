"""EUDR declaration bot, entry point.

Polling restarts with backoff when it crashes; wizard sessions live in
memory and are dropped on restart.
"""

from __future__ import annotations

import asyncio
import logging
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand

from eudr_bot.api import DeclarationsApi
from eudr_bot.config import settings
from eudr_bot.handlers import common, declaration
from eudr_bot.handlers.common import fallback_router
from eudr_bot.middleware import WizardSessionMiddleware
from eudr_bot.wizard import GeoListener, WizardController

MAX_RETRIES = 100


def _setup_logging() -> None:
    fmt = logging.Formatter(
        "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(fmt)
    logging.root.handlers = [handler]
    logging.root.setLevel(settings.LOG_LEVEL)


def _new_wizard(on_geo_change: GeoListener) -> WizardController:
    return WizardController(
        settings.geo_checker(),
        geo_limits=settings.geo_limits,
        evidence_limits=settings.evidence_limits,
        phase_timeout=settings.GEO_CHECK_TIMEOUT_SECONDS,
        reference_countries=settings.reference_countries,
        on_geo_change=on_geo_change,
    )


# ═══════════════════════════════════════════════════════════════
# MAIN
# ═══════════════════════════════════════════════════════════════

async def main() -> None:
    _setup_logging()
    logger = logging.getLogger("bot")
    logger.info("Starting EUDR declaration bot (geo policy: %s)", settings.GEO_POLICY)

    # Fail fast on a misconfigured policy instead of on the first upload
    settings.geo_checker()

    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    await bot.set_my_commands([
        BotCommand(command="new", description="📝 New declaration"),
        BotCommand(command="cancel", description="🗑 Discard declaration"),
        BotCommand(command="help", description="ℹ️ Help"),
    ])

    api = DeclarationsApi(settings.API_BASE_URL, settings.API_TOKEN, settings.API_TIMEOUT_SECONDS)
    dp = Dispatcher(storage=MemoryStorage(), api=api)

    sessions = WizardSessionMiddleware(_new_wizard, settings.SESSION_IDLE_SECONDS)
    dp.message.middleware(sessions)
    dp.callback_query.middleware(sessions)

    # Router order matters: commands first, then the wizard, fallback last.
    dp.include_router(common.router)
    dp.include_router(declaration.router)
    dp.include_router(fallback_router)

    # ── Polling with auto-restart ─────────────────────────────
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            await bot.delete_webhook(drop_pending_updates=False)
            logger.info("Polling started (attempt #%d)", attempt)
            await dp.start_polling(bot, polling_timeout=30, handle_signals=False)
            logger.info("Polling stopped cleanly")
            break

        except Exception as exc:
            logger.error(
                "Polling crashed (attempt #%d/%d): %s",
                attempt, MAX_RETRIES, exc,
                exc_info=True,
            )
            if attempt < MAX_RETRIES:
                wait = min(attempt * 5, 60)
                logger.info("Restarting polling in %ds…", wait)
                await asyncio.sleep(wait)
            else:
                logger.critical("Max retries (%d) reached, exiting", MAX_RETRIES)

    await bot.session.close()
    logger.info("Bot stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
