"""Common handlers: /start, /help, /cancel, error handler, fallback.

The fallback_router answers callback queries nothing else matched (buttons
from a card whose session was dropped by a restart or the idle purge) and
stray messages outside any prompt.
"""

from __future__ import annotations

import logging

from aiogram import F, Router
from aiogram.filters import Command, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, ErrorEvent, Message

from eudr_bot.keyboards import welcome_kb
from eudr_bot.wizard import WizardController

logger = logging.getLogger(__name__)
router = Router()
fallback_router = Router()

# ── Visual constants ─────────────────────────────────────────
_DIV = "━" * 20

WELCOME_TEXT = (
    "🌳  <b>EUDR Declarations</b>\n"
    f"{_DIV}\n\n"
    "Create inbound and outbound due-diligence declarations\n"
    "for the EU Deforestation Regulation.\n\n"
    "✓ Line items with HSN codes and quantities\n"
    "✓ GeoJSON geometry and satellite checks\n"
    "✓ Evidence documents and EUDR reference numbers\n\n"
    f"{_DIV}\n"
    "👇 <b>Start a new declaration</b>"
)


# ═══════════════════════════════════════════════════════════════
# /start
# ═══════════════════════════════════════════════════════════════

@router.message(CommandStart())
async def cmd_start(message: Message, state: FSMContext) -> None:
    await state.clear()
    await message.answer(WELCOME_TEXT, reply_markup=welcome_kb())


@router.message(F.text.regexp(r"(?i)^(start|menu)$"))
async def text_start(message: Message, state: FSMContext) -> None:
    await cmd_start(message, state)


# ═══════════════════════════════════════════════════════════════
# /help
# ═══════════════════════════════════════════════════════════════

@router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    await message.answer(
        "🌳 <b>EUDR Declarations</b>\n\n"
        "▸ /new: new declaration\n"
        "▸ /cancel: discard the current declaration\n"
        "▸ /start: main menu\n"
        "▸ /help: this help\n\n"
        "Inbound declarations take 4 steps, outbound ones 5.\n"
        "Use ◀ Back and Next ▶ under each card to move between steps.",
    )


# ═══════════════════════════════════════════════════════════════
# /cancel
# ═══════════════════════════════════════════════════════════════

@router.message(Command("cancel"))
async def cmd_cancel(message: Message, state: FSMContext, wizard: WizardController) -> None:
    wizard.close()
    await state.clear()
    await message.answer("🗑 Declaration discarded.", reply_markup=welcome_kb())


# ═══════════════════════════════════════════════════════════════
# Global error handler
# ═══════════════════════════════════════════════════════════════

@router.error()
async def global_error_handler(event: ErrorEvent) -> None:
    logger.error(
        "Unhandled error in update %s: %s",
        event.update.update_id if event.update else "?",
        event.exception,
        exc_info=event.exception,
    )


# ═══════════════════════════════════════════════════════════════
# FALLBACK: unmatched buttons and stray messages
# ═══════════════════════════════════════════════════════════════

@fallback_router.callback_query()
async def expired_callback(cb: CallbackQuery, state: FSMContext) -> None:
    """Answer a button press no handler recognised and offer a fresh start."""
    logger.info(
        "Expired/unmatched callback from user %s: %s",
        cb.from_user.id, cb.data,
    )
    await cb.answer("⏳ Session expired, starting over", show_alert=False)
    try:
        await state.clear()
        await cb.message.answer(WELCOME_TEXT, reply_markup=welcome_kb())  # type: ignore[union-attr]
    except Exception as exc:
        logger.error("Recovery after expired callback failed: %s", exc)


@fallback_router.message()
async def fallback_message(message: Message) -> None:
    await message.answer(
        "I did not expect a message here.\n"
        "Use the buttons under the declaration card, or /new to start over.",
    )
