"""Wizard session middleware: one WizardController per chat.

The controller (and the lists fetched for its buttons) lives in process
memory next to aiogram's MemoryStorage.  Sessions idle for longer than
``idle_seconds`` are closed and dropped, which also cancels any geo check
still running for them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware, Bot
from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.base import StorageKey
from aiogram.types import CallbackQuery, Message, TelegramObject

from eudr_bot.models import Counterparty, CounterpartyKind, GeoPhase, GeoState, Product
from eudr_bot.wizard import GeoListener, WizardController

logger = logging.getLogger(__name__)

ControllerFactory = Callable[[GeoListener], WizardController]

_CLEANUP_EVERY = 300

GEO_OUTCOME_TEXT: dict[GeoPhase, str] = {
    GeoPhase.GEOMETRY_FAILED: "❌ <b>Geometry check failed</b> for {file}.\nThe declaration will be saved as a draft.",
    GeoPhase.SATELLITE_FAILED: "❌ <b>Satellite check failed</b> for {file}.\nThe declaration will be saved as a draft.",
    GeoPhase.COMPLIANT: "✅ <b>{file}</b> passed geometry and satellite checks.",
}


class WizardSession:
    """Per-chat state the handlers need besides the draft itself."""

    def __init__(self, wizard: WizardController) -> None:
        self.wizard = wizard
        self.counterparties: dict[int, Counterparty] = {}
        self.counterparty_kind: CounterpartyKind | None = None
        self.pending_doc_id: str | None = None
        # None means "next free row" for the item prompt
        self.pending_item_id: str | None = None
        self.product_results: dict[int, Product] = {}
        # Prompt states of everyone who used this chat's wizard
        self.fsm_contexts: dict[StorageKey, FSMContext] = {}
        self.touched = time.monotonic()


def _chat_id(event: TelegramObject) -> int | None:
    if isinstance(event, Message):
        return event.chat.id
    if isinstance(event, CallbackQuery) and event.message is not None:
        return event.message.chat.id
    return None


class WizardSessionMiddleware(BaseMiddleware):
    def __init__(self, factory: ControllerFactory, idle_seconds: int = 3600) -> None:
        super().__init__()
        self._factory = factory
        self._idle_seconds = idle_seconds
        self._sessions: Dict[int, WizardSession] = {}
        self._notify_tasks: set[asyncio.Task] = set()
        self._last_cleanup: float = 0.0

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        chat_id = _chat_id(event)
        if chat_id is None:
            return await handler(event, data)

        now = time.monotonic()
        session = self._sessions.get(chat_id)
        if session is None:
            session = self._open(chat_id, data["bot"])
        session.touched = now
        state = data.get("state")
        if isinstance(state, FSMContext):
            session.fsm_contexts[state.key] = state

        # The current chat was just touched, so the sweep never closes it
        if now - self._last_cleanup > _CLEANUP_EVERY:
            await self._cleanup(now)
            self._last_cleanup = now

        data["session"] = session
        data["wizard"] = session.wizard
        return await handler(event, data)

    def _open(self, chat_id: int, bot: Bot) -> WizardSession:
        def on_geo_change(state: GeoState) -> None:
            text = GEO_OUTCOME_TEXT.get(state.phase)
            if text is None:
                return
            name = state.file.name  # type: ignore[union-attr]
            task = asyncio.create_task(self._notify(bot, chat_id, text.format(file=name)))
            self._notify_tasks.add(task)
            task.add_done_callback(self._notify_tasks.discard)

        session = WizardSession(self._factory(on_geo_change))
        self._sessions[chat_id] = session
        logger.debug("Opened wizard session for chat %d", chat_id)
        return session

    async def _notify(self, bot: Bot, chat_id: int, text: str) -> None:
        try:
            await bot.send_message(chat_id, text)
        except Exception as exc:
            logger.warning("Geo outcome message to chat %d failed: %s", chat_id, exc)

    async def _cleanup(self, now: float) -> None:
        """Close sessions nobody touched for ``idle_seconds`` and drop their pending prompts."""
        stale = [
            cid for cid, s in self._sessions.items()
            if now - s.touched > self._idle_seconds
        ]
        for cid in stale:
            session = self._sessions.pop(cid)
            session.wizard.close()
            for ctx in session.fsm_contexts.values():
                await ctx.clear()
        if stale:
            logger.info("Dropped %d idle wizard session(s)", len(stale))
