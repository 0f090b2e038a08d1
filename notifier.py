"""
Outcome consumer that keeps per-group status messages up to date.
"""

import asyncio
import html
import logging
from typing import Optional

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from errors import ErrorManager, error_manager
from events import OutcomeEventBus
from models import OutcomeEvent, ProcessFailure, ProcessSuccess, UploadStarted

logger = logging.getLogger(__name__)


class StatusNotifier:
    """Reads the event bus and edits (or sends) the matching group messages."""

    def __init__(self, bot: Bot, event_bus: OutcomeEventBus, errors: ErrorManager = error_manager):
        self.bot = bot
        self.event_bus = event_bus
        self.errors = errors
        self._consumer: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume(), name="status-notifier")

    async def stop(self) -> None:
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None

    async def _consume(self) -> None:
        async for event in self.event_bus:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Failed to render %s for group %s", type(event).__name__, event.group_id)

    async def handle_event(self, event: OutcomeEvent) -> None:
        if isinstance(event, UploadStarted):
            if event.status_handle is None:
                return
            await self._render(
                event.group_id,
                event.status_handle,
                "📤 Медиа скачано, отправляю в группу...",
                send_on_failure=False,
            )
            return

        if isinstance(event, ProcessSuccess):
            names = html.escape(", ".join(event.file_names)) or "-"
            text = f"✅ <b>Готово.</b>\n<code>{names}</code>"
        elif isinstance(event, ProcessFailure):
            text = self.errors.to_user_message(event.error_message)
        else:
            logger.warning("Unknown outcome event: %r", event)
            return
        await self._render(event.group_id, event.status_handle, text)

    async def _render(
        self,
        group_id: int,
        status_handle: Optional[int],
        text: str,
        send_on_failure: bool = True,
    ) -> None:
        if status_handle is not None:
            try:
                await self.bot.edit_message_text(text=text, chat_id=group_id, message_id=status_handle)
                return
            except TelegramAPIError as error:
                logger.debug("Status message %s in %s not editable: %s", status_handle, group_id, error)
                if not send_on_failure:
                    return
        await self.bot.send_message(chat_id=group_id, text=text)
