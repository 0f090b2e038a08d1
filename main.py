"""
Entry point for the group media relay bot.
"""

import asyncio
import logging
import os
import sys
from typing import Optional

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.fsm.storage.memory import MemoryStorage
from aiohttp import web
from dotenv import load_dotenv

load_dotenv()

from config import DATABASE_URL, EVENT_BUS_SIZE, LOG_FORMAT, LOG_LEVEL, require_bot_token  # noqa: E402
from errors import setup_logging  # noqa: E402
from events import OutcomeEventBus  # noqa: E402
from fetcher import YtDlpFetcher  # noqa: E402
from handlers import BotHandlers  # noqa: E402
from managers import TaskManager  # noqa: E402
from notifier import StatusNotifier  # noqa: E402
from publisher import TelegramPublisher  # noqa: E402
from store import SqlTaskStore  # noqa: E402

shutdown_event = asyncio.Event()


async def start_health_server(task_manager: Optional[TaskManager] = None) -> None:
    """Run a tiny HTTP server reporting liveness and pipeline load."""
    app = web.Application()

    async def health(request: web.Request) -> web.Response:
        payload = {"status": "ok"}
        if task_manager is not None:
            payload.update(
                {
                    "pipeline": task_manager.state.value,
                    "queued": task_manager.queue_size(),
                    "active": task_manager.active_count(),
                }
            )
        return web.json_response(payload)

    app.router.add_get("/", health)
    app.router.add_get("/health", health)

    runner = web.AppRunner(app)
    await runner.setup()

    host = "0.0.0.0"
    port = int(os.getenv("PORT", "10000"))
    site = web.TCPSite(runner, host=host, port=port)
    await site.start()
    logging.getLogger(__name__).info("Health server started on %s:%s", host, port)

    try:
        await shutdown_event.wait()
    finally:
        await runner.cleanup()


async def main() -> None:
    logger = setup_logging(level=LOG_LEVEL, format_string=LOG_FORMAT)
    logger.info("Starting media relay bot")

    bot = None
    store = None
    task_manager = None
    notifier = None
    health_server_task = None
    try:
        bot = Bot(token=require_bot_token(), default=DefaultBotProperties(parse_mode="HTML"))
        dispatcher = Dispatcher(storage=MemoryStorage())

        store = SqlTaskStore(DATABASE_URL)
        await store.init()

        event_bus = OutcomeEventBus(EVENT_BUS_SIZE)
        task_manager = TaskManager(
            store=store,
            fetcher=YtDlpFetcher(),
            publisher=TelegramPublisher(bot),
            event_bus=event_bus,
        )
        notifier = StatusNotifier(bot, event_bus)
        BotHandlers(dp=dispatcher, task_manager=task_manager, store=store)

        await notifier.start()
        await task_manager.start()

        health_server_task = asyncio.create_task(start_health_server(task_manager))
        await dispatcher.start_polling(bot, allowed_updates=["message"])
    except Exception:
        logging.getLogger(__name__).exception("Fatal startup/runtime error")
        sys.exit(1)
    finally:
        shutdown_event.set()
        if health_server_task is not None:
            try:
                await health_server_task
            except Exception:
                logging.getLogger(__name__).debug("Health server shutdown failed", exc_info=True)
        if task_manager is not None:
            await task_manager.stop()
        if notifier is not None:
            await notifier.stop()
        if store is not None:
            await store.close()
        if bot is not None:
            await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
