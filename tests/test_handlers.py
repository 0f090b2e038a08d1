"""
Unit tests for group activation and link submission handlers.
"""

import asyncio
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from aiogram import Dispatcher

import handlers as handlers_module
from errors import StoreError
from handlers import BotHandlers
from models import SystemInfo
from store import InMemoryTaskStore

GROUP_ID = -1001


class _StubTaskManager:
    def __init__(self):
        self.submit = AsyncMock()


def _make_handlers():
    manager = _StubTaskManager()
    store = InMemoryTaskStore()
    handlers = BotHandlers(dp=Dispatcher(), task_manager=manager, store=store, admin_usernames=["@Admin"])
    return handlers, manager, store


def _message(text, username="someone", chat_type="supergroup", chat_id=GROUP_ID):
    status = SimpleNamespace(message_id=77, edit_text=AsyncMock())
    return SimpleNamespace(
        text=text,
        chat=SimpleNamespace(id=chat_id, type=chat_type),
        from_user=SimpleNamespace(username=username),
        answer=AsyncMock(return_value=status),
    )


def test_link_in_active_group_is_submitted():
    handlers, manager, store = _make_handlers()
    message = _message("look https://www.youtube.com/watch?v=dQw4w9WgXcQ&utm_source=share")

    async def scenario():
        await store.activate_group(GROUP_ID, "admin")
        await handlers.handle_url_message(message)

    asyncio.run(scenario())

    manager.submit.assert_awaited_once_with("https://www.youtube.com/watch?v=dQw4w9WgXcQ", GROUP_ID, 77)
    assert "YouTube" in message.answer.await_args.args[0]


def test_link_in_inactive_group_is_rejected():
    handlers, manager, _ = _make_handlers()
    message = _message("https://www.youtube.com/watch?v=dQw4w9WgXcQ")

    asyncio.run(handlers.handle_url_message(message))

    manager.submit.assert_not_awaited()
    assert "не активирована" in message.answer.await_args.args[0]


def test_unsupported_link_lists_supported_platforms():
    handlers, manager, store = _make_handlers()
    message = _message("https://unsupported-site.com/video/1")

    async def scenario():
        await store.activate_group(GROUP_ID, "admin")
        await handlers.handle_url_message(message)

    asyncio.run(scenario())

    manager.submit.assert_not_awaited()
    reply = message.answer.await_args.args[0]
    assert "не поддерживается" in reply
    assert "TikTok" in reply


def test_text_without_link_is_ignored():
    handlers, manager, _ = _make_handlers()
    message = _message("just chatting")

    asyncio.run(handlers.handle_url_message(message))

    manager.submit.assert_not_awaited()
    message.answer.assert_not_awaited()


def test_private_chat_link_is_redirected_to_group():
    handlers, manager, _ = _make_handlers()
    message = _message("https://www.youtube.com/watch?v=dQw4w9WgXcQ", chat_type="private", chat_id=5)

    asyncio.run(handlers.handle_url_message(message))

    manager.submit.assert_not_awaited()
    assert "группе" in message.answer.await_args.args[0]


def test_submission_failure_updates_status_message():
    handlers, manager, store = _make_handlers()
    manager.submit.side_effect = StoreError("database is locked")
    message = _message("https://www.youtube.com/watch?v=dQw4w9WgXcQ")

    async def scenario():
        await store.activate_group(GROUP_ID, "admin")
        await handlers.handle_url_message(message)

    asyncio.run(scenario())

    status = message.answer.return_value
    status.edit_text.assert_awaited_once()


def test_activate_requires_admin():
    handlers, _, store = _make_handlers()
    outsider = _message("/activate", username="someone")
    admin = _message("/activate", username="ADMIN")

    async def scenario():
        await handlers.handle_activate(outsider)
        denied = await store.get_group(GROUP_ID)
        await handlers.handle_activate(admin)
        return denied, await store.get_group(GROUP_ID)

    denied, group = asyncio.run(scenario())

    assert denied is None
    assert "Недостаточно прав" in outsider.answer.await_args.args[0]
    assert group.admin_username == "ADMIN"


def test_deactivate_removes_group():
    handlers, _, store = _make_handlers()
    message = _message("/deactivate", username="admin")

    async def scenario():
        await store.activate_group(GROUP_ID, "admin")
        await handlers.handle_deactivate(message)
        return await store.get_group(GROUP_ID)

    assert asyncio.run(scenario()) is None
    assert "отключена" in message.answer.await_args.args[0]


def test_groups_lists_activated_chats_for_admin():
    handlers, _, store = _make_handlers()
    message = _message("/groups", username="admin", chat_type="private", chat_id=5)
    chat = SimpleNamespace(title="Cats <3", username=None, type="supergroup")
    bot = SimpleNamespace(get_chat=AsyncMock(return_value=chat))

    async def scenario():
        await store.activate_group(GROUP_ID, "admin")
        await handlers.handle_groups(message, bot=bot)

    asyncio.run(scenario())

    bot.get_chat.assert_awaited_once_with(GROUP_ID)
    reply = message.answer.await_args.args[0]
    assert str(GROUP_ID) in reply
    assert "Cats &lt;3" in reply
    assert "supergroup" in reply
    assert "@admin" in reply


def test_groups_marks_chats_that_could_not_be_fetched():
    handlers, _, store = _make_handlers()
    message = _message("/groups", username="admin", chat_type="private", chat_id=5)
    chats = {GROUP_ID: SimpleNamespace(title="Cats", username=None, type="supergroup")}

    async def get_chat(chat_id):
        if chat_id not in chats:
            raise RuntimeError("chat not found")
        return chats[chat_id]

    bot = SimpleNamespace(get_chat=AsyncMock(side_effect=get_chat))

    async def scenario():
        await store.activate_group(GROUP_ID, "admin")
        await store.activate_group(-1002, "admin")
        await handlers.handle_groups(message, bot=bot)

    asyncio.run(scenario())

    assert bot.get_chat.await_count == 2
    reply = message.answer.await_args.args[0]
    assert "Группы (2)" in reply
    assert "Cats" in reply
    assert "-1002" in reply
    assert "нет данных" in reply


def test_groups_denied_for_non_admin():
    handlers, _, _ = _make_handlers()
    message = _message("/groups", username="someone", chat_type="private", chat_id=5)
    bot = SimpleNamespace(get_chat=AsyncMock())

    asyncio.run(handlers.handle_groups(message, bot=bot))

    bot.get_chat.assert_not_awaited()
    assert "Недостаточно прав" in message.answer.await_args.args[0]


def test_delete_removes_group_from_private_chat():
    handlers, _, store = _make_handlers()
    message = _message(f"/delete {GROUP_ID}", username="admin", chat_type="private", chat_id=5)

    async def scenario():
        await store.activate_group(GROUP_ID, "admin")
        await handlers.handle_delete_group(message)
        return await store.get_group(GROUP_ID)

    assert asyncio.run(scenario()) is None
    assert "удалена" in message.answer.await_args.args[0]


def test_delete_reports_unknown_group():
    handlers, _, _ = _make_handlers()
    message = _message("/delete -1009", username="admin", chat_type="private", chat_id=5)

    asyncio.run(handlers.handle_delete_group(message))

    assert "не найдена" in message.answer.await_args.args[0]


def test_delete_is_rejected_in_group_chat():
    handlers, _, store = _make_handlers()
    message = _message(f"/delete {GROUP_ID}", username="admin")

    async def scenario():
        await store.activate_group(GROUP_ID, "admin")
        await handlers.handle_delete_group(message)
        return await store.get_group(GROUP_ID)

    assert asyncio.run(scenario()) is not None
    assert "личных сообщениях" in message.answer.await_args.args[0]


def test_delete_requires_admin():
    handlers, _, store = _make_handlers()
    message = _message(f"/delete {GROUP_ID}", username="someone", chat_type="private", chat_id=5)

    async def scenario():
        await store.activate_group(GROUP_ID, "admin")
        await handlers.handle_delete_group(message)
        return await store.get_group(GROUP_ID)

    assert asyncio.run(scenario()) is not None
    assert "Недостаточно прав" in message.answer.await_args.args[0]


def test_delete_without_valid_chat_id_shows_usage():
    handlers, _, _ = _make_handlers()
    for text in ("/delete", "/delete abc"):
        message = _message(text, username="admin", chat_type="private", chat_id=5)

        asyncio.run(handlers.handle_delete_group(message))

        assert "Использование" in message.answer.await_args.args[0]


def test_server_load_reports_snapshot_to_admin(monkeypatch):
    handlers, _, _ = _make_handlers()
    message = _message("/serverload", username="admin", chat_type="private", chat_id=5)
    snapshot = SystemInfo(
        collected_at=datetime(2024, 5, 1, 12, 0, 0),
        hostname="relay-host",
        cpu_percent=37.5,
        memory_total=8 * 1024**3,
        memory_used=2 * 1024**3,
        memory_available=6 * 1024**3,
        memory_percent=25.0,
    )
    monkeypatch.setattr(handlers_module, "collect_system_info", lambda: snapshot)

    asyncio.run(handlers.handle_server_load(message))

    reply = message.answer.await_args.args[0]
    assert "Нагрузка сервера" in reply
    assert "relay-host" in reply
    assert "37.5%" in reply
    assert "8.0 GB" in reply


def test_server_load_denied_for_non_admin(monkeypatch):
    handlers, _, _ = _make_handlers()
    message = _message("/serverload", username="someone", chat_type="private", chat_id=5)
    collect = MagicMock()
    monkeypatch.setattr(handlers_module, "collect_system_info", collect)

    asyncio.run(handlers.handle_server_load(message))

    collect.assert_not_called()
    assert "Недостаточно прав" in message.answer.await_args.args[0]
