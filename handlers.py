"""
Telegram handlers: group activation and link submission.
"""

import asyncio
import html
import logging
from typing import Iterable, Optional

from aiogram import Bot, Dispatcher
from aiogram.filters import Command
from aiogram.types import Message

from config import ADMIN_USERNAMES
from errors import StoreError, ValidationError
from managers import TaskManager
from store import TaskStore
from system import collect_system_info, format_system_info
from utils import (
    describe_supported_links,
    find_first_url,
    sanitize_user_input,
    strip_tracking_params,
    validate_link,
    validate_url_input,
)

logger = logging.getLogger(__name__)

GROUP_CHAT_TYPES = {"group", "supergroup"}


class BotHandlers:
    """Registers bot commands and the link submission flow."""

    def __init__(
        self,
        dp: Dispatcher,
        task_manager: TaskManager,
        store: TaskStore,
        admin_usernames: Iterable[str] = ADMIN_USERNAMES,
    ):
        self.dp = dp
        self.task_manager = task_manager
        self.store = store
        self.admin_usernames = {name.lstrip("@").lower() for name in admin_usernames}
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.dp.message.register(self.handle_start, Command(commands=["start"]))
        self.dp.message.register(self.handle_help, Command(commands=["help"]))
        self.dp.message.register(self.handle_activate, Command(commands=["activate", "a"]))
        self.dp.message.register(self.handle_deactivate, Command(commands=["deactivate", "d"]))
        self.dp.message.register(self.handle_groups, Command(commands=["groups"]))
        self.dp.message.register(self.handle_delete_group, Command(commands=["delete"]))
        self.dp.message.register(self.handle_server_load, Command(commands=["serverload"]))
        self.dp.message.register(self.handle_url_message)

    async def handle_start(self, message: Message) -> None:
        username = message.from_user.username if message.from_user else None
        text = (
            f"👋 Привет, {html.escape(username or 'друг')}!\n\n"
            "Я скачиваю медиа по ссылкам из групп и отправляю результат в каждую группу, "
            "которая его запросила.\n\n"
            "Поддерживаются:\n"
            f"{html.escape(describe_supported_links())}\n\n"
            "Добавьте меня в группу и попросите администратора выполнить /activate."
        )
        await message.answer(text)

    async def handle_help(self, message: Message) -> None:
        text = (
            "📖 <b>Как пользоваться</b>\n\n"
            "1. Администратор активирует группу командой /activate.\n"
            "2. Отправьте в группу ссылку на пост или видео.\n"
            "3. Дождитесь, пока статус-сообщение обновится.\n\n"
            "/deactivate: отключить группу.\n"
            "Админ: /groups (список групп), /delete &lt;chat_id&gt; (удалить группу в личке), "
            "/serverload (нагрузка сервера)."
        )
        await message.answer(text)

    async def handle_activate(self, message: Message) -> None:
        if not self._is_group(message):
            await message.answer("Команда работает только в группах.")
            return
        if not self._is_admin(message):
            await message.answer("❌ Недостаточно прав.")
            return

        try:
            await self.store.activate_group(message.chat.id, self._username(message) or "")
        except StoreError:
            logger.exception("Group activation failed for %s", message.chat.id)
            await message.answer("⚠️ Не удалось активировать группу.")
            return
        await message.answer("✅ Группа активирована. Отправляйте ссылки.")

    async def handle_deactivate(self, message: Message) -> None:
        if not self._is_group(message):
            await message.answer("Команда работает только в группах.")
            return
        if not self._is_admin(message):
            await message.answer("❌ Недостаточно прав.")
            return

        try:
            removed = await self.store.deactivate_group(message.chat.id)
        except StoreError:
            logger.exception("Group deactivation failed for %s", message.chat.id)
            await message.answer("⚠️ Не удалось отключить группу.")
            return
        await message.answer("✅ Группа отключена." if removed else "Группа не была активирована.")

    async def handle_groups(self, message: Message, bot: Bot) -> None:
        if not self._is_admin(message):
            await message.answer("❌ Недостаточно прав.")
            return

        try:
            groups = await self.store.list_groups()
        except StoreError:
            logger.exception("Listing groups failed")
            await message.answer("⚠️ Не удалось получить список групп.")
            return
        if not groups:
            await message.answer("Активированных групп нет.")
            return

        chats = await asyncio.gather(
            *(bot.get_chat(group.chat_id) for group in groups),
            return_exceptions=True,
        )
        entries = []
        for index, (group, chat) in enumerate(zip(groups, chats), start=1):
            admin = html.escape(group.admin_username)
            if isinstance(chat, Exception):
                logger.debug("Chat info unavailable for %s: %s", group.chat_id, chat)
                entries.append(f"{index}. <code>{group.chat_id}</code> (@{admin}): ⚠️ нет данных")
                continue
            title = html.escape(chat.title or chat.username or str(group.chat_id))
            entries.append(
                f"{index}. <b>{title}</b>\n"
                f"   ID: <code>{group.chat_id}</code>\n"
                f"   Тип: {html.escape(str(chat.type))}\n"
                f"   Админ: @{admin}"
            )
        await message.answer(f"📋 <b>Группы ({len(groups)})</b>\n\n" + "\n\n".join(entries))

    async def handle_delete_group(self, message: Message) -> None:
        if message.chat.type != "private":
            await message.answer("Команда работает только в личных сообщениях.")
            return
        if not self._is_admin(message):
            await message.answer("❌ Недостаточно прав.")
            return

        parts = (message.text or "").split(maxsplit=1)
        try:
            chat_id = int(parts[1].strip())
        except (IndexError, ValueError):
            await message.answer("Использование: /delete &lt;chat_id&gt;")
            return

        try:
            removed = await self.store.deactivate_group(chat_id)
        except StoreError:
            logger.exception("Group deletion failed for %s", chat_id)
            await message.answer(f"❌ Не удалось удалить группу {chat_id}.")
            return
        if removed:
            logger.info("Group %s deleted by %s", chat_id, self._username(message))
            await message.answer(f"✅ Группа {chat_id} удалена.")
        else:
            await message.answer(f"⚠️ Группа {chat_id} не найдена.")

    async def handle_server_load(self, message: Message) -> None:
        if not self._is_admin(message):
            await message.answer("❌ Недостаточно прав.")
            return

        loop = asyncio.get_running_loop()
        info = await loop.run_in_executor(None, collect_system_info)
        await message.answer(format_system_info(info))

    async def handle_url_message(self, message: Message) -> None:
        text = sanitize_user_input(message.text or "")
        if not text or text.startswith("/"):
            return

        url = find_first_url(text)
        if not url:
            return

        if not self._is_group(message):
            await message.answer("Отправляйте ссылки в активированной группе.")
            return

        group = await self.store.get_group(message.chat.id)
        if group is None:
            await message.answer("❌ Группа не активирована. Администратор должен выполнить /activate.")
            return

        valid, error = validate_url_input(url)
        if not valid:
            await message.answer(f"❌ {error}")
            return

        url = strip_tracking_params(url)
        try:
            platform = validate_link(url)
        except ValidationError:
            await message.answer(
                "❌ Ссылка не поддерживается. Поддерживаются:\n"
                f"{html.escape(describe_supported_links())}"
            )
            return

        status_msg = await message.answer(f"⏳ {html.escape(platform)}: ссылка добавлена в очередь...")
        try:
            await self.task_manager.submit(url, message.chat.id, status_msg.message_id)
        except StoreError:
            logger.exception("Submission failed for %s in %s", url, message.chat.id)
            try:
                await status_msg.edit_text("⚠️ Не удалось поставить задачу в очередь.")
            except Exception:
                logger.debug("Status message edit failed", exc_info=True)

    def _is_admin(self, message: Message) -> bool:
        username = self._username(message)
        return bool(username) and username.lower() in self.admin_usernames

    @staticmethod
    def _username(message: Message) -> Optional[str]:
        return message.from_user.username if message.from_user else None

    @staticmethod
    def _is_group(message: Message) -> bool:
        return message.chat.type in GROUP_CHAT_TYPES
