"""
Uploading fetched media to Telegram groups.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Sequence

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import FSInputFile, InputMediaPhoto

from errors import PublishError
from models import MediaFile, MediaKind

logger = logging.getLogger(__name__)

MEDIA_GROUP_LIMIT = 10  # Telegram album limit


class MediaPublisher(ABC):
    @abstractmethod
    async def publish(self, files: Sequence[MediaFile], group_id: int) -> None:
        """Upload files to one group. Raises PublishError on failure."""


class TelegramPublisher(MediaPublisher):
    """Sends videos and audio one by one and images as albums."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def publish(self, files: Sequence[MediaFile], group_id: int) -> None:
        if not files:
            return

        videos = [item for item in files if item.kind == MediaKind.VIDEO]
        images = [item for item in files if item.kind == MediaKind.IMAGE]
        audios = [item for item in files if item.kind == MediaKind.AUDIO]

        try:
            for video in videos:
                await self.bot.send_video(
                    chat_id=group_id,
                    video=FSInputFile(video.file_path),
                    supports_streaming=True,
                )

            for chunk in _chunks(images, MEDIA_GROUP_LIMIT):
                if len(chunk) == 1:
                    await self.bot.send_photo(chat_id=group_id, photo=FSInputFile(chunk[0].file_path))
                else:
                    await self.bot.send_media_group(
                        chat_id=group_id,
                        media=[InputMediaPhoto(media=FSInputFile(item.file_path)) for item in chunk],
                    )

            for audio in audios:
                await self.bot.send_audio(chat_id=group_id, audio=FSInputFile(audio.file_path))
        except (TelegramAPIError, OSError) as error:
            raise PublishError(group_id, str(error)) from error

        logger.debug(
            "Published %s videos, %s images, %s audio files to group %s",
            len(videos),
            len(images),
            len(audios),
            group_id,
        )


def _chunks(items: List[MediaFile], size: int) -> List[List[MediaFile]]:
    return [items[index:index + size] for index in range(0, len(items), size)]
