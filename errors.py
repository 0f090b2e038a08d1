"""
Error taxonomy, formatting and logging utilities.
"""

import html
import logging


def setup_logging(
    level: str = "INFO",
    format_string: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
) -> logging.Logger:
    """Configure root logging once and return module logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)
    return logging.getLogger(__name__)


class PipelineError(Exception):
    """Base class for task pipeline errors."""


class ValidationError(PipelineError):
    """Malformed or unsupported link. Raised before any side effect."""


class FetchError(PipelineError):
    """The media tool failed or produced nothing usable."""


class StoreError(PipelineError):
    """A task store operation failed."""


class PublishError(PipelineError):
    """Uploading to one group failed. Never fatal to the task."""

    def __init__(self, group_id: int, message: str):
        super().__init__(message)
        self.group_id = group_id


class ErrorManager:
    """Convert failure reasons to compact user-facing messages."""

    def to_user_message(self, reason: str) -> str:
        msg = (reason or "").lower()

        if msg.startswith("invalid url") or "unsupported" in msg:
            return (
                "❌ <b>Ссылка не поддерживается.</b>\n"
                "Отправьте прямую ссылку на пост или видео."
            )

        if "drm protected" in msg:
            return (
                "🔒 <b>Видео защищено DRM.</b>\n"
                "Такой контент нельзя скачать через yt-dlp."
            )

        if "too large" in msg or "exceeds limit" in msg:
            return (
                "❌ <b>Файл слишком большой для Telegram.</b>\n"
                "Выберите другой ролик."
            )

        if "timeout" in msg or "timed out" in msg:
            return (
                "⏱️ <b>Превышено время ожидания.</b>\n"
                "Попробуйте снова чуть позже."
            )

        if "video not available" in msg or "private" in msg:
            return (
                "❌ <b>Видео недоступно.</b>\n"
                "Возможно ролик удалён, приватный или ограничен по региону/возрасту."
            )

        safe_details = html.escape(reason or "")[:350]
        return (
            "⚠️ <b>Не удалось обработать ссылку.</b>\n"
            f"<code>{safe_details}</code>"
        )


error_manager = ErrorManager()
