"""
Configuration for the group media relay bot.
"""

import os
import re
from typing import Any, Dict, List, Tuple

from models import LinkPattern


def require_bot_token() -> str:
    """Return bot token or raise if it is not configured."""
    token = os.getenv("BOT_TOKEN", "").strip()
    if not token:
        raise RuntimeError("Установите переменную окружения BOT_TOKEN")
    return token


def positive_int(name: str, default: int) -> int:
    """Read a positive integer option from the environment."""
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def _split_csv(raw: str) -> Tuple[str, ...]:
    return tuple(item.strip().lstrip("@").lower() for item in raw.split(",") if item.strip())


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

ADMIN_USERNAMES: Tuple[str, ...] = _split_csv(os.getenv("ADMIN_USERNAMES", ""))

WORKER_COUNT: int = positive_int("WORKER_COUNT", 3)
TASK_POLLING_INTERVAL: int = positive_int("TASK_POLLING_INTERVAL", 5)
WORK_QUEUE_SIZE: int = positive_int("WORK_QUEUE_SIZE", WORKER_COUNT)
EVENT_BUS_SIZE: int = positive_int("EVENT_BUS_SIZE", 100)
TASK_TIMEOUT_SECONDS: int = positive_int("TASK_TIMEOUT_SECONDS", 600)

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///database.db")
MEDIA_OUTPUT_DIR: str = os.getenv("MEDIA_OUTPUT_DIR", os.path.join("output", "media", "shared"))
MAX_FILE_SIZE_MB: int = positive_int("MAX_FILE_SIZE_MB", 2048)  # Telegram hard limit

YTDLP_COOKIES_FILE: str = os.getenv("YTDLP_COOKIES_FILE", "").strip()
YTDLP_COOKIES_FROM_BROWSER: str = os.getenv("YTDLP_COOKIES_FROM_BROWSER", "").strip()
YTDLP_FORCE_IPV4: bool = os.getenv("YTDLP_FORCE_IPV4", "0").strip().lower() in {"1", "true", "yes"}
YTDLP_SLEEP_INTERVAL: int = int(os.getenv("YTDLP_SLEEP_INTERVAL", "0"))
YTDLP_MAX_SLEEP_INTERVAL: int = int(os.getenv("YTDLP_MAX_SLEEP_INTERVAL", "0"))
YTDLP_TIKTOK_API_HOSTNAME: str = os.getenv("YTDLP_TIKTOK_API_HOSTNAME", "").strip()

VIDEO_FORMAT: str = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
IMAGE_FORMAT: str = "all"
AUDIO_FORMAT: str = "bestaudio[ext=m4a]/bestaudio/best"

YTDL_BASE_OPTS: Dict[str, Any] = {
    "nocheckcertificate": True,
    "quiet": True,
    "no_warnings": True,
    "noplaylist": True,
    "user_agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/121.0.0.0 Safari/537.36"
    ),
}

URL_RE: re.Pattern[str] = re.compile(r"https?://[^\s<>'\"()\[\]{}]+", re.IGNORECASE)
URL_SYNTAX_RE: re.Pattern[str] = re.compile(r"^https?://[^\s/$.?#].[^\s]*$")

VIDEO_EXTENSIONS: Tuple[str, ...] = (".mp4", ".mkv", ".webm", ".avi", ".mov", ".wmv", ".flv")
IMAGE_EXTENSIONS: Tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp", ".gif")
AUDIO_EXTENSIONS: Tuple[str, ...] = (".mp3", ".m4a", ".wav", ".aac", ".ogg", ".opus")

SUPPORTED_LINKS: List[LinkPattern] = [
    LinkPattern(
        name="YouTube",
        pattern=r"^https?://(?:www\.|m\.)?(?:youtube\.com/(?:watch\?v=|shorts/)|youtu\.be/)[\w-]+",
        example="https://youtube.com/shorts/<id>",
    ),
    LinkPattern(
        name="TikTok",
        pattern=r"^https?://(?:www\.|m\.|vm\.|vt\.)?tiktok\.com/",
        example="https://vm.tiktok.com/<code>/",
    ),
    LinkPattern(
        name="Instagram",
        pattern=r"^https?://(?:www\.)?instagram\.com/(?:p|reel|reels)/[\w-]+",
        example="https://instagram.com/reel/<id>/",
    ),
    LinkPattern(
        name="Twitter/X",
        pattern=r"^https?://(?:www\.)?(?:twitter\.com|x\.com)/\w+/status/\d+",
        example="https://x.com/<user>/status/<id>",
    ),
    LinkPattern(
        name="Reddit",
        pattern=r"^https?://(?:www\.|old\.)?reddit\.com/r/\w+/(?:comments|s)/\w+",
        example="https://reddit.com/r/<sub>/comments/<id>/",
    ),
]
