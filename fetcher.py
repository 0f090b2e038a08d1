"""
Media fetching through yt-dlp.
"""

import asyncio
import logging
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Collection, Dict, List, Optional, Tuple

from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError, ExtractorError

from config import (
    AUDIO_FORMAT,
    IMAGE_FORMAT,
    MAX_FILE_SIZE_MB,
    TASK_TIMEOUT_SECONDS,
    VIDEO_FORMAT,
    YTDL_BASE_OPTS,
    YTDLP_COOKIES_FILE,
    YTDLP_COOKIES_FROM_BROWSER,
    YTDLP_FORCE_IPV4,
    YTDLP_MAX_SLEEP_INTERVAL,
    YTDLP_SLEEP_INTERVAL,
    YTDLP_TIKTOK_API_HOSTNAME,
)
from models import FetchResult, MediaFile
from utils import detect_media_kind, format_file_size

logger = logging.getLogger(__name__)


class MediaFetcher(ABC):
    """Turns a URL into local files inside an output directory."""

    @abstractmethod
    async def fetch(self, url: str, output_dir: str) -> FetchResult:
        """Download media. Reports problems through the result, never raises for them."""


class YtDlpFetcher(MediaFetcher):
    """
    yt-dlp based fetcher.

    Every call uses its own uuid prefix, so several workers can share one
    output directory without filename collisions.
    """

    def __init__(
        self,
        max_file_size_mb: int = MAX_FILE_SIZE_MB,
        video_format: str = VIDEO_FORMAT,
        image_format: str = IMAGE_FORMAT,
        audio_format: str = AUDIO_FORMAT,
    ):
        self.max_file_size_mb = max_file_size_mb
        self.video_format = video_format
        self.image_format = image_format
        self.audio_format = audio_format

    async def fetch(self, url: str, output_dir: str) -> FetchResult:
        try:
            os.makedirs(output_dir, exist_ok=True)
        except OSError as error:
            return FetchResult(success=False, error=f"failed to create output directory: {error}")

        session_id = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._fetch_blocking, url, output_dir, session_id)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            # the yt-dlp thread cannot be stopped; clear its files once it returns
            logger.warning("Fetch of %s abandoned, session %s is purged when yt-dlp exits", url, session_id)
            future.add_done_callback(lambda _: self._purge_session(output_dir, session_id))
            raise

    def _fetch_blocking(self, url: str, output_dir: str, session_id: str) -> FetchResult:
        """Blocking fetch executed in the default thread pool."""
        template = os.path.join(output_dir, f"{session_id}-%(autonumber)s.%(ext)s")
        last_error = self._run_ytdlp(url, self._build_ytdlp_options(template, self.video_format))

        try:
            files = self._collect_files(output_dir, session_id)
            if not files:
                # image carousels have no video stream: grab pictures and the audio track separately
                fallback_error = self._fetch_images_and_audio(url, output_dir, session_id)
                last_error = fallback_error or last_error
                files = self._collect_files(output_dir, session_id)
        except OSError as error:
            self._purge_session(output_dir, session_id)
            return FetchResult(success=False, error=f"failed to read output directory: {error}")

        if not files:
            self._purge_session(output_dir, session_id)
            return FetchResult(success=False, error=last_error or "failed to download media")

        result = FetchResult(success=True, files=files)
        limit_bytes = self.max_file_size_mb * 1024 * 1024
        if result.total_size > limit_bytes:
            self._purge_session(output_dir, session_id)
            return FetchResult(
                success=False,
                error=(
                    f"total file size {result.total_size // (1024 * 1024)} MB "
                    f"exceeds limit of {self.max_file_size_mb} MB"
                ),
            )

        # partial downloads of failed passes are not part of the result
        self._purge_session(output_dir, session_id, keep={item.file_path for item in files})
        logger.debug("Fetched %s files (%s) for %s", len(files), format_file_size(result.total_size), url)
        return result

    def _fetch_images_and_audio(self, url: str, output_dir: str, session_id: str) -> Optional[str]:
        media_template = os.path.join(output_dir, f"{session_id}-%(autonumber)s.%(ext)s")
        media_options = self._build_ytdlp_options(media_template, self.image_format)
        media_options["write_all_thumbnails"] = True
        media_error = self._run_ytdlp(url, media_options)

        audio_template = os.path.join(output_dir, f"{session_id}-audio.%(ext)s")
        audio_error = self._run_ytdlp(url, self._build_ytdlp_options(audio_template, self.audio_format))
        return audio_error or media_error

    @staticmethod
    def _run_ytdlp(url: str, options: Dict[str, Any]) -> Optional[str]:
        """Run one yt-dlp pass. Returns the error text, files are checked by the caller."""
        try:
            with YoutubeDL(options) as ydl:
                ydl.extract_info(url, download=True)
        except (DownloadError, ExtractorError, OSError) as error:
            logger.warning("yt-dlp pass failed for %s: %s", url, error)
            return str(error)
        return None

    @staticmethod
    def _collect_files(output_dir: str, session_id: str) -> List[MediaFile]:
        files: List[MediaFile] = []
        for entry in sorted(Path(output_dir).iterdir()):
            if not entry.is_file() or not entry.name.startswith(session_id):
                continue
            if entry.suffix.lower() in {".part", ".ytdl", ".json"}:
                continue
            files.append(
                MediaFile(
                    file_path=str(entry),
                    file_name=entry.name,
                    file_size=entry.stat().st_size,
                    kind=detect_media_kind(entry.name),
                )
            )
        return files

    @staticmethod
    def _purge_session(output_dir: str, session_id: str, keep: Collection[str] = ()) -> None:
        """Delete every file of one session, including .part and .ytdl leftovers."""
        try:
            entries = [entry for entry in Path(output_dir).iterdir() if entry.name.startswith(session_id)]
        except OSError as error:
            logger.warning("Failed to list %s for session %s: %s", output_dir, session_id, error)
            return
        for entry in entries:
            if str(entry) in keep:
                continue
            try:
                entry.unlink()
            except FileNotFoundError:
                continue
            except OSError as error:
                logger.warning("Failed to remove %s: %s", entry, error)

    def _build_ytdlp_options(self, output_template: str, media_format: str) -> Dict[str, Any]:
        ydl_opts: Dict[str, Any] = {
            **YTDL_BASE_OPTS,
            "outtmpl": output_template,
            "format": media_format,
            "socket_timeout": min(TASK_TIMEOUT_SECONDS, 120),
            "retries": 3,
            "max_filesize": self.max_file_size_mb * 1024 * 1024,
        }

        if YTDLP_FORCE_IPV4:
            ydl_opts["source_address"] = "0.0.0.0"
        if YTDLP_SLEEP_INTERVAL > 0:
            ydl_opts["sleep_interval"] = YTDLP_SLEEP_INTERVAL
        if YTDLP_MAX_SLEEP_INTERVAL > 0:
            ydl_opts["max_sleep_interval"] = YTDLP_MAX_SLEEP_INTERVAL
        if YTDLP_TIKTOK_API_HOSTNAME:
            ydl_opts["extractor_args"] = {"tiktok": {"api_hostname": [YTDLP_TIKTOK_API_HOSTNAME]}}

        cookie_file = (YTDLP_COOKIES_FILE or "").strip()
        if cookie_file:
            if os.path.exists(cookie_file):
                ydl_opts["cookiefile"] = cookie_file
            else:
                logger.warning("YTDLP_COOKIES_FILE is set but file does not exist: %s", cookie_file)

        cookies_from_browser = self._parse_cookies_from_browser(YTDLP_COOKIES_FROM_BROWSER)
        if cookies_from_browser:
            ydl_opts["cookiesfrombrowser"] = cookies_from_browser

        return ydl_opts

    @staticmethod
    def _parse_cookies_from_browser(raw_value: str) -> Optional[Tuple[str, ...]]:
        """
        Parse env string into yt-dlp `cookiesfrombrowser` tuple.

        Examples:
        - chrome
        - firefox:default-release
        - edge::Profile 1
        """
        if not raw_value:
            return None

        parts = [part.strip() for part in raw_value.split(":")]
        if not parts or not parts[0]:
            return None

        values: List[str] = [parts[0]]
        for part in parts[1:4]:
            if part:
                values.append(part)
        return tuple(values)
