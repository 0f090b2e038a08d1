"""
Utilities for URL parsing, validation and file operations.
"""

import logging
import os
import re
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import aiofiles.os

from config import (
    AUDIO_EXTENSIONS,
    IMAGE_EXTENSIONS,
    SUPPORTED_LINKS,
    URL_RE,
    URL_SYNTAX_RE,
    VIDEO_EXTENSIONS,
)
from errors import ValidationError
from models import LinkPattern, MediaFile, MediaKind

logger = logging.getLogger(__name__)


def find_first_url(text: str) -> Optional[str]:
    """Return first URL in text."""
    if not text:
        return None
    match = URL_RE.search(text)
    return match.group(0) if match else None


def strip_tracking_params(url: str) -> str:
    """Remove common tracking query params from URL."""
    try:
        parsed = urlparse(url)
        query_params = parse_qs(parsed.query)
        clean_params = {
            key: value
            for key, value in query_params.items()
            if key.lower()
            not in {"utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content", "fbclid", "gclid", "igsh", "si"}
        }
        clean_query = urlencode(clean_params, doseq=True)
        return urlunparse(
            (parsed.scheme, parsed.netloc, parsed.path, parsed.params, clean_query, parsed.fragment)
        )
    except ValueError:
        return url


def match_supported_link(url: str, patterns: Sequence[LinkPattern] = SUPPORTED_LINKS) -> Optional[LinkPattern]:
    """Return the first supported-link row matching URL."""
    for link_pattern in patterns:
        try:
            if re.match(link_pattern.pattern, url, re.IGNORECASE):
                return link_pattern
        except re.error:
            logger.warning("Broken supported-link pattern for %s: %s", link_pattern.name, link_pattern.pattern)
    return None


def describe_supported_links(patterns: Sequence[LinkPattern] = SUPPORTED_LINKS) -> str:
    return "\n".join(f"• {item.name}: {item.example}" for item in patterns)


def validate_link(url: str, patterns: Sequence[LinkPattern] = SUPPORTED_LINKS) -> str:
    """
    Check URL syntax and the supported-links table.

    Returns the platform name, raises ValidationError otherwise.
    """
    if not url or not URL_SYNTAX_RE.match(url):
        raise ValidationError("invalid URL format")

    link_pattern = match_supported_link(url, patterns)
    if link_pattern is None:
        raise ValidationError(
            "unsupported media format. Supported formats:\n" + describe_supported_links(patterns)
        )
    return link_pattern.name


def detect_media_kind(filename: str) -> MediaKind:
    """Guess media kind by extension. Unknown extensions count as video."""
    ext = os.path.splitext(filename)[1].lower()
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    if ext in AUDIO_EXTENSIONS:
        return MediaKind.AUDIO
    return MediaKind.VIDEO


def format_file_size(bytes_size: int) -> str:
    """Human readable file size."""
    if bytes_size is None:
        return "0.0 B"

    size = float(max(bytes_size, 0))
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024.0 or unit == "TB":
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return "0.0 B"


async def remove_files(files: Iterable[MediaFile]) -> List[str]:
    """Delete fetched files, returning the paths that could not be removed."""
    failed: List[str] = []
    for media_file in files:
        try:
            await aiofiles.os.remove(media_file.file_path)
        except FileNotFoundError:
            continue
        except OSError as error:
            logger.warning("Failed to remove %s: %s", media_file.file_path, error)
            failed.append(media_file.file_path)
    return failed


def validate_url_input(url: str) -> Tuple[bool, str]:
    """Validate URL format and safety."""
    if not url:
        return False, "URL не может быть пустым"
    if len(url) > 2000:
        return False, "URL слишком длинный"

    try:
        parsed = urlparse(url)
        if parsed.scheme.lower() not in {"http", "https"}:
            return False, "Поддерживаются только HTTP/HTTPS URL"
        if not parsed.netloc:
            return False, "Некорректный URL"
    except ValueError:
        return False, "Некорректный URL"

    return True, ""


def sanitize_user_input(text: str, max_length: int = 1000) -> str:
    """Remove control chars and trim length."""
    if not text:
        return ""
    sanitized = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", text)
    return sanitized.strip()[:max_length]
