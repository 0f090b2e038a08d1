"""
Unit tests for utility functions.
"""

import asyncio

import pytest

from errors import ValidationError
from models import LinkPattern, MediaFile, MediaKind
from utils import (
    describe_supported_links,
    detect_media_kind,
    find_first_url,
    format_file_size,
    match_supported_link,
    remove_files,
    strip_tracking_params,
    validate_link,
    validate_url_input,
)


class TestURLProcessing:
    """Test URL processing functions."""

    def test_find_first_url_valid(self):
        text = "Check this: https://youtube.com/watch?v=123 and https://tiktok.com/@user/video/456"
        assert find_first_url(text) == "https://youtube.com/watch?v=123"

    def test_find_first_url_none(self):
        assert find_first_url("This is just plain text without any URLs.") is None

    def test_strip_tracking_params(self):
        url = "https://example.com/video?v=123&utm_source=test&utm_campaign=promo"
        result = strip_tracking_params(url)
        assert "utm_source" not in result
        assert "utm_campaign" not in result
        assert "v=123" in result

    def test_match_supported_link(self):
        assert match_supported_link("https://www.youtube.com/watch?v=dQw4w9WgXcQ").name == "YouTube"
        assert match_supported_link("https://vm.tiktok.com/ZM123/").name == "TikTok"
        assert match_supported_link("https://unsupported-site.com/video") is None

    def test_match_supported_link_skips_broken_pattern(self):
        patterns = [
            LinkPattern(name="Broken", pattern="(", example="-"),
            LinkPattern(name="Example", pattern=r"^https://example\.com/", example="https://example.com/x"),
        ]
        assert match_supported_link("https://example.com/x", patterns).name == "Example"


class TestLinkValidation:
    """Test the supported-link gate used by workers."""

    def test_validate_link_returns_platform(self):
        assert validate_link("https://x.com/someone/status/123456") == "Twitter/X"

    def test_validate_link_rejects_bad_syntax(self):
        with pytest.raises(ValidationError, match="invalid URL format"):
            validate_link("ftp://example.com/file")

    def test_validate_link_lists_supported_formats(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_link("https://unsupported-site.com/video")
        assert "unsupported media format" in str(excinfo.value)
        assert "YouTube" in str(excinfo.value)

    def test_describe_supported_links(self):
        text = describe_supported_links([LinkPattern("A", "a", "https://a.example")])
        assert text == "• A: https://a.example"


class TestFileOperations:
    """Test file operation utilities."""

    def test_detect_media_kind(self):
        assert detect_media_kind("abc-00001.mp4") == MediaKind.VIDEO
        assert detect_media_kind("abc-00002.JPG") == MediaKind.IMAGE
        assert detect_media_kind("abc-audio.m4a") == MediaKind.AUDIO
        assert detect_media_kind("abc-00003.unknown") == MediaKind.VIDEO

    def test_format_file_size(self):
        assert format_file_size(512) == "512.0 B"
        assert format_file_size(1536) == "1.5 KB"
        assert format_file_size(1048576) == "1.0 MB"

    def test_remove_files_ignores_missing(self, tmp_path):
        existing = tmp_path / "a.mp4"
        existing.write_bytes(b"data")
        files = [
            MediaFile(str(existing), "a.mp4", 4),
            MediaFile(str(tmp_path / "missing.mp4"), "missing.mp4", 0),
        ]

        failed = asyncio.run(remove_files(files))

        assert failed == []
        assert not existing.exists()


class TestValidation:
    """Test validation functions."""

    def test_validate_url_input_valid(self):
        is_valid, error = validate_url_input("https://example.com/video")
        assert is_valid
        assert error == ""

    def test_validate_url_input_invalid_scheme(self):
        is_valid, error = validate_url_input("ftp://example.com/video")
        assert not is_valid
        assert "url" in error.lower()

    def test_validate_url_input_too_long(self):
        is_valid, error = validate_url_input("https://example.com/" + "a" * 2000)
        assert not is_valid
        assert "url" in error.lower()

    def test_validate_url_input_empty(self):
        is_valid, error = validate_url_input("")
        assert not is_valid
        assert "url" in error.lower()
