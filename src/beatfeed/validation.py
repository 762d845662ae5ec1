"""Validation of source references submitted to the scheduler."""

import logging
import re
from urllib.parse import urlparse

from .errors import SourceValidationError

logger = logging.getLogger(__name__)

SUPPORTED_SOURCE_TYPES = ("channel", "playlist")

# Hosts serving YouTube and YouTube Music content
_YOUTUBE_HOSTS = frozenset(
    {
        "youtube.com",
        "www.youtube.com",
        "m.youtube.com",
        "music.youtube.com",
        "youtu.be",
    }
)

_HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9.-]+$")


def is_supported_host(hostname: str | None) -> bool:
    """Return True if the hostname belongs to the supported media platform."""
    if not hostname:
        return False
    return hostname.lower() in _YOUTUBE_HOSTS


def validate_source_type(source_type: str | None) -> str:
    """Validate a source type.

    Raises:
        SourceValidationError: If the type is missing or not channel/playlist.
    """
    if not source_type:
        raise SourceValidationError("Source type is required")
    if source_type not in SUPPORTED_SOURCE_TYPES:
        raise SourceValidationError('Source type must be either "channel" or "playlist"')
    return source_type


def validate_source_url(url: str | None) -> str:
    """Validate and normalize a channel or playlist URL.

    A scheme is added when missing; only http(s) URLs on a YouTube host are
    accepted.

    Args:
        url: The submitted source reference

    Returns:
        The normalized URL

    Raises:
        SourceValidationError: If the URL is empty, malformed or not a YouTube URL
    """
    if not url or not isinstance(url, str) or not url.strip():
        raise SourceValidationError("Source URL is required")

    url = url.strip()
    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", url):
        url = f"https://{url}"

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise SourceValidationError(f"Invalid URL format: {e}") from e

    if parsed.scheme not in ("http", "https"):
        raise SourceValidationError("URL must use http or https scheme")

    if not parsed.hostname or not _HOSTNAME_RE.match(parsed.hostname):
        raise SourceValidationError("URL must have a valid hostname")

    if not is_supported_host(parsed.hostname):
        logger.debug(f"Rejected source on unsupported host: {parsed.hostname}")
        raise SourceValidationError("Invalid YouTube URL")

    return url


def validate_source(url: str | None, source_type: str | None) -> tuple[str, str]:
    """Validate a (url, type) pair for a new source."""
    if not url or not source_type:
        raise SourceValidationError("Source URL and type are required")
    return validate_source_url(url), validate_source_type(source_type)
