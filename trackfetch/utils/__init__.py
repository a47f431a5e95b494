"""
Utility functions for trackfetch.

This module provides common helpers used across the application:
    - Filename sanitization (unicode via yt-dlp, portable via Unidecode)
    - Catalog link parsing
    - Duration parsing/formatting

Usage:
    from trackfetch.utils import sanitize_filename, portable_name, parse_catalog_link
"""

import re
from pathlib import Path

from unidecode import unidecode
from yt_dlp.utils import sanitize_filename as yt_dlp_sanitize


# Component used when sanitizing leaves nothing behind
UNKNOWN_COMPONENT = "Unknown"

_PORTABLE_DISALLOWED = re.compile(r"[^A-Za-z0-9_-]")
_PORTABLE_UNDERSCORES = re.compile(r"_{3,}")
_WHITESPACE = re.compile(r"\s+")

# open.spotify.com/[intl-xx/]{album|playlist}/<id>
_CATALOG_URL_PATTERN = re.compile(
    r"^https?://open\.spotify\.com/(?:intl-[a-zA-Z-]+/)?(?P<type>[a-z]+)/(?P<id>[A-Za-z0-9]+)/?(?:\?.*)?$"
)
# spotify:{album|playlist}:<id>
_CATALOG_URI_PATTERN = re.compile(r"^spotify:(?P<type>[a-z]+):(?P<id>[A-Za-z0-9]+)$")
_CATALOG_ID_PATTERN = re.compile(r"^[A-Za-z0-9]{10,40}$")


def sanitize_filename(name: str) -> str:
    """
    Sanitize a string for use as a single path component.

    Uses yt-dlp's sanitize_filename so names look the same as the ones
    yt-dlp itself would produce. Path separators and characters invalid on
    Windows are replaced, not dropped.

    Examples:
        sanitize_filename("AC/DC")          # "AC⧸DC"
        sanitize_filename("   ")            # "Unknown"
    """
    cleaned = yt_dlp_sanitize(name.strip(), restricted=False).strip()
    # A component made only of dots would walk the tree
    if not cleaned or set(cleaned) == {"."}:
        return UNKNOWN_COMPONENT
    return cleaned


def portable_name(text: str) -> str:
    """
    Reduce text to the portable charset [A-Za-z0-9_-].

    Non-ASCII characters are transliterated (é -> e, ø -> o, 東京 -> Dong Jing),
    whitespace becomes "_", everything else outside the charset is dropped.

    Examples:
        portable_name("Beyoncé")         # "Beyonce"
        portable_name("AC/DC: Live!")    # "ACDC_Live"
        portable_name("???")             # "Unknown"
    """
    ascii_text = unidecode(text)
    underscored = _WHITESPACE.sub("_", ascii_text.strip())
    cleaned = _PORTABLE_DISALLOWED.sub("", underscored)
    cleaned = _PORTABLE_UNDERSCORES.sub("__", cleaned).strip("_")
    return cleaned or UNKNOWN_COMPONENT


def parse_catalog_link(link: str) -> tuple[str | None, str]:
    """
    Split a catalog link into (type, id).

    Handles:
        - https://open.spotify.com/album/ID
        - https://open.spotify.com/intl-it/playlist/ID?si=xxx
        - spotify:album:ID
        - a bare ID (type is None)

    Returns:
        (link_type, catalog_id). link_type is the raw path segment
        ("album", "playlist", "track"...) or None for a bare ID.

    Raises:
        ValueError: If the string is none of the above.
    """
    link = link.strip()

    for pattern in (_CATALOG_URL_PATTERN, _CATALOG_URI_PATTERN):
        match = pattern.match(link)
        if match:
            return match.group("type"), match.group("id")

    if _CATALOG_ID_PATTERN.match(link):
        return None, link

    raise ValueError(f"Not a catalog link: {link!r}")


def ensure_directory(path: Path) -> Path:
    """Create path (and parents) if needed and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def format_duration(seconds: int) -> str:
    """
    Format seconds as "M:SS" or "H:MM:SS".

    Examples:
        format_duration(225)   # "3:45"
        format_duration(3750)  # "1:02:30"
    """
    if seconds < 3600:
        return f"{seconds // 60}:{seconds % 60:02d}"
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f"{hours}:{minutes:02d}:{seconds % 60:02d}"


def parse_duration(duration_str: str) -> int:
    """
    Parse "3:45" or "1:02:30" (as YouTube Music reports them) to seconds.

    Raises:
        ValueError: If a part is not an integer.
    """
    parts = [int(p) for p in duration_str.strip().split(":")]

    if len(parts) == 2:
        return parts[0] * 60 + parts[1]
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    return parts[0]
