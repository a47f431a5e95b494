"""
Fingerprints: the canonical dedup key for a logical track.

A track reached through an album link and the same track reached through a
playlist link must map to the same key, so the fingerprint only uses data
both carry: the ISRC when the catalog provides one, otherwise the primary
artist, title and album folded for case, diacritics and whitespace.
"""

import re
import unicodedata
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from trackfetch.catalog.models import TrackDescriptor


_WHITESPACE_PATTERN = re.compile(r"\s+")


def normalize_component(text: str) -> str:
    """
    Fold a metadata string for comparison.

    Args:
        text: Artist, title or album text.

    Returns:
        Case-folded text without combining marks, with whitespace
        collapsed to single spaces.

    Examples:
        normalize_component("  Beyoncé ")   # "beyonce"
        normalize_component("SIGUR  RÓS")   # "sigur ros"
    """
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    folded = stripped.casefold()
    return _WHITESPACE_PATTERN.sub(" ", folded).strip()


def fingerprint(descriptor: "TrackDescriptor") -> str:
    if descriptor.isrc and descriptor.isrc.strip():
        return f"isrc:{descriptor.isrc.strip().upper()}"

    artist = normalize_component(descriptor.artist)
    title = normalize_component(descriptor.title)
    album = normalize_component(descriptor.album)
    return f"meta:{artist}|{title}|{album}"
