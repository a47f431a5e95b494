"""
Output profiles for trackfetch.

An OutputProfile bundles every per-run output policy: audio format and
quality, filename rules, folder depth and album-art limits. It is built
once from configuration/CLI flags and never changes during a run.

Two presets exist:
    normal:   user-selected format, nested Artist/Album folders,
              unicode filenames, generous art limits
    portable: constrained playback devices (handheld consoles, car
              stereos, old MP3 players): MP3 only, flat folder,
              ASCII-only short filenames, tiny cover art

Usage:
    from trackfetch.core.profile import build_profile

    profile = build_profile(format="flac", quality="high", portable=False)
"""

from dataclasses import dataclass
from enum import Enum


SUPPORTED_FORMATS = ("mp3", "m4a", "flac")
QUALITY_LEVELS = ("high", "medium", "low")

# Normal profile limits
NORMAL_MAX_FILENAME_LEN = 200
NORMAL_ART_MAX_PX = 500
NORMAL_ART_MAX_BYTES = 300 * 1024

# Portable profile limits
PORTABLE_FORMAT = "mp3"
PORTABLE_MAX_FILENAME_LEN = 64
PORTABLE_ART_MAX_PX = 128
PORTABLE_ART_MAX_BYTES = 64 * 1024


class FilenameCharset(Enum):
    """Character set allowed in generated file and folder names."""
    UNICODE = "unicode"     # anything except path-hostile characters
    PORTABLE = "portable"   # [A-Za-z0-9_-] only


@dataclass(frozen=True)
class OutputProfile:
    """
    Immutable output policy for one run.

    Attributes:
        format: Audio container/codec produced by the extractor ("mp3", "m4a", "flac").
        quality: "high", "medium" or "low".
        max_filename_len: Maximum filename length including the extension.
        folder_depth: 2 for root/Artist/Album/, 0 for a flat root.
        art_max_px: Maximum cover art size on the longer edge.
        art_max_bytes: Maximum encoded cover art size.
        filename_charset: Allowed characters in generated names.
    """
    format: str
    quality: str
    max_filename_len: int
    folder_depth: int
    art_max_px: int
    art_max_bytes: int
    filename_charset: FilenameCharset

    def __post_init__(self) -> None:
        if self.format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported format: {self.format}")
        if self.quality not in QUALITY_LEVELS:
            raise ValueError(f"Unsupported quality: {self.quality}")
        if self.folder_depth not in (0, 2):
            raise ValueError(f"folder_depth must be 0 or 2, got {self.folder_depth}")
        if self.max_filename_len < len(self.format) + 8:
            raise ValueError(f"max_filename_len too small: {self.max_filename_len}")

    @property
    def extension(self) -> str:
        return f".{self.format}"

    @property
    def is_portable(self) -> bool:
        return self.filename_charset is FilenameCharset.PORTABLE

    def to_dict(self) -> dict:
        return {
            "format": self.format,
            "quality": self.quality,
            "max_filename_len": self.max_filename_len,
            "folder_depth": self.folder_depth,
            "art_max_px": self.art_max_px,
            "art_max_bytes": self.art_max_bytes,
            "filename_charset": self.filename_charset.value,
        }


def normal_profile(format: str = "mp3", quality: str = "high") -> OutputProfile:
    return OutputProfile(
        format=format,
        quality=quality,
        max_filename_len=NORMAL_MAX_FILENAME_LEN,
        folder_depth=2,
        art_max_px=NORMAL_ART_MAX_PX,
        art_max_bytes=NORMAL_ART_MAX_BYTES,
        filename_charset=FilenameCharset.UNICODE,
    )


def portable_profile(quality: str = "high") -> OutputProfile:
    return OutputProfile(
        format=PORTABLE_FORMAT,
        quality=quality,
        max_filename_len=PORTABLE_MAX_FILENAME_LEN,
        folder_depth=0,
        art_max_px=PORTABLE_ART_MAX_PX,
        art_max_bytes=PORTABLE_ART_MAX_BYTES,
        filename_charset=FilenameCharset.PORTABLE,
    )


def build_profile(format: str = "mp3", quality: str = "high", portable: bool = False) -> OutputProfile:
    """
    Build the OutputProfile for a run from user-facing flags.

    Portable mode ignores the requested format: constrained devices only
    reliably play MP3.

    Args:
        format: Requested audio format.
        quality: Requested quality level.
        portable: True for the constrained-device preset.

    Returns:
        The frozen OutputProfile for the run.
    """
    if portable:
        return portable_profile(quality)
    return normal_profile(format, quality)
