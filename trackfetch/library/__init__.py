"""Library placement (paths, atomic writes, playlists) and conversion."""

from trackfetch.library.converter import AudioConverter, ConversionOutcome, LibraryConverter, collect_audio_files
from trackfetch.library.placer import LibraryEntry, LibraryPlacer

__all__ = [
    "AudioConverter",
    "ConversionOutcome",
    "LibraryConverter",
    "collect_audio_files",
    "LibraryEntry",
    "LibraryPlacer",
]
