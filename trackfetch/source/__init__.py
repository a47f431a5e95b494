"""
Audio sources for trackfetch.

Importing this package registers the built-in backends ("ytmusic",
"youtube") with create_audio_source().
"""

from trackfetch.source.base import AudioSource, available_sources, create_audio_source, register_source
from trackfetch.source.models import CandidateMatch, CandidateSummary
from trackfetch.source import youtube, ytmusic  # noqa: F401  (registers backends)

__all__ = [
    "AudioSource",
    "CandidateMatch",
    "CandidateSummary",
    "available_sources",
    "create_audio_source",
    "register_source",
]
