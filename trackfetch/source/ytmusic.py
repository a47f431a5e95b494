"""
YouTube Music audio source (ytmusicapi).

Searches the "songs" filter first, then "videos", and concatenates the
results, dropping repeated video IDs. Entries without a video ID, without
artists or without a duration are skipped.
"""

import threading
from typing import Any

from ytmusicapi import YTMusic

from trackfetch.core.logger import get_logger
from trackfetch.source.base import AudioSource, register_source
from trackfetch.source.models import CandidateSummary

logger = get_logger(__name__)


SEARCH_OPTIONS = [
    {"filter": "songs", "ignore_spelling": True, "limit": 50},
    {"filter": "videos", "ignore_spelling": True, "limit": 50},
]


@register_source("ytmusic")
class YTMusicSource(AudioSource):
    """
    Thread Safety:
        ytmusicapi search is stateless; one YTMusic client is shared by
        every worker thread.
    """

    def __init__(self, client: YTMusic | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._ytmusic = client if client is not None else YTMusic()

    def search(self, query: str, cancel_event: threading.Event | None = None) -> list[CandidateSummary]:
        results: list[CandidateSummary] = []
        seen_ids: set[str] = set()

        for options in SEARCH_OPTIONS:
            raw_results = self._search_with_retry(self._ytmusic.search, query, cancel_event=cancel_event, **options)

            for raw in raw_results:
                video_id = raw.get("videoId")
                if not video_id or video_id in seen_ids:
                    continue
                if not raw.get("artists"):
                    continue

                candidate = CandidateSummary.from_ytmusic_result(raw)
                if candidate.duration_ms <= 0:
                    continue

                seen_ids.add(video_id)
                results.append(candidate)

        logger.debug(f"ytmusic: {len(results)} results for {query!r}")
        return results

    def url_for(self, source_id: str) -> str:
        return f"https://music.youtube.com/watch?v={source_id}"
