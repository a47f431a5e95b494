"""
Plain YouTube audio source (yt-dlp search).

Uses yt-dlp's "ytsearchN:" pseudo-URL with flat extraction, so no video
page is fetched: each entry carries id, title, channel and duration only.
"""

import threading
from typing import Any

from yt_dlp import YoutubeDL

from trackfetch.core.logger import get_logger
from trackfetch.source.base import AudioSource, register_source
from trackfetch.source.models import CandidateSummary

logger = get_logger(__name__)


SEARCH_LIMIT = 20


@register_source("youtube")
class YouTubeSearchSource(AudioSource):

    def __init__(self, limit: int = SEARCH_LIMIT, cookie_file: str | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.limit = limit
        self._ydl_opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "extract_flat": "in_playlist",
        }
        if cookie_file:
            self._ydl_opts["cookiefile"] = str(cookie_file)

    def _extract(self, query: str) -> list[dict[str, Any]]:
        with YoutubeDL(self._ydl_opts) as ydl:
            info = ydl.extract_info(f"ytsearch{self.limit}:{query}", download=False)
        return (info or {}).get("entries") or []

    def search(self, query: str, cancel_event: threading.Event | None = None) -> list[CandidateSummary]:
        entries = self._search_with_retry(self._extract, query, cancel_event=cancel_event)

        results = []
        for entry in entries:
            if not entry or not entry.get("id") or not entry.get("duration"):
                continue
            results.append(CandidateSummary.from_ytdlp_entry(entry))

        logger.debug(f"youtube: {len(results)} results for {query!r}")
        return results

    def url_for(self, source_id: str) -> str:
        return f"https://www.youtube.com/watch?v={source_id}"
