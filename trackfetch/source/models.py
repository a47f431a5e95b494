"""
Data models for audio-source search results.

CandidateSummary is what a source's search() returns: enough to score a
result and to hand its URL to the extractor. CandidateMatch is a scored
summary produced by the match engine.
"""

from dataclasses import dataclass
from typing import Any

from trackfetch.utils import parse_duration


@dataclass(frozen=True)
class CandidateSummary:
    """
    One search result from an audio source.

    Attributes:
        source_id: Platform identifier (YouTube video ID).
        title: Title as listed on the platform.
        uploader: Channel or artist name(s), joined with ", ".
        duration_ms: Duration in milliseconds, 0 if unknown.
        url: Watch URL passed to the extractor.
        result_type: "song" for official YouTube Music songs, else "video".
    """
    source_id: str
    title: str
    uploader: str
    duration_ms: int
    url: str
    result_type: str = "video"

    @classmethod
    def from_ytmusic_result(cls, result: dict[str, Any]) -> "CandidateSummary":
        """
        Create from a ytmusicapi YTMusic.search() entry.

        Songs get a music.youtube.com URL, videos a www.youtube.com one.
        ytmusicapi reports duration as "3:33"; some entries also carry
        duration_seconds directly.
        """
        video_id = result.get("videoId") or ""

        result_type = result.get("resultType", "video")
        if result_type == "song":
            url = f"https://music.youtube.com/watch?v={video_id}"
        else:
            url = f"https://www.youtube.com/watch?v={video_id}"

        artists_data = result.get("artists") or []
        artists = [
            a.get("name", "") for a in artists_data
            if isinstance(a, dict) and a.get("name")
        ]

        try:
            duration_ms = parse_duration(result.get("duration") or "") * 1000
        except ValueError:
            duration_ms = 0
        if duration_ms == 0 and result.get("duration_seconds"):
            try:
                duration_ms = int(result["duration_seconds"]) * 1000
            except (ValueError, TypeError):
                pass

        return cls(
            source_id=video_id,
            title=result.get("title") or "",
            uploader=", ".join(artists),
            duration_ms=duration_ms,
            url=url,
            result_type=result_type,
        )

    @classmethod
    def from_ytdlp_entry(cls, entry: dict[str, Any]) -> "CandidateSummary":
        """Create from a flat yt-dlp ytsearch entry."""
        video_id = entry.get("id") or ""
        duration = entry.get("duration") or 0
        return cls(
            source_id=video_id,
            title=entry.get("title") or "",
            uploader=entry.get("channel") or entry.get("uploader") or "",
            duration_ms=int(float(duration) * 1000),
            url=entry.get("url") or f"https://www.youtube.com/watch?v={video_id}",
            result_type="video",
        )


@dataclass(frozen=True)
class CandidateMatch:
    """A candidate with its match score (0-100)."""
    source_id: str
    title: str
    uploader: str
    duration_ms: int
    score: float
    url: str

    @classmethod
    def from_summary(cls, summary: CandidateSummary, score: float) -> "CandidateMatch":
        return cls(
            source_id=summary.source_id,
            title=summary.title,
            uploader=summary.uploader,
            duration_ms=summary.duration_ms,
            score=score,
            url=summary.url,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "title": self.title,
            "uploader": self.uploader,
            "duration_ms": self.duration_ms,
            "score": round(self.score, 2),
            "url": self.url,
        }
