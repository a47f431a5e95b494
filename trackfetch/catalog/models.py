"""
Data models for catalog entities.

TrackDescriptor is the immutable description of one logical track as the
catalog (Spotify) reports it. Everything downstream (matching, tagging,
naming, fingerprinting) reads from it; nothing ever modifies it.

Usage:
    from trackfetch.catalog.models import TrackDescriptor, ResolvedCollection

    descriptor = TrackDescriptor.from_spotify_api(track_data)
    print(descriptor.search_query)   # "Queen - Bohemian Rhapsody"
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"


class LinkType(Enum):
    ALBUM = "album"
    PLAYLIST = "playlist"


@dataclass(frozen=True)
class TrackDescriptor:
    """
    Immutable representation of a catalog track.

    Attributes:
        catalog_id: Spotify track ID (22-character base62 string).
        title: Track title as it appears in the catalog.
        artists: All artist names in catalog order. The first is primary.
        album: Album name.
        track_number: Position within the album.
        disc_number: Disc number for multi-disc albums.
        duration_ms: Track duration in milliseconds.
        cover_url: Highest-resolution album cover URL, if any.
        isrc: International Standard Recording Code, if the catalog has one.
        catalog_url: Public URL of the track.
        album_artist: Main artist of the album (differs on compilations).
        year: Release year, 0 when unknown.
    """
    catalog_id: str
    title: str
    artists: tuple[str, ...]
    album: str
    track_number: int
    disc_number: int
    duration_ms: int
    cover_url: str | None = None
    isrc: str | None = None
    catalog_url: str = ""
    album_artist: str = ""
    year: int = 0

    @property
    def artist(self) -> str:
        """Primary artist."""
        return self.artists[0] if self.artists else UNKNOWN_ARTIST

    @property
    def search_query(self) -> str:
        return f"{self.artist} - {self.title}"

    @classmethod
    def from_spotify_api(
        cls,
        track_data: dict[str, Any],
        album_data: dict[str, Any] | None = None
    ) -> "TrackDescriptor":
        """
        Create a TrackDescriptor from a Spotify track object.

        Args:
            track_data: A full or simplified track object. Simplified album
                        track objects carry no 'album' key; pass the album
                        object as album_data for those.
            album_data: Optional album object, used when the track object
                        lacks album info.

        Returns:
            The frozen descriptor.

        Behavior:
            1. Basic fields (id, name, duration, numbers)
            2. Artist names in order
            3. ISRC from external_ids
            4. Album name, album artist and year from the album object
            5. cover_url from the image with the largest area
        """
        catalog_id = track_data["id"]
        catalog_url = track_data.get("external_urls", {}).get("spotify", "")
        if not catalog_url:
            catalog_url = f"https://open.spotify.com/track/{catalog_id}"

        artists = tuple(a["name"] for a in track_data.get("artists", []) if a.get("name"))
        isrc = track_data.get("external_ids", {}).get("isrc") or None

        album_info = track_data.get("album") or album_data or {}
        album_artists = album_info.get("artists", [])
        album_artist = album_artists[0]["name"] if album_artists else (artists[0] if artists else "")

        year = 0
        release_date = album_info.get("release_date", "")
        if release_date:
            try:
                year = int(release_date[:4])
            except ValueError:
                year = 0

        cover_url = None
        images = album_info.get("images", [])
        if images:
            best_image = max(
                images,
                key=lambda img: (img.get("width") or 0) * (img.get("height") or 0)
            )
            cover_url = best_image.get("url")

        return cls(
            catalog_id=catalog_id,
            title=track_data["name"],
            artists=artists,
            album=album_info.get("name") or UNKNOWN_ALBUM,
            track_number=track_data.get("track_number") or 1,
            disc_number=track_data.get("disc_number") or 1,
            duration_ms=track_data["duration_ms"],
            cover_url=cover_url,
            isrc=isrc,
            catalog_url=catalog_url,
            album_artist=album_artist,
            year=year,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "catalog_id": self.catalog_id,
            "title": self.title,
            "artists": list(self.artists),
            "album": self.album,
            "track_number": self.track_number,
            "disc_number": self.disc_number,
            "duration_ms": self.duration_ms,
            "cover_url": self.cover_url,
            "isrc": self.isrc,
            "catalog_url": self.catalog_url,
        }


@dataclass(frozen=True)
class ResolvedCollection:
    """
    A resolved album or playlist: its name plus descriptors in catalog order.
    """
    name: str
    link_type: LinkType
    catalog_id: str
    tracks: tuple[TrackDescriptor, ...]

    def __len__(self) -> int:
        return len(self.tracks)
