"""
Track resolver: catalog link -> ordered TrackDescriptors.

Workflow:
    1. Parse the link (URL, spotify: URI, or bare ID + declared type)
    2. Fetch the collection metadata (album or playlist name)
    3. Fetch every item, paginating
    4. Drop items that cannot be acquired (local files, episodes,
       removed tracks, zero duration, empty names)
    5. Album only: batch-fetch full track objects so ISRCs are present,
       giving album and playlist descriptors the same fingerprints
    6. Return a ResolvedCollection in native catalog order

The resolver is read-only and has no side effects.
"""

from typing import Any

from trackfetch.catalog.models import LinkType, ResolvedCollection, TrackDescriptor
from trackfetch.core.exceptions import ResolutionError, ResolutionErrorKind
from trackfetch.core.logger import get_logger
from trackfetch.utils import parse_catalog_link

logger = get_logger(__name__)


def parse_link(link: str, link_type: LinkType | None = None) -> tuple[LinkType, str]:
    """
    Resolve the (type, id) pair a link refers to.

    Args:
        link: URL, URI or bare ID.
        link_type: Declared type. Required for bare IDs; must agree with
                   the link otherwise.

    Raises:
        ResolutionError(MALFORMED_LINK): Unparseable link, unsupported type
            (e.g. a track link), bare ID without link_type, or a declared
            type that contradicts the link.
    """
    try:
        raw_type, catalog_id = parse_catalog_link(link)
    except ValueError as e:
        raise ResolutionError(
            ResolutionErrorKind.MALFORMED_LINK,
            f"Malformed catalog link: {link}",
            details={"link": link}
        ) from e

    if raw_type is None:
        if link_type is None:
            raise ResolutionError(
                ResolutionErrorKind.MALFORMED_LINK,
                f"Bare ID needs an explicit link type: {link}",
                details={"link": link}
            )
        return link_type, catalog_id

    try:
        parsed_type = LinkType(raw_type)
    except ValueError as e:
        raise ResolutionError(
            ResolutionErrorKind.MALFORMED_LINK,
            f"Unsupported link type '{raw_type}': only album and playlist links are accepted",
            details={"link": link, "link_type": raw_type}
        ) from e

    if link_type is not None and link_type is not parsed_type:
        raise ResolutionError(
            ResolutionErrorKind.MALFORMED_LINK,
            f"Expected a {link_type.value} link, got a {parsed_type.value} link: {link}",
            details={"link": link, "expected": link_type.value, "actual": parsed_type.value}
        )

    return parsed_type, catalog_id


def is_acquirable(track: dict[str, Any] | None) -> bool:
    """
    Check whether a track object can be acquired.

    Rejected:
        - None (removed from the catalog)
        - Local files (is_local = True)
        - Podcast episodes (type != 'track')
        - Missing id, zero duration or empty name
    """
    if track is None or not isinstance(track, dict):
        return False

    if track.get("is_local", False):
        return False

    if track.get("type", "track") != "track":
        return False

    if not track.get("id"):
        return False

    if not track.get("duration_ms"):
        return False

    if not (track.get("name") or "").strip():
        return False

    return True


class TrackResolver:
    """
    Turns album/playlist links into ResolvedCollections.

    Args:
        client: A CatalogClient, or any object with album(),
                album_all_tracks(), tracks(), playlist() and
                playlist_all_items().
    """

    def __init__(self, client) -> None:
        self._client = client

    def resolve(self, link: str, link_type: LinkType | None = None) -> ResolvedCollection:
        """
        Resolve a link to its descriptors in catalog order.

        Raises:
            ResolutionError: NOT_FOUND, RATE_LIMITED, MALFORMED_LINK or
                             SERVICE_FAILURE.
        """
        resolved_type, catalog_id = parse_link(link, link_type)
        logger.info(f"Resolving {resolved_type.value}: {catalog_id}")

        if resolved_type is LinkType.ALBUM:
            collection = self._resolve_album(catalog_id)
        else:
            collection = self._resolve_playlist(catalog_id)

        logger.info(f"{collection.name}: {len(collection.tracks)} tracks")
        return collection

    def _resolve_album(self, album_id: str) -> ResolvedCollection:
        album_data = self._client.album(album_id)
        album_name = album_data.get("name") or "Unknown Album"

        simplified = [t for t in self._client.album_all_tracks(album_id) if is_acquirable(t)]

        # Simplified album tracks lack external_ids; full objects carry the ISRC
        full_tracks = self._client.tracks([t["id"] for t in simplified])

        descriptors = []
        for simple, full in zip(simplified, full_tracks):
            track_data = full if is_acquirable(full) else simple
            descriptors.append(TrackDescriptor.from_spotify_api(track_data, album_data=album_data))

        return ResolvedCollection(
            name=album_name,
            link_type=LinkType.ALBUM,
            catalog_id=album_id,
            tracks=tuple(descriptors),
        )

    def _resolve_playlist(self, playlist_id: str) -> ResolvedCollection:
        playlist_data = self._client.playlist(playlist_id)
        playlist_name = playlist_data.get("name") or "Unknown Playlist"

        items = self._client.playlist_all_items(playlist_id)

        descriptors = []
        skipped = 0
        for item in items:
            track_data = item.get("track") if isinstance(item, dict) else None
            if not is_acquirable(track_data):
                skipped += 1
                continue
            descriptors.append(TrackDescriptor.from_spotify_api(track_data))

        if skipped:
            logger.warning(f"Skipped {skipped} playlist items (local files, episodes, unavailable)")

        return ResolvedCollection(
            name=playlist_name,
            link_type=LinkType.PLAYLIST,
            catalog_id=playlist_id,
            tracks=tuple(descriptors),
        )
