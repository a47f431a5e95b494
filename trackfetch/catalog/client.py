"""
Spotify catalog client for trackfetch.

A thin wrapper around spotipy that exposes only the read operations the
resolver needs and translates every spotipy/requests failure into a
ResolutionError with a precise kind:

    HTTP 404 / 400           NOT_FOUND
    HTTP 429                 RATE_LIMITED
    token request refused    SERVICE_FAILURE
    anything else            SERVICE_FAILURE

The client is an ordinary object created per run and injected into the
resolver. Tests pass any object with the same methods.

Authentication:
    Client Credentials only (client_id + client_secret). Public albums and
    playlists need nothing more.

Usage:
    client = CatalogClient.from_credentials(client_id, client_secret)
    album = client.album("4aawyAB9vmqN3uQ7FjRGTy")
    items = client.playlist_all_items("37i9dQZF1DXcBWIGoYBM5M")
"""

from contextlib import contextmanager
from typing import Any, Generator

import requests
import spotipy
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOauthError

from trackfetch.core.exceptions import ResolutionError, ResolutionErrorKind
from trackfetch.core.logger import get_logger

logger = get_logger(__name__)


# Spotify API page/batch limits
PLAYLIST_PAGE_SIZE = 100
ALBUM_PAGE_SIZE = 50
TRACKS_BATCH_SIZE = 50

PLAYLIST_FIELDS = "id,name,description,owner,external_urls,tracks.total,uri"


@contextmanager
def _translate_errors(resource: str, identifier: str) -> Generator[None, None, None]:
    """Turn spotipy/requests exceptions into ResolutionError."""
    try:
        yield
    except spotipy.SpotifyException as e:
        details = {resource: identifier, "http_status": e.http_status}
        if e.http_status == 429:
            raise ResolutionError(
                ResolutionErrorKind.RATE_LIMITED,
                f"Rate limited while fetching {resource}: {identifier}",
                details=details
            ) from e
        if e.http_status in (400, 404):
            raise ResolutionError(
                ResolutionErrorKind.NOT_FOUND,
                f"{resource.capitalize()} not found: {identifier}",
                details=details
            ) from e
        raise ResolutionError(
            ResolutionErrorKind.SERVICE_FAILURE,
            f"Failed to fetch {resource}: {e}",
            details={**details, "original_error": str(e)}
        ) from e
    except SpotifyOauthError as e:
        # Token request refused: bad client id or secret
        raise ResolutionError(
            ResolutionErrorKind.SERVICE_FAILURE,
            f"Catalog authentication failed while fetching {resource}: {e}",
            details={resource: identifier, "auth_error": getattr(e, "error", None), "original_error": str(e)}
        ) from e
    except requests.exceptions.RequestException as e:
        raise ResolutionError(
            ResolutionErrorKind.SERVICE_FAILURE,
            f"Network error while fetching {resource}: {e}",
            details={resource: identifier, "original_error": str(e)}
        ) from e


class CatalogClient:
    """
    Read-only access to Spotify albums, playlists and tracks.

    Attributes:
        _spotify: The underlying spotipy.Spotify instance.
    """

    def __init__(self, spotify_instance: spotipy.Spotify) -> None:
        self._spotify = spotify_instance

    @classmethod
    def from_credentials(cls, client_id: str, client_secret: str) -> "CatalogClient":
        """
        Build a client using the Client Credentials flow.

        No request is made here; bad credentials surface on the first call
        as ResolutionError(SERVICE_FAILURE).
        """
        auth_manager = SpotifyClientCredentials(
            client_id=client_id,
            client_secret=client_secret
        )
        return cls(spotipy.Spotify(auth_manager=auth_manager, retries=3))

    # =========================================================================
    # Album Operations
    # =========================================================================

    def album(self, album_id: str) -> dict[str, Any]:
        """Album object, including the first page of its simplified tracks."""
        with _translate_errors("album", album_id):
            result = self._spotify.album(album_id)
        if result is None:
            raise ResolutionError(
                ResolutionErrorKind.NOT_FOUND,
                f"Album not found: {album_id}",
                details={"album": album_id}
            )
        return result

    def album_all_tracks(self, album_id: str) -> list[dict[str, Any]]:
        """
        All simplified track objects of an album, in disc/track order.

        Paginates with album_tracks() until 'next' is None.
        """
        all_items: list[dict[str, Any]] = []
        offset = 0

        while True:
            with _translate_errors("album", album_id):
                response = self._spotify.album_tracks(album_id, limit=ALBUM_PAGE_SIZE, offset=offset)
            if response is None:
                break
            all_items.extend(response.get("items", []))
            if response.get("next") is None:
                break
            offset += ALBUM_PAGE_SIZE

        return all_items

    # =========================================================================
    # Track Operations
    # =========================================================================

    def tracks(self, track_ids: list[str]) -> list[dict[str, Any] | None]:
        """
        Full track objects for many IDs, TRACKS_BATCH_SIZE per request.

        The result has one entry per input ID, in input order; None where
        the catalog returned nothing.
        """
        results: list[dict[str, Any] | None] = []

        for i in range(0, len(track_ids), TRACKS_BATCH_SIZE):
            batch = track_ids[i:i + TRACKS_BATCH_SIZE]
            with _translate_errors("tracks", ",".join(batch)):
                response = self._spotify.tracks(batch)
            if response and "tracks" in response:
                results.extend(response["tracks"])
            else:
                results.extend([None] * len(batch))

        return results

    # =========================================================================
    # Playlist Operations
    # =========================================================================

    def playlist(self, playlist_id: str) -> dict[str, Any]:
        """Playlist metadata (name, owner...). Does NOT include the items."""
        with _translate_errors("playlist", playlist_id):
            result = self._spotify.playlist(playlist_id, fields=PLAYLIST_FIELDS)
        if result is None:
            raise ResolutionError(
                ResolutionErrorKind.NOT_FOUND,
                f"Playlist not found: {playlist_id}",
                details={"playlist": playlist_id}
            )
        return result

    def playlist_all_items(self, playlist_id: str) -> list[dict[str, Any]]:
        """
        Every playlist item wrapper ({'track': ..., 'added_at': ...}) in
        playlist order, paginating PLAYLIST_PAGE_SIZE at a time.
        """
        all_items: list[dict[str, Any]] = []
        offset = 0

        while True:
            with _translate_errors("playlist", playlist_id):
                response = self._spotify.playlist_items(
                    playlist_id,
                    limit=PLAYLIST_PAGE_SIZE,
                    offset=offset,
                    additional_types=["track"]
                )
            if response is None:
                break
            all_items.extend(response.get("items", []))
            if response.get("next") is None:
                break
            offset += PLAYLIST_PAGE_SIZE

        logger.debug(f"Fetched {len(all_items)} items from playlist {playlist_id}")
        return all_items
