"""Test configuration and fixtures"""

import sys
import tempfile
import textwrap
import threading
import time
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from trackfetch.catalog.models import TrackDescriptor
from trackfetch.core.database import DedupCache
from trackfetch.core.exceptions import DownloadError, DownloadErrorKind
from trackfetch.core.profile import normal_profile, portable_profile
from trackfetch.source.base import AudioSource
from trackfetch.source.models import CandidateSummary


# =============================================================================
# Catalog payloads
# =============================================================================

ALBUM_ID = "4aawyAB9vmqN3uQ7FjRGTy"
PLAYLIST_ID = "37i9dQZF1DXcBWIGoYBM5M"

ALBUM_ARTIST = {"id": "artist_1", "name": "Queen"}

ALBUM_DATA = {
    "id": ALBUM_ID,
    "name": "A Night at the Opera",
    "artists": [ALBUM_ARTIST],
    "release_date": "1975-11-21",
    "images": [
        {"url": "https://i.scdn.co/image/small", "width": 64, "height": 64},
        {"url": "https://i.scdn.co/image/large", "width": 640, "height": 640},
    ],
}


def make_track_data(
    track_id: str,
    name: str,
    artist: str = "Queen",
    duration_ms: int = 200000,
    track_number: int = 1,
    isrc: str | None = None,
    album: dict | None = None,
    simplified: bool = False
) -> dict:
    """Build a Spotify track object (full, or simplified album track)."""
    data = {
        "id": track_id,
        "name": name,
        "type": "track",
        "is_local": False,
        "artists": [{"id": f"id_{artist}", "name": artist}],
        "duration_ms": duration_ms,
        "track_number": track_number,
        "disc_number": 1,
        "external_urls": {"spotify": f"https://open.spotify.com/track/{track_id}"},
    }
    if not simplified:
        data["album"] = album if album is not None else ALBUM_DATA
        if isrc:
            data["external_ids"] = {"isrc": isrc}
    return data


ALBUM_TRACKS = [
    make_track_data("t1", "Death on Two Legs", duration_ms=223000, track_number=1, isrc="GBUM71029601"),
    make_track_data("t2", "Lazing on a Sunday Afternoon", duration_ms=68000, track_number=2, isrc="GBUM71029602"),
    make_track_data("t3", "Bohemian Rhapsody", duration_ms=354000, track_number=3, isrc="GBUM71029604"),
]


class FakeCatalogClient:
    """In-memory stand-in for CatalogClient."""

    def __init__(self, albums=None, album_tracks=None, playlists=None, playlist_items=None):
        self.albums = albums or {}
        self.album_tracks_by_id = album_tracks or {}
        self.playlists = playlists or {}
        self.playlist_items = playlist_items or {}
        self.full_tracks = {}
        for tracks in self.album_tracks_by_id.values():
            for track in tracks:
                self.full_tracks[track["id"]] = track
        self.tracks_calls = []

    def album(self, album_id):
        return self.albums[album_id]

    def album_all_tracks(self, album_id):
        return [
            {k: v for k, v in t.items() if k not in ("album", "external_ids")}
            for t in self.album_tracks_by_id[album_id]
        ]

    def tracks(self, track_ids):
        self.tracks_calls.append(list(track_ids))
        return [self.full_tracks.get(track_id) for track_id in track_ids]

    def playlist(self, playlist_id):
        return self.playlists[playlist_id]

    def playlist_all_items(self, playlist_id):
        return self.playlist_items[playlist_id]


@pytest.fixture
def album_client():
    return FakeCatalogClient(
        albums={ALBUM_ID: ALBUM_DATA},
        album_tracks={ALBUM_ID: ALBUM_TRACKS},
    )


# =============================================================================
# Audio source / extractor / art fakes
# =============================================================================

class FakeSource(AudioSource):
    """
    Returns one exact-match candidate per "artist - title" query, built
    from the known descriptors. overrides maps a query to a fixed list.
    """

    name = "fake"

    def __init__(self, tracks=(), overrides=None):
        super().__init__(max_retries=1, retry_delay_base=0)
        self.durations = {}
        for track in tracks:
            descriptor = TrackDescriptor.from_spotify_api(track)
            self.durations[descriptor.search_query] = (descriptor.catalog_id, descriptor.duration_ms)
        self.overrides = overrides or {}
        self.queries = []
        self._lock = threading.Lock()

    def search(self, query, cancel_event=None):
        with self._lock:
            self.queries.append(query)
        if query in self.overrides:
            return list(self.overrides[query])
        if query not in self.durations:
            return []
        catalog_id, duration_ms = self.durations[query]
        artist, _, title = query.partition(" - ")
        return [CandidateSummary(
            source_id=f"yt_{catalog_id}",
            title=title,
            uploader=artist,
            duration_ms=duration_ms,
            url=self.url_for(f"yt_{catalog_id}"),
            result_type="song",
        )]

    def url_for(self, source_id):
        return f"https://music.youtube.com/watch?v={source_id}"


class FakeExtractor:
    """
    In-process stand-in for MediaExtractor.

    failures maps a URL to a list of errors raised by successive calls;
    delays maps a URL to seconds slept before producing the file. With
    block=True a call waits until it is terminated or its run is
    cancelled.
    """

    def __init__(self, failures=None, delays=None, block=False):
        self.failures = {url: list(errors) for url, errors in (failures or {}).items()}
        self.delays = delays or {}
        self.block = block
        self.calls = []
        self.started = threading.Event()
        self._blocked = []
        self._lock = threading.Lock()

    def extract(self, url, work_dir, profile, on_progress=None, cancel_event=None):
        with self._lock:
            self.calls.append(url)
            pending = self.failures.get(url)
            error = pending.pop(0) if pending else None
        self.started.set()

        if cancel_event is not None and cancel_event.is_set():
            raise DownloadError(DownloadErrorKind.CANCELLED, "cancelled")
        if self.block:
            released = threading.Event()
            with self._lock:
                self._blocked.append(released)
            for _ in range(200):
                if released.is_set() or (cancel_event is not None and cancel_event.is_set()):
                    break
                time.sleep(0.05)
            raise DownloadError(DownloadErrorKind.CANCELLED, "terminated")
        if error is not None:
            raise error

        time.sleep(self.delays.get(url, 0))

        if on_progress is not None:
            on_progress("download", 10.0)
            on_progress("download", 60.0)
            on_progress("download", 100.0)
            on_progress("extract", None)

        output = work_dir / f"{url.rsplit('=', 1)[-1]}{profile.extension}"
        output.write_bytes(b"\x00" * 2048 + url.encode())
        return output

    def terminate_active(self):
        with self._lock:
            blocked, self._blocked = self._blocked, []
        for released in blocked:
            released.set()

    def calls_for(self, url):
        with self._lock:
            return self.calls.count(url)


class FakeArtworkFetcher:
    def __init__(self, data=None):
        self.data = data
        self.urls = []

    def fetch(self, url):
        self.urls.append(url)
        return self.data if url else None


def transient_error(message="HTTP Error 403: Forbidden"):
    return DownloadError(
        DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
        message,
        exit_code=1,
        transient=True,
    )


def permanent_error(message="Private video"):
    return DownloadError(
        DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
        message,
        exit_code=1,
        transient=False,
    )


def make_image_bytes(width: int, height: int, mode: str = "RGB", fmt: str = "PNG") -> bytes:
    """Random-noise image (hard to compress)."""
    import os
    channels = {"RGB": 3, "RGBA": 4, "L": 1}[mode]
    img = Image.frombytes(mode, (width, height), os.urandom(width * height * channels))
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


# =============================================================================
# Generic fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def cache(temp_dir):
    store = DedupCache(temp_dir / "cache.db")
    yield store
    store.close()


@pytest.fixture
def mp3_profile():
    return normal_profile("mp3", "high")


@pytest.fixture
def small_profile():
    return portable_profile("high")


@pytest.fixture
def sample_track_data():
    """Sample full track object, as returned by the tracks endpoint"""
    return make_track_data(
        "test_track_123",
        "Test Song",
        artist="Test Artist",
        duration_ms=210000,
        track_number=3,
        isrc="usum71703861",
    )


@pytest.fixture
def descriptor(sample_track_data):
    return TrackDescriptor.from_spotify_api(sample_track_data)


@pytest.fixture
def cover_jpeg():
    return make_image_bytes(600, 600, fmt="JPEG")


@pytest.fixture
def playlist_client():
    """Album tracks again, reached through a playlist (plus unusable items)."""
    items = [{"track": track} for track in ALBUM_TRACKS]
    items.insert(1, {"track": None})
    items.append({"track": {**ALBUM_TRACKS[0], "id": "local1", "is_local": True}})
    return FakeCatalogClient(
        playlists={PLAYLIST_ID: {"id": PLAYLIST_ID, "name": "Road Trip"}},
        playlist_items={PLAYLIST_ID: items},
    )


@pytest.fixture
def pipeline_factory(temp_dir, cache):
    """Build an AcquisitionPipeline wired to fakes."""
    from trackfetch.catalog.resolver import TrackResolver
    from trackfetch.match.engine import MatchEngine
    from trackfetch.pipeline import AcquisitionPipeline

    def factory(client, extractor, source=None, art=None, threads=2, output_dir=None):
        return AcquisitionPipeline(
            resolver=TrackResolver(client),
            cache=cache,
            engine=MatchEngine(source if source is not None else FakeSource(ALBUM_TRACKS)),
            extractor=extractor,
            output_dir=output_dir if output_dir is not None else temp_dir / "library",
            artwork_fetcher=FakeArtworkFetcher(art),
            threads=threads,
            max_attempts=3,
            retry_base_delay=0.01,
        )

    return factory


# =============================================================================
# yt-dlp stand-in
# =============================================================================

# Same arguments and progress output as yt-dlp. While a file named "hold"
# sits next to the script, it stalls after the download lines.
FAKE_YT_DLP = textwrap.dedent("""
    import pathlib
    import sys
    import time

    args = sys.argv[1:]
    template = args[args.index("-o") + 1]
    fmt = args[args.index("--audio-format") + 1]
    url = args[-1]
    hold = pathlib.Path(__file__).with_name("hold")

    if "fail403" in url:
        print("ERROR: unable to download video data: HTTP Error 403: Forbidden", file=sys.stderr)
        sys.exit(1)
    if "private" in url:
        print("ERROR: [youtube] abc: Private video", file=sys.stderr)
        sys.exit(1)

    for pct in ("0.0", "12.5", "50.0", "100.0"):
        print(f"[download]  {pct}% of    3.21MiB at  1.00MiB/s ETA 00:01", flush=True)

    if "sleep" in url:
        time.sleep(60)
    for _ in range(1200):
        if not hold.exists():
            break
        time.sleep(0.05)

    print(f"[ExtractAudio] Destination: {template}", flush=True)
    print("[download]  100.0% of    3.21MiB", flush=True)

    if "empty" in url:
        sys.exit(0)

    video_id = url.rsplit("=", 1)[-1]
    output = template.replace("%(id)s", video_id).replace("%(ext)s", fmt)
    pathlib.Path(output).write_bytes(b"fake audio data")
""")


@pytest.fixture
def fake_yt_dlp(temp_dir):
    """Command prefix running the yt-dlp stand-in."""
    script_dir = temp_dir / "bin"
    script_dir.mkdir(exist_ok=True)
    script = script_dir / "fake_yt_dlp.py"
    script.write_text(FAKE_YT_DLP, encoding="utf-8")
    return [sys.executable, str(script)]


# =============================================================================
# FFmpeg stand-in
# =============================================================================

# Takes FFmpeg's arguments and writes "<codec>:<input bytes>" to the output
# path. Inputs whose name contains "corrupt" fail like unreadable audio.
FAKE_FFMPEG = textwrap.dedent("""
    import pathlib
    import sys

    args = sys.argv[1:]
    source = pathlib.Path(args[args.index("-i") + 1])
    codec = args[args.index("-codec:a") + 1]
    output = pathlib.Path(args[-1])

    if "corrupt" in source.name:
        print(f"{source}: Invalid data found when processing input", file=sys.stderr)
        sys.exit(1)

    output.write_bytes(codec.encode() + b":" + source.read_bytes())
""")


@pytest.fixture
def fake_ffmpeg(temp_dir):
    """Command prefix running the FFmpeg stand-in."""
    script_dir = temp_dir / "bin"
    script_dir.mkdir(exist_ok=True)
    script = script_dir / "fake_ffmpeg.py"
    script.write_text(FAKE_FFMPEG, encoding="utf-8")
    return [sys.executable, str(script)]
