"""
Album art download and size fitting.

Cover art is downloaded once per URL per run (many tracks of an album
share it) and then fitted to the run's OutputProfile:

    1. Decode with Pillow, convert to RGB (drops alpha / palettes)
    2. Downsize so the longer edge is at most art_max_px (LANCZOS,
       aspect ratio kept, never upscaled)
    3. Encode JPEG at quality 85, then 80, 70, ... 30 until the result
       fits art_max_bytes
    4. Still too big: no art at all (None)

Constrained players choke on large embedded images, so "no art" is the
correct outcome when the cap cannot be met, not an error.
"""

import threading
from io import BytesIO

import requests
from PIL import Image, UnidentifiedImageError

from trackfetch.core.logger import get_logger

logger = get_logger(__name__)


JPEG_QUALITY_STEPS = (85, 80, 70, 60, 50, 40, 30)

ART_REQUEST_TIMEOUT = 15  # seconds

USER_AGENT = "trackfetch/1.0"


def fit_artwork(data: bytes, max_px: int, max_bytes: int) -> bytes | None:
    """
    Re-encode image data to fit both caps.

    Args:
        data: Image bytes in any format Pillow can read.
        max_px: Maximum width and height.
        max_bytes: Maximum encoded size.

    Returns:
        JPEG bytes with both dimensions <= max_px and len <= max_bytes,
        or None if the image is unreadable or cannot be made small enough.

    Example:
        art = fit_artwork(raw, max_px=128, max_bytes=64 * 1024)
    """
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            if img.mode != "RGB":
                img = img.convert("RGB")
            else:
                img = img.copy()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Unreadable album art ({len(data)} bytes): {e}")
        return None
    except Image.DecompressionBombError as e:
        logger.warning(f"Album art rejected as oversized: {e}")
        return None

    img.thumbnail((max_px, max_px), Image.Resampling.LANCZOS)

    for quality in JPEG_QUALITY_STEPS:
        output = BytesIO()
        img.save(output, format="JPEG", quality=quality, optimize=True)
        encoded = output.getvalue()
        if len(encoded) <= max_bytes:
            return encoded

    logger.warning(
        f"Album art still {len(encoded)} bytes at quality {JPEG_QUALITY_STEPS[-1]} "
        f"(cap {max_bytes}); embedding no art"
    )
    return None


class ArtworkFetcher:
    """
    Downloads cover images through one shared requests.Session.

    Each URL is fetched at most once per instance; failures are cached as
    None too, so a broken URL is not hammered by every track of an album.

    Thread Safety:
        fetch() may be called from any worker. Concurrent calls for the
        same URL wait for the first download instead of repeating it.
    """

    def __init__(self, session: requests.Session | None = None, timeout: float = ART_REQUEST_TIMEOUT) -> None:
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self.timeout = timeout
        self._cache: dict[str, bytes | None] = {}
        self._url_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def fetch(self, url: str | None) -> bytes | None:
        """
        Raw image bytes for url, or None if there is no URL or the
        download failed (logged as a warning).
        """
        if not url:
            return None

        with self._lock:
            url_lock = self._url_locks.setdefault(url, threading.Lock())

        with url_lock:
            if url in self._cache:
                return self._cache[url]
            data = self._download(url)
            self._cache[url] = data
            return data

    def _download(self, url: str) -> bytes | None:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.content
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to download album art from {url}: {e}")
            return None

    def close(self) -> None:
        self.session.close()
