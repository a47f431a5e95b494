"""
Library placement: destination paths, atomic file placement, playlists.

Layout (normal profile, folder_depth 2, unicode names):

    root/
    ├── Queen/
    │   └── A Night at the Opera/
    │       └── Queen - Bohemian Rhapsody.mp3
    └── My Playlist.m3u

Layout (portable profile, folder_depth 0, [A-Za-z0-9_-] names):

    root/
    ├── Queen_-_Bohemian_Rhapsody.mp3
    ├── Beyonce_-_Halo.mp3
    └── My_Playlist.m3u

Names are capped at profile.max_filename_len characters including the
extension. Two different tracks that map to the same name get a numeric
suffix, "_2" in portable mode and " (2)" otherwise, assigned in catalog
order so a rerun gives the same paths.

Files are never written in place: the content goes to a hidden temp file
in the destination directory, is fsynced, and os.replace() moves it over
the final name. A crash leaves at most a stray hidden temp file.
"""

import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from trackfetch.catalog.models import TrackDescriptor
from trackfetch.core.exceptions import PlacementError
from trackfetch.core.logger import get_logger
from trackfetch.core.profile import FilenameCharset, OutputProfile
from trackfetch.utils import UNKNOWN_COMPONENT, portable_name, sanitize_filename

logger = get_logger(__name__)


PLAYLIST_EXTENSION = ".m3u"

_COPY_CHUNK_SIZE = 1024 * 1024

_PORTABLE_PART = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True)
class LibraryEntry:
    """A placed track and its playlist line."""
    descriptor: TrackDescriptor
    path: Path


class LibraryPlacer:
    """
    Computes destinations and writes files into the library.

    Attributes:
        root: Library root directory.
        profile: The run's OutputProfile (naming rules and depth).
        playlist_dir: Where playlist files go (default: root).
    """

    def __init__(self, root: Path, profile: OutputProfile, playlist_dir: Path | None = None) -> None:
        self.root = root
        self.profile = profile
        self.playlist_dir = playlist_dir if playlist_dir is not None else root

    # =========================================================================
    # Naming
    # =========================================================================

    @property
    def _portable(self) -> bool:
        return self.profile.filename_charset is FilenameCharset.PORTABLE

    def _clean(self, text: str) -> str:
        return portable_name(text) if self._portable else sanitize_filename(text)

    def _fit(self, stem: str, extension: str = "", suffix: str = "") -> str:
        """Truncate stem so stem + suffix + extension fits max_filename_len."""
        budget = self.profile.max_filename_len - len(suffix) - len(extension)
        trimmed = stem[:budget].rstrip(" ._") or UNKNOWN_COMPONENT[:budget]
        return f"{trimmed}{suffix}{extension}"

    def _suffix(self, n: int) -> str:
        return f"_{n}" if self._portable else f" ({n})"

    def _stem(self, descriptor: TrackDescriptor) -> str:
        if self._portable:
            return portable_name(f"{descriptor.artist} - {descriptor.title}")
        return f"{sanitize_filename(descriptor.artist)} - {sanitize_filename(descriptor.title)}"

    def _directory(self, descriptor: TrackDescriptor) -> Path:
        if self.profile.folder_depth == 0:
            return self.root
        return (
            self.root
            / self._fit(self._clean(descriptor.artist))
            / self._fit(self._clean(descriptor.album))
        )

    def destination_for(self, descriptor: TrackDescriptor, n: int = 1) -> Path:
        """
        The n-th candidate path for a descriptor (n=1: no suffix).

        Examples (normal):
            root/Queen/A Night at the Opera/Queen - Bohemian Rhapsody.mp3
            root/Queen/A Night at the Opera/Queen - Bohemian Rhapsody (2).mp3
        """
        suffix = self._suffix(n) if n > 1 else ""
        filename = self._fit(self._stem(descriptor), self.profile.extension, suffix)
        return self._directory(descriptor) / filename

    def fits_layout(self, path: Path) -> bool:
        """
        True if path is a name this placer could have produced: under the
        root at the profile's folder depth, with the profile's extension,
        length limit and character set.
        """
        try:
            relative = path.relative_to(self.root)
        except ValueError:
            return False
        if len(relative.parts) != self.profile.folder_depth + 1:
            return False
        if path.suffix != self.profile.extension:
            return False
        if any(len(part) > self.profile.max_filename_len for part in relative.parts):
            return False
        if self._portable:
            return all(_PORTABLE_PART.fullmatch(part) for part in (*relative.parts[:-1], path.stem))
        return True

    def plan(
        self,
        descriptors: Sequence[TrackDescriptor],
        fingerprints: Sequence[str],
        owned: Mapping[str, Path]
    ) -> list[Path]:
        """
        Assign a destination to every descriptor, in catalog order.

        Args:
            descriptors: Tracks in catalog order.
            fingerprints: Fingerprint of each descriptor (same order).
            owned: fingerprint -> path of files already in the library for
                   that fingerprint (from the dedup cache).

        Returns:
            One path per descriptor. Repeated fingerprints share a path.

        Behavior:
            - A fingerprint that already owns a file keeps that path.
            - A path claimed by another fingerprint of this run, or taken
              on disk by a file that is not this track's, is skipped in
              favour of the next numeric suffix.
        """
        if len(descriptors) != len(fingerprints):
            raise ValueError("descriptors and fingerprints differ in length")

        by_fingerprint: dict[str, Path] = {}
        claimed: dict[Path, str] = {}
        owned_paths = {path: fp for fp, path in owned.items()}

        # Owned paths are reserved up front so an earlier track cannot take them
        for fp in fingerprints:
            if fp in owned and fp not in by_fingerprint:
                by_fingerprint[fp] = owned[fp]
                claimed[owned[fp]] = fp

        destinations = []
        for descriptor, fp in zip(descriptors, fingerprints):
            if fp not in by_fingerprint:
                n = 1
                while True:
                    candidate = self.destination_for(descriptor, n)
                    taken_by = claimed.get(candidate)
                    foreign_on_disk = candidate.exists() and owned_paths.get(candidate) != fp
                    if taken_by is None and not foreign_on_disk:
                        break
                    n += 1
                if n > 1:
                    logger.debug(f"Name collision for {descriptor.search_query}, using {candidate.name}")
                by_fingerprint[fp] = candidate
                claimed[candidate] = fp
            destinations.append(by_fingerprint[fp])

        return destinations

    # =========================================================================
    # Writing
    # =========================================================================

    def place(self, source: Path, destination: Path) -> Path:
        """
        Atomically copy source to destination.

        Raises:
            PlacementError: If the directory cannot be created or the copy
                            or rename fails. No file appears at destination.
        """
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with open(source, "rb") as src:
                _atomic_write(destination, lambda out: _copy_stream(src, out))
        except OSError as e:
            raise PlacementError(
                f"Failed to place {destination.name}: {e}",
                details={"source": str(source), "destination": str(destination), "original_error": str(e)}
            ) from e

        logger.debug(f"Placed: {destination}")
        return destination

    def playlist_path(self, name: str) -> Path:
        return self.playlist_dir / self._fit(self._clean(name), PLAYLIST_EXTENSION)

    def write_playlist(self, name: str, entries: Sequence[LibraryEntry]) -> Path:
        """
        Write an extended M3U for entries, in the given order.

        Paths are relative to the playlist file's directory, with "/"
        separators.

        Raises:
            PlacementError: If the file cannot be written.
        """
        playlist_path = self.playlist_path(name)

        lines = ["#EXTM3U"]
        for entry in entries:
            seconds = round(entry.descriptor.duration_ms / 1000)
            relative = Path(os.path.relpath(entry.path, self.playlist_dir)).as_posix()
            lines.append(f"#EXTINF:{seconds},{entry.descriptor.artist} - {entry.descriptor.title}")
            lines.append(relative)
        content = ("\n".join(lines) + "\n").encode("utf-8")

        try:
            self.playlist_dir.mkdir(parents=True, exist_ok=True)
            _atomic_write(playlist_path, lambda out: out.write(content))
        except OSError as e:
            raise PlacementError(
                f"Failed to write playlist {playlist_path.name}: {e}",
                details={"path": str(playlist_path), "original_error": str(e)}
            ) from e

        logger.info(f"Playlist written: {playlist_path} ({len(entries)} tracks)")
        return playlist_path


def _copy_stream(src, out) -> None:
    for chunk in iter(lambda: src.read(_COPY_CHUNK_SIZE), b""):
        out.write(chunk)


def _atomic_write(destination: Path, write) -> None:
    """
    Call write(file) on a hidden temp file next to destination, fsync it,
    then rename it over destination.
    """
    fd, temp_name = tempfile.mkstemp(prefix=".trackfetch-", suffix=".part", dir=destination.parent)
    try:
        with os.fdopen(fd, "wb") as out:
            write(out)
            out.flush()
            os.fsync(out.fileno())
        os.replace(temp_name, destination)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise
