"""
Library conversion: re-encode placed files to another format with FFmpeg.

A converted file replaces the original under the same name with the new
extension:

    Queen/A Night at the Opera/Queen - Bohemian Rhapsody.mp3
        -> Queen/A Night at the Opera/Queen - Bohemian Rhapsody.flac

Steps for one file:
    1. FFmpeg writes the new encoding into a private work directory
    2. LibraryPlacer.place() moves it next to the original atomically
    3. The dedup cache record that pointed at the original (if any) is
       rewritten with the new path, format and checksum
    4. The original is deleted

Until step 4 the original is untouched, so a failure at any step leaves
the library as it was (plus, at worst, the new file when only the cache
write or the delete failed).

Command:
    ffmpeg -hide_banner -nostdin -y -i IN -map 0:a -map 0:v? -c:v copy
           -disposition:v attached_pic -map_metadata 0
           -codec:a CODEC [-b:a BITRATE] OUT

Text tags and embedded cover art are carried over by FFmpeg. FLAC is
lossless and takes no bitrate.

Failures (all DownloadError.EXTERNAL_TOOL_FAILURE):
    FFmpeg missing      exit_code None
    non-zero exit       exit_code set, stderr tail in details
    timeout             timed_out=True
    no output file      exit_code 0
"""

import dataclasses
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Sequence

from trackfetch.core.database import DedupCache, file_checksum, now_iso
from trackfetch.core.exceptions import DownloadError, DownloadErrorKind, PlacementError
from trackfetch.core.logger import get_logger, log_track_failure
from trackfetch.core.profile import SUPPORTED_FORMATS, build_profile
from trackfetch.library.placer import LibraryPlacer

logger = get_logger(__name__)


DEFAULT_COMMAND = ("ffmpeg",)
DEFAULT_TIMEOUT = 600.0

CODECS = {
    "mp3": "libmp3lame",
    "m4a": "aac",
    "flac": "flac",
}

# Lossy targets only
BITRATES = {
    "mp3": {"high": "320k", "medium": "192k", "low": "128k"},
    "m4a": {"high": "256k", "medium": "192k", "low": "128k"},
}

AUDIO_EXTENSIONS = frozenset(f".{fmt}" for fmt in SUPPORTED_FORMATS)

STDERR_TAIL_LINES = 20


class AudioConverter:
    """
    Runs FFmpeg for one file at a time.

    Attributes:
        command: Command prefix that runs FFmpeg.
        timeout: Seconds before the process is killed.
    """

    def __init__(self, command: Sequence[str] | None = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.command = list(command) if command is not None else list(DEFAULT_COMMAND)
        self.timeout = timeout

    def build_command(self, source: Path, output: Path, fmt: str, quality: str) -> list[str]:
        args = [
            *self.command,
            "-hide_banner",
            "-nostdin",
            "-y",
            "-i", str(source),
            "-map", "0:a",
            "-map", "0:v?",
            "-c:v", "copy",
            "-disposition:v", "attached_pic",
            "-map_metadata", "0",
            "-codec:a", CODECS[fmt],
        ]
        bitrate = BITRATES.get(fmt, {}).get(quality)
        if bitrate is not None:
            args.extend(["-b:a", bitrate])
        args.append(str(output))
        return args

    def convert(self, source: Path, work_dir: Path, fmt: str, quality: str) -> Path:
        """
        Encode source as fmt into work_dir.

        Returns:
            Path of the new file inside work_dir.

        Raises:
            DownloadError: See module docstring.
        """
        output = work_dir / f"{source.stem}.{fmt}"
        cmd = self.build_command(source, output, fmt, quality)
        logger.debug(f"Running converter: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise DownloadError(
                DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
                f"Converter timed out after {self.timeout:.0f}s",
                timed_out=True,
                details={"source": str(source)}
            ) from e
        except OSError as e:
            raise DownloadError(
                DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
                f"Could not start converter (is FFmpeg installed?): {e}",
                details={"command": cmd[0], "original_error": str(e)}
            ) from e

        stderr_lines = [line for line in (result.stderr or "").splitlines() if line.strip()]
        stderr_tail = stderr_lines[-STDERR_TAIL_LINES:]

        if result.returncode != 0:
            last = stderr_tail[-1] if stderr_tail else "no error output"
            raise DownloadError(
                DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
                f"Converter exited with code {result.returncode}: {last}",
                exit_code=result.returncode,
                details={"source": str(source), "stderr": "\n".join(stderr_tail)}
            )

        if not output.is_file() or output.stat().st_size == 0:
            raise DownloadError(
                DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
                f"Converter reported success but produced no {fmt} file",
                exit_code=0,
                details={"source": str(source)}
            )

        return output


@dataclass(frozen=True)
class ConversionOutcome:
    """Result for one input file. status is converted, skipped or failed."""
    source: Path
    status: str
    path: Path | None = None
    error_kind: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict:
        return {
            "source": str(self.source),
            "status": self.status,
            "path": str(self.path) if self.path else None,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }


def collect_audio_files(paths: Iterable[Path]) -> list[Path]:
    """
    Expand files and directories (recursively) into audio files, sorted
    and without duplicates. Hidden temp files from placement are skipped.
    """
    found: set[Path] = set()
    for path in paths:
        if path.is_dir():
            candidates = (p for p in path.rglob("*") if p.is_file())
        else:
            candidates = [path]
        for candidate in candidates:
            if candidate.suffix.lower() in AUDIO_EXTENSIONS and not candidate.name.startswith("."):
                found.add(candidate)
    return sorted(found)


class LibraryConverter:
    """
    Converts library files and keeps the dedup cache pointing at them.

    Files are handled one after another. CacheError is not caught: a
    cache that cannot be written ends the whole conversion.
    """

    def __init__(self, converter: AudioConverter, cache: DedupCache, root: Path) -> None:
        self.converter = converter
        self.cache = cache
        self.root = root

    def convert_all(
        self,
        files: Sequence[Path],
        fmt: str,
        quality: str,
        on_done: Callable[[ConversionOutcome], None] | None = None
    ) -> list[ConversionOutcome]:
        outcomes = []
        for path in files:
            outcome = self.convert_file(path, fmt, quality)
            outcomes.append(outcome)
            if on_done is not None:
                on_done(outcome)
        return outcomes

    def convert_file(self, path: Path, fmt: str, quality: str) -> ConversionOutcome:
        """Convert one file; failures are logged and returned, not raised."""
        profile = build_profile(format=fmt, quality=quality)
        if path.suffix.lower() == profile.extension:
            logger.debug(f"Already {fmt}: {path}")
            return ConversionOutcome(source=path, status="skipped", path=path)

        destination = path.with_suffix(profile.extension)
        work_dir = Path(tempfile.mkdtemp(prefix="trackfetch_convert_"))
        try:
            if destination.exists():
                raise PlacementError(
                    f"Refusing to overwrite existing file {destination.name}",
                    details={"source": str(path), "destination": str(destination)}
                )
            produced = self.converter.convert(path, work_dir, fmt, quality)
            LibraryPlacer(self.root, profile).place(produced, destination)
        except (DownloadError, PlacementError) as e:
            log_track_failure(
                logger,
                track_name=path.name,
                artist="Conversion",
                catalog_url=str(path),
                kind=e.kind_label,
                reason=e.message,
            )
            return ConversionOutcome(
                source=path,
                status="failed",
                error_kind=e.kind_label,
                error_message=e.message,
            )
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        record = self.cache.find_by_path(path)
        if record is not None:
            self.cache.commit(dataclasses.replace(
                record,
                file_path=str(destination),
                format=fmt,
                tagged_at=now_iso(),
                checksum=file_checksum(destination),
            ))

        try:
            path.unlink()
        except OSError as e:
            logger.warning(f"Converted but could not remove original {path}: {e}")

        logger.info(f"Converted: {path.name} -> {destination.name}")
        return ConversionOutcome(source=path, status="converted", path=destination)
