"""
Media extractor: runs yt-dlp as an external process.

The extractor downloads the audio stream of one URL and transcodes it to
the profile's format inside a private work directory. It runs yt-dlp as a
child process (not in-process) so that a stuck download can be killed on
timeout or on run cancellation without taking a worker thread with it.

Command:
    python -m yt_dlp -x --audio-format FMT --audio-quality Q --no-playlist
                     --newline --progress -o WORK/%(id)s.%(ext)s [--cookies F] URL

Progress:
    With --newline, yt-dlp prints one "[download]  42.3% of ..." line per
    update; those become download percentages. The first
    "[ExtractAudio]" line marks the switch to post-processing.

Failures (all DownloadError):
    non-zero exit     EXTERNAL_TOOL_FAILURE(exit_code), transient if stderr
                      looks like rate limiting, 403, network or empty data
    timeout           EXTERNAL_TOOL_FAILURE, timed_out=True, transient
    no output file    EXTERNAL_TOOL_FAILURE, transient
    terminated        CANCELLED

Dependencies:
    - yt-dlp (invoked as a module of the running interpreter by default)
    - FFmpeg (used by yt-dlp for extraction; must be on PATH)
"""

import random
import re
import subprocess
import sys
import threading
from collections import deque
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Sequence

from trackfetch.core.exceptions import DownloadError, DownloadErrorKind
from trackfetch.core.logger import get_logger
from trackfetch.core.profile import OutputProfile

logger = get_logger(__name__)


# =============================================================================
# Retry Configuration
# =============================================================================

BASE_DELAY = 1.5  # seconds
MAX_DELAY = 15.0  # seconds
JITTER_FACTOR = 0.3

DEFAULT_TIMEOUT = 600.0

# yt-dlp --audio-quality: 0 (best) .. 10 (worst) VBR
QUALITY_MAP = {
    "high": "0",
    "medium": "5",
    "low": "9",
}

DEFAULT_COMMAND = (sys.executable, "-m", "yt_dlp")

# Lines of stderr kept for error classification and reports
STDERR_TAIL_LINES = 40

_PROGRESS_PATTERN = re.compile(r"\[download\]\s+(\d+(?:\.\d+)?)%")
_EXTRACT_MARKER = "[ExtractAudio]"


class ErrorType(Enum):
    """Classification of extractor errors."""
    FORBIDDEN = auto()          # 403 / no data
    RATE_LIMITED = auto()       # 429
    FORMAT_UNAVAILABLE = auto() # requested format not offered
    AGE_RESTRICTED = auto()     # requires sign-in / cookies
    NETWORK_ERROR = auto()      # connection issues
    VIDEO_UNAVAILABLE = auto()  # removed / private
    EMPTY_FILE = auto()         # nothing downloaded
    UNKNOWN = auto()


TRANSIENT_ERROR_TYPES = frozenset({
    ErrorType.FORBIDDEN,
    ErrorType.RATE_LIMITED,
    ErrorType.FORMAT_UNAVAILABLE,
    ErrorType.NETWORK_ERROR,
    ErrorType.EMPTY_FILE,
})


def classify_error(error_message: str) -> ErrorType:
    """
    Classify yt-dlp error output.

    Rate limiting is checked FIRST: YouTube's rate-limit message also
    contains "video unavailable".
    """
    msg = error_message.lower()

    if any(x in msg for x in ["rate-limited", "rate limit", "429", "too many requests", "try again later"]):
        return ErrorType.RATE_LIMITED

    if "403" in msg or "forbidden" in msg or "did not get any data" in msg:
        return ErrorType.FORBIDDEN

    if "format" in msg and ("not available" in msg or "unavailable" in msg):
        return ErrorType.FORMAT_UNAVAILABLE

    if "sign in" in msg or "confirm your age" in msg or "age-restricted" in msg:
        return ErrorType.AGE_RESTRICTED

    if any(x in msg for x in ["connection", "timed out", "timeout", "network", "urlopen error"]):
        return ErrorType.NETWORK_ERROR

    if any(x in msg for x in ["video unavailable", "private video", "removed", "deleted"]):
        return ErrorType.VIDEO_UNAVAILABLE

    if "file is empty" in msg or "empty file" in msg:
        return ErrorType.EMPTY_FILE

    return ErrorType.UNKNOWN


def calculate_backoff(attempt: int, base_delay: float = BASE_DELAY) -> float:
    """
    Exponential backoff delay with jitter.

    Args:
        attempt: Completed attempts so far, minus one (0-indexed).
        base_delay: Base delay in seconds.
    """
    delay = min(base_delay * (2 ** attempt), MAX_DELAY)
    jitter = delay * JITTER_FACTOR * (2 * random.random() - 1)
    return max(0.0, delay + jitter)


ProgressCallback = Callable[[str, float | None], None]


class MediaExtractor:
    """
    Spawns and supervises extractor processes.

    One instance may serve many runs and many worker threads at once.
    Cancellation is per call: extract() takes the run's cancel event and
    refuses to start, or reports CANCELLED, once it is set.
    terminate_active() kills the children running right now and nothing
    else, so a later run on the same instance starts clean.

    Attributes:
        command: Command prefix that runs yt-dlp.
        timeout: Seconds before a child is killed.
        cookie_file: Optional cookies.txt passed with --cookies.
    """

    def __init__(
        self,
        command: Sequence[str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        cookie_file: Path | None = None
    ) -> None:
        self.command = list(command) if command is not None else list(DEFAULT_COMMAND)
        self.timeout = timeout
        self.cookie_file = cookie_file
        self._active: set[subprocess.Popen] = set()
        self._terminated: set[subprocess.Popen] = set()
        self._lock = threading.Lock()

    def build_command(self, url: str, work_dir: Path, profile: OutputProfile) -> list[str]:
        args = [
            *self.command,
            "-x",
            "--audio-format", profile.format,
            "--audio-quality", QUALITY_MAP[profile.quality],
            "--no-playlist",
            "--newline",
            "--progress",
            "-o", str(work_dir / "%(id)s.%(ext)s"),
        ]
        if self.cookie_file is not None:
            args.extend(["--cookies", str(self.cookie_file)])
        args.append(url)
        return args

    def extract(
        self,
        url: str,
        work_dir: Path,
        profile: OutputProfile,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None
    ) -> Path:
        """
        Download and transcode url into work_dir.

        Args:
            url: Source watch URL.
            work_dir: Empty private directory for this attempt.
            profile: Gives the audio format and quality.
            on_progress: Called with ("download", pct) for each progress
                         line and ("extract", None) once post-processing
                         starts. Called from the calling thread.
            cancel_event: The run's cancel signal. Set before the call,
                          it refuses to start; set during it, the child
                          is killed and CANCELLED is raised.

        Returns:
            Path of the produced audio file.

        Raises:
            DownloadError: See module docstring.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise DownloadError(DownloadErrorKind.CANCELLED, "Run cancelled before extraction")

        cmd = self.build_command(url, work_dir, profile)
        logger.debug(f"Running extractor: {' '.join(cmd)}")

        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise DownloadError(
                DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
                f"Could not start extractor: {e}",
                details={"command": cmd[0], "original_error": str(e)}
            ) from e

        with self._lock:
            self._active.add(proc)
        # A cancel that landed between the check above and registration
        if cancel_event is not None and cancel_event.is_set():
            self._terminate(proc)

        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        stderr_thread = threading.Thread(
            target=self._drain, args=(proc.stderr, stderr_tail), daemon=True
        )
        stderr_thread.start()

        timed_out = threading.Event()

        def _on_timeout() -> None:
            timed_out.set()
            proc.kill()

        timer = threading.Timer(self.timeout, _on_timeout)
        timer.daemon = True
        timer.start()

        try:
            extracting = False
            for line in proc.stdout:
                if on_progress is None:
                    continue
                match = _PROGRESS_PATTERN.search(line)
                if match and not extracting:
                    on_progress("download", float(match.group(1)))
                elif _EXTRACT_MARKER in line and not extracting:
                    extracting = True
                    on_progress("extract", None)
            returncode = proc.wait()
        finally:
            timer.cancel()
            stderr_thread.join(timeout=5)
            proc.stdout.close()
            with self._lock:
                self._active.discard(proc)
                terminated = proc in self._terminated
                self._terminated.discard(proc)

        stderr_text = "\n".join(stderr_tail)

        if terminated or (cancel_event is not None and cancel_event.is_set()):
            raise DownloadError(DownloadErrorKind.CANCELLED, "Extraction terminated by cancellation")

        if timed_out.is_set():
            raise DownloadError(
                DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
                f"Extractor timed out after {self.timeout:.0f}s",
                timed_out=True,
                transient=True,
                details={"url": url, "stderr": stderr_text}
            )

        if returncode != 0:
            error_type = classify_error(stderr_text)
            raise DownloadError(
                DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
                f"Extractor exited with code {returncode} ({error_type.name}): {_last_line(stderr_text)}",
                exit_code=returncode,
                transient=error_type in TRANSIENT_ERROR_TYPES,
                details={"url": url, "error_type": error_type.name, "stderr": stderr_text}
            )

        return self._find_output_file(work_dir, profile, url)

    def terminate_active(self) -> None:
        """Kill every child running now. Calls made afterwards are unaffected."""
        with self._lock:
            procs = list(self._active)
        for proc in procs:
            self._terminate(proc)
        if procs:
            logger.debug(f"Terminated {len(procs)} extractor process(es)")

    def _terminate(self, proc: subprocess.Popen) -> None:
        with self._lock:
            if proc not in self._active:
                return
            self._terminated.add(proc)
        try:
            proc.terminate()
        except OSError:
            # Already exited
            pass

    @staticmethod
    def _drain(stream, sink: deque) -> None:
        for line in stream:
            sink.append(line.rstrip())
        stream.close()

    @staticmethod
    def _find_output_file(work_dir: Path, profile: OutputProfile, url: str) -> Path:
        produced = sorted(work_dir.glob(f"*{profile.extension}"))
        produced = [p for p in produced if p.is_file() and p.stat().st_size > 0]
        if not produced:
            raise DownloadError(
                DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
                f"Extractor reported success but produced no {profile.format} file",
                exit_code=0,
                transient=True,
                details={"url": url, "work_dir": str(work_dir)}
            )
        return produced[0]


def _last_line(text: str) -> str:
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else "no error output"
