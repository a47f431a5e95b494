"""
Logging configuration for trackfetch.

This module sets up the logging system with multiple outputs:
    - Console: Real-time messages with tqdm-compatible formatting
    - log_full_<ts>.log: Complete log of all events (DEBUG and above)
    - log_errors_<ts>.log: Only ERROR and CRITICAL level messages
    - track_failures_<ts>.log: Tracks that ended FAILED, with catalog URL and reason
    - match_close_alternatives_<ts>.log: Matches that had near-tied candidates

Everything printed to screen is also saved to file, then filtered into
the specialized report files.

Log File Locations:
    All log files are created in <output>/logs/ with a per-run timestamp.

Usage:
    from trackfetch.core.logger import setup_logging, get_logger

    setup_logging(output_dir)  # Call once at startup
    logger = get_logger(__name__)

    logger.info("Starting run")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that colors the level name on console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        return f"{color}{record.levelname}{Colors.RESET}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Console handler that writes through tqdm.write().

    Progress bars redraw in place using carriage returns; writing log lines
    through tqdm keeps them above any active bar instead of breaking it.
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class ReportFileHandler(logging.Handler):
    """
    Base handler for human-readable report files.

    A report handler only reacts to records carrying its marker attribute
    (an `extra` field); every other record is ignored. Subclasses set
    MARKER and implement write_entry().

    Attributes:
        report_path: Path to the report file.
        report_file: Open file handle (None until open() is called).
    """

    MARKER = ""

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open the report file for writing (overwrites existing content)."""
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, self.MARKER):
            return

        if self.report_file is None:
            return

        try:
            self.write_entry(record, self.report_file)
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def write_entry(self, record: logging.LogRecord, out: TextIO) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Close the report file handle. Safe to call multiple times."""
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class TrackFailureHandler(ReportFileHandler):
    """
    Writes failed tracks to track_failures.log:

        Artist Name - Song Title
        https://open.spotify.com/track/xxxxx
        MatchError.NoAcceptableCandidate: best score 41.2 below 70

    Fields read from the record:
        - 'failed_track_name'
        - 'failed_track_artist'
        - 'failed_track_url'
        - 'failed_track_kind'
        - 'failed_track_reason'
    """

    MARKER = "failed_track_name"

    def write_entry(self, record: logging.LogRecord, out: TextIO) -> None:
        name = getattr(record, "failed_track_name", "Unknown")
        artist = getattr(record, "failed_track_artist", "Unknown")
        url = getattr(record, "failed_track_url", "")
        kind = getattr(record, "failed_track_kind", "")
        reason = getattr(record, "failed_track_reason", "")

        out.write(f"{artist} - {name}\n")
        out.write(f"{url}\n")
        out.write(f"{kind}: {reason}\n\n")


class MatchCloseAlternativesHandler(ReportFileHandler):
    """
    Writes ambiguous matches to match_close_alternatives.log for review:

        Artist Name - Song Title
        Catalog: https://open.spotify.com/track/xxxxx
        Selected: Song Title (Official Audio) https://music.youtube.com/watch?v=yyyyy (score: 87.5)
        Alternatives:
          - Song Title (Acoustic) https://music.youtube.com/watch?v=zzzzz (score: 85.2)

    An entry is written when candidates score within CLOSE_MATCH_THRESHOLD
    of the selected one.
    """

    MARKER = "match_alt_track_name"

    def write_entry(self, record: logging.LogRecord, out: TextIO) -> None:
        name = getattr(record, "match_alt_track_name", "Unknown")
        artist = getattr(record, "match_alt_track_artist", "Unknown")
        catalog_url = getattr(record, "match_alt_catalog_url", "")
        source_url = getattr(record, "match_alt_source_url", "")
        source_title = getattr(record, "match_alt_source_title", "")
        score = getattr(record, "match_alt_score", 0.0)
        alternatives = getattr(record, "match_alt_alternatives", [])

        out.write(f"{artist} - {name}\n")
        out.write(f"Catalog: {catalog_url}\n")
        out.write(f"Selected: {source_title} {source_url} (score: {score:.1f})\n")
        if alternatives:
            out.write("Alternatives:\n")
            for alt_title, alt_url, alt_score in alternatives:
                out.write(f"  - {alt_title} {alt_url} (score: {alt_score:.1f})\n")
        out.write("\n")


class ErrorOnlyFilter(logging.Filter):
    """Only lets ERROR and CRITICAL records through."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(output_dir: Path, verbose: bool = False) -> Path:
    """
    Configure the logging system for the application.

    Call ONCE at startup from the main thread, before any worker starts.

    Args:
        output_dir: Directory where the 'logs' subdirectory is created.
        verbose: Show DEBUG messages on the console.

    Returns:
        The logs directory used for this run.

    Behavior:
        1. Create output_dir/logs
        2. Root logger at DEBUG, previous handlers removed
        3. Console handler (TqdmLoggingHandler) at INFO, or DEBUG if verbose
        4. log_full_{timestamp}.log with every record
        5. log_errors_{timestamp}.log filtered by ErrorOnlyFilter
        6. track_failures_{timestamp}.log and
           match_close_alternatives_{timestamp}.log report handlers
    """
    logs_dir = output_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    full_handler = logging.FileHandler(logs_dir / f"log_full_{timestamp}.log", mode="w", encoding="utf-8")
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    root_logger.addHandler(full_handler)

    error_handler = logging.FileHandler(logs_dir / f"log_errors_{timestamp}.log", mode="w", encoding="utf-8")
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    failures_handler = TrackFailureHandler(logs_dir / f"track_failures_{timestamp}.log")
    failures_handler.open()
    root_logger.addHandler(failures_handler)

    match_alt_handler = MatchCloseAlternativesHandler(logs_dir / f"match_close_alternatives_{timestamp}.log")
    match_alt_handler.open()
    root_logger.addHandler(match_alt_handler)

    # Third-party chatter stays in the full log only
    for noisy in ("urllib3", "spotipy", "PIL"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logs_dir


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Loggers obtained before setup_logging() have no handlers of their own
    and only propagate to whatever the root logger has at that time.
    """
    return logging.getLogger(name)


def log_track_failure(
    logger: logging.Logger,
    track_name: str,
    artist: str,
    catalog_url: str,
    kind: str,
    reason: str
) -> None:
    """
    Log a track that ended FAILED, with the extra fields picked up by
    TrackFailureHandler.
    """
    logger.error(
        f"Failed: {artist} - {track_name} [{kind}] {reason}",
        extra={
            "failed_track_name": track_name,
            "failed_track_artist": artist,
            "failed_track_url": catalog_url,
            "failed_track_kind": kind,
            "failed_track_reason": reason,
        }
    )


def log_match_close_alternatives(
    logger: logging.Logger,
    track_name: str,
    artist: str,
    catalog_url: str,
    source_url: str,
    source_title: str,
    score: float,
    alternatives: list[tuple[str, str, float]]
) -> None:
    """
    Log a match with near-tied alternatives for MatchCloseAlternativesHandler.

    Only call this when alternatives is non-empty.

    Example:
        log_match_close_alternatives(
            logger,
            track_name="Song Title",
            artist="Artist Name",
            catalog_url="https://open.spotify.com/track/xxx",
            source_url="https://music.youtube.com/watch?v=yyy",
            source_title="Song Title (Official Audio)",
            score=87.5,
            alternatives=[("Song Title (Live)", "https://www.youtube.com/watch?v=www", 84.1)],
        )
    """
    logger.warning(
        f"Multiple close matches for: {artist} - {track_name} (selected score: {score:.1f})",
        extra={
            "match_alt_track_name": track_name,
            "match_alt_track_artist": artist,
            "match_alt_catalog_url": catalog_url,
            "match_alt_source_url": source_url,
            "match_alt_source_title": source_title,
            "match_alt_score": score,
            "match_alt_alternatives": alternatives,
        }
    )


def shutdown_logging() -> None:
    """
    Flush, close and detach every root handler.

    Typically called from a finally block at exit.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except OSError:
            pass
        root_logger.removeHandler(handler)
