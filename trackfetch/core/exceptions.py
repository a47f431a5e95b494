"""
Exception classes for trackfetch.

This module defines all custom exceptions used throughout the pipeline.
Each exception carries a human-readable message plus a details dictionary,
and the per-track errors also carry a "kind" used in the final run report.

Exception Hierarchy:
    TrackfetchError (base)
        ConfigError - Configuration file issues (run-level)
        CacheError - Dedup cache store issues (run-level)
        ResolutionError - Catalog link could not be resolved (run-level)
        MatchError - No acceptable audio candidate (per-track)
        DownloadError - External extractor failed (per-track, maybe transient)
        TagError - Metadata could not be embedded (per-track)
        PlacementError - File could not be placed into the library (per-track)

Run-level errors abort before any job is scheduled. Per-track errors are
attached to the job and never abort sibling jobs.
"""

from enum import Enum


class TrackfetchError(Exception):
    """
    Base exception for all trackfetch errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (track info, URLs).

    Example:
        try:
            pipeline.run(request)
        except TrackfetchError as e:
            logger.error(f"Run failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    transient = False

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description shown to the user.
            details: Optional dictionary containing additional context.
                     Common keys: 'catalog_id', 'url', 'path', 'original_error'.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message

    @property
    def kind_label(self) -> str:
        """Short label identifying the error class and kind for reports."""
        return type(self).__name__


class ConfigError(TrackfetchError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml not found or invalid YAML
        - Required fields missing (client_id, client_secret, directory)
        - Invalid values (negative thread count, unknown format)
    """
    pass


class CacheError(TrackfetchError):
    """
    Raised when the dedup cache store cannot be opened or written.

    This is a CRITICAL error: without the cache we cannot tell which
    tracks were already completed.
    """
    pass


class ResolutionErrorKind(Enum):
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    MALFORMED_LINK = "MalformedLink"
    SERVICE_FAILURE = "ServiceFailure"


class ResolutionError(TrackfetchError):
    """
    Raised when a catalog link cannot be turned into track descriptors.

    Example:
        raise ResolutionError(
            ResolutionErrorKind.NOT_FOUND,
            "Playlist not found: 37i9dQZF1DXcBWIGoYBM5M",
            details={'link': link, 'http_status': 404}
        )
    """

    def __init__(
        self,
        kind: ResolutionErrorKind,
        message: str,
        details: dict | None = None
    ) -> None:
        super().__init__(message, details)
        self.kind = kind

    @property
    def kind_label(self) -> str:
        return f"ResolutionError.{self.kind.value}"


class MatchErrorKind(Enum):
    NO_ACCEPTABLE_CANDIDATE = "NoAcceptableCandidate"
    SEARCH_FAILED = "SearchFailed"


class MatchError(TrackfetchError):
    """
    Raised when no audio-source candidate is good enough for a track.

    Precision is preferred over completeness: a weak match is rejected
    rather than downloaded. Not retried, the outcome is deterministic for
    the same search results.
    """

    def __init__(
        self,
        kind: MatchErrorKind,
        message: str,
        details: dict | None = None
    ) -> None:
        super().__init__(message, details)
        self.kind = kind

    @property
    def kind_label(self) -> str:
        return f"MatchError.{self.kind.value}"


class DownloadErrorKind(Enum):
    EXTERNAL_TOOL_FAILURE = "ExternalToolFailure"
    CANCELLED = "Cancelled"


class DownloadError(TrackfetchError):
    """
    Raised when the external media extractor fails.

    Attributes:
        kind: EXTERNAL_TOOL_FAILURE or CANCELLED.
        exit_code: Process exit code, or None on timeout/spawn failure.
        timed_out: True if the process was killed after the timeout.
        transient: True if the failure looks temporary (network, rate
                   limit, forbidden, timeout) and the job may be retried.

    Example:
        raise DownloadError(
            DownloadErrorKind.EXTERNAL_TOOL_FAILURE,
            "yt-dlp exited with code 1",
            exit_code=1,
            transient=False,
            details={'stderr': stderr_tail}
        )
    """

    def __init__(
        self,
        kind: DownloadErrorKind,
        message: str,
        exit_code: int | None = None,
        timed_out: bool = False,
        transient: bool = False,
        details: dict | None = None
    ) -> None:
        super().__init__(message, details)
        self.kind = kind
        self.exit_code = exit_code
        self.timed_out = timed_out
        self.transient = transient

    @property
    def kind_label(self) -> str:
        if self.kind is DownloadErrorKind.EXTERNAL_TOOL_FAILURE:
            code = "timeout" if self.timed_out else self.exit_code
            return f"DownloadError.{self.kind.value}({code})"
        # Reported on its own so cancelled tracks are easy to tell apart
        return self.kind.value


class TagErrorKind(Enum):
    UNSUPPORTED_CONTAINER = "UnsupportedContainer"
    IO_FAILURE = "IOFailure"


class TagError(TrackfetchError):
    """
    Raised when metadata cannot be embedded into the produced file.

    Fatal to the job; not retried.
    """

    def __init__(
        self,
        kind: TagErrorKind,
        message: str,
        details: dict | None = None
    ) -> None:
        super().__init__(message, details)
        self.kind = kind

    @property
    def kind_label(self) -> str:
        return f"TagError.{self.kind.value}"


class PlacementError(TrackfetchError):
    """
    Raised when a tagged file cannot be moved into the library or the
    playlist file cannot be written.

    Common causes:
        - Permission denied in the library root
        - Disk full while copying to the temporary file
    """
    pass
