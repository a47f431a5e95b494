"""
Pluggable audio sources.

An AudioSource searches a third-party platform and returns
CandidateSummary lists in the platform's own ranking order. Backends
register themselves by name; configuration (download.source) picks one
through create_audio_source(). Nothing inspects types at run time.

Retry Strategy (shared by every backend via _search_with_retry):
    - Exponential backoff: 2s -> 4s -> 8s -> 16s -> 30s (capped)
    - Jitter: ±30% randomization to prevent thundering herd
    - Rate limit detection: 2x delay multiplier for 429-like errors
    - Exhausted retries raise MatchError(SEARCH_FAILED)
    - A set cancel event ends the wait with DownloadError(CANCELLED)

Usage:
    source = create_audio_source("ytmusic")
    candidates = source.search("Queen - Bohemian Rhapsody")
"""

import random
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

from trackfetch.core.exceptions import DownloadError, DownloadErrorKind, MatchError, MatchErrorKind
from trackfetch.core.logger import get_logger
from trackfetch.source.models import CandidateSummary

logger = get_logger(__name__)


MAX_SEARCH_RETRIES = 5
RETRY_DELAY_BASE = 2.0
RETRY_DELAY_MAX = 30.0
RETRY_JITTER_FACTOR = 0.3
RATE_LIMIT_DELAY_MULTIPLIER = 2.0

_RATE_LIMIT_PATTERNS = ("429", "rate", "too many", "quota")


_REGISTRY: dict[str, type["AudioSource"]] = {}


def register_source(name: str) -> Callable[[type["AudioSource"]], type["AudioSource"]]:
    """Class decorator adding a backend to the registry under name."""
    def decorator(cls: type["AudioSource"]) -> type["AudioSource"]:
        cls.name = name
        _REGISTRY[name] = cls
        return cls
    return decorator


def available_sources() -> list[str]:
    return sorted(_REGISTRY)


def create_audio_source(name: str, **options: Any) -> "AudioSource":
    """
    Instantiate the backend registered under name.

    Raises:
        ValueError: If no backend has that name.
    """
    try:
        cls = _REGISTRY[name]
    except KeyError:
        raise ValueError(
            f"Unknown audio source '{name}'. Available: {', '.join(available_sources())}"
        ) from None
    return cls(**options)


class AudioSource(ABC):
    """
    Base class for audio-source backends.

    Subclasses implement search() and url_for(). search() must return
    results in the platform's listed order; the match engine breaks score
    ties by that order.
    """

    name = "abstract"

    def __init__(
        self,
        max_retries: int = MAX_SEARCH_RETRIES,
        retry_delay_base: float = RETRY_DELAY_BASE
    ) -> None:
        self.max_retries = max_retries
        self.retry_delay_base = retry_delay_base

    @abstractmethod
    def search(self, query: str, cancel_event: threading.Event | None = None) -> list[CandidateSummary]:
        """
        Search the platform.

        cancel_event, when given, cuts retry backoff short.

        Raises:
            MatchError(SEARCH_FAILED): When the platform keeps failing.
            DownloadError(CANCELLED): cancel_event was set while waiting.
        """

    @abstractmethod
    def url_for(self, source_id: str) -> str:
        """Watch URL for a platform ID."""

    def _search_with_retry(
        self,
        search_func: Callable,
        *args,
        cancel_event: threading.Event | None = None,
        **kwargs
    ) -> Any:
        """
        Call search_func, retrying any exception with backoff.

        The backoff waits on cancel_event, so a cancelled run stops
        waiting at once.

        Raises:
            MatchError(SEARCH_FAILED): After max_retries failed attempts.
            DownloadError(CANCELLED): cancel_event was set.
        """
        last_exception: Exception | None = None
        waiter = cancel_event if cancel_event is not None else threading.Event()

        for attempt in range(self.max_retries):
            try:
                return search_func(*args, **kwargs) or []
            except Exception as e:
                last_exception = e

                if attempt == self.max_retries - 1:
                    break

                base_delay = min(self.retry_delay_base * (2 ** attempt), RETRY_DELAY_MAX)

                error_str = str(e).lower()
                is_rate_limit = any(p in error_str for p in _RATE_LIMIT_PATTERNS)
                if is_rate_limit:
                    base_delay = min(base_delay * RATE_LIMIT_DELAY_MULTIPLIER, RETRY_DELAY_MAX)

                jitter = base_delay * RETRY_JITTER_FACTOR * (2 * random.random() - 1)
                delay = max(0.0, base_delay + jitter)

                log_msg = (
                    f"[{self.name}] search attempt {attempt + 1}/{self.max_retries} failed: {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                if is_rate_limit:
                    logger.warning(log_msg + " (rate limit detected)")
                else:
                    logger.debug(log_msg)

                if waiter.wait(delay):
                    raise DownloadError(
                        DownloadErrorKind.CANCELLED,
                        f"Run cancelled while retrying {self.name} search",
                        details={"source": self.name, "attempts": attempt + 1}
                    ) from e

        logger.error(f"[{self.name}] search failed after {self.max_retries} attempts: {last_exception}")
        raise MatchError(
            MatchErrorKind.SEARCH_FAILED,
            f"{self.name} search failed: {last_exception}",
            details={"source": self.name, "original_error": str(last_exception)}
        ) from last_exception
