"""
Core module for trackfetch.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - database: Thread-safe SQLite dedup cache
    - profile: Output profiles (normal / portable)
    - fingerprint: Canonical dedup keys
    - logger: Logging system with multiple outputs

Usage:
    from trackfetch.core import (
        Config, load_config,
        DedupCache,
        setup_logging, get_logger,
        TrackfetchError, ConfigError, CacheError
    )
"""

from trackfetch.core.config import (
    CatalogConfig,
    Config,
    DownloadConfig,
    OutputConfig,
    ProfileConfig,
    load_config,
)
from trackfetch.core.database import CompletionRecord, DedupCache
from trackfetch.core.exceptions import (
    CacheError,
    ConfigError,
    DownloadError,
    MatchError,
    PlacementError,
    ResolutionError,
    TagError,
    TrackfetchError,
)
from trackfetch.core.fingerprint import fingerprint
from trackfetch.core.logger import (
    get_logger,
    log_match_close_alternatives,
    log_track_failure,
    setup_logging,
    shutdown_logging,
)
from trackfetch.core.profile import OutputProfile, build_profile, normal_profile, portable_profile

__all__ = [
    # Config
    "Config",
    "CatalogConfig",
    "OutputConfig",
    "ProfileConfig",
    "DownloadConfig",
    "load_config",
    # Cache
    "DedupCache",
    "CompletionRecord",
    "fingerprint",
    # Profiles
    "OutputProfile",
    "build_profile",
    "normal_profile",
    "portable_profile",
    # Exceptions
    "TrackfetchError",
    "ConfigError",
    "CacheError",
    "ResolutionError",
    "MatchError",
    "DownloadError",
    "TagError",
    "PlacementError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_track_failure",
    "log_match_close_alternatives",
    "shutdown_logging",
]
