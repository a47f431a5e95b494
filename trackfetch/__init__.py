"""
trackfetch: build a local music library from catalog links.

Resolves an album or playlist on the catalog (Spotify), finds the matching
audio on an audio platform (YouTube Music / YouTube), downloads and
transcodes it with yt-dlp, embeds metadata and cover art, and places the
files into a deterministic library layout with an M3U playlist.

Architecture:
    catalog/    - Catalog client and TrackResolver (link -> descriptors)
    source/     - Pluggable audio sources (search backends)
    match/      - MatchEngine (descriptor -> best candidate)
    download/   - Extractor, tagger, job state machine, orchestrator
    library/    - LibraryPlacer (paths, atomic writes, playlists)
    core/       - Config, dedup cache, profiles, logging, exceptions
    pipeline.py - AcquisitionPipeline (one run, one report)
    cli.py      - Command-line interface

Usage:
    Command Line:
        trackfetch album "https://open.spotify.com/album/..."
        trackfetch playlist "https://open.spotify.com/playlist/..." --portable

    Python API:
        from trackfetch import AcquisitionPipeline, RunRequest, load_config
        from trackfetch.core import DedupCache

        config = load_config()
        with DedupCache(config.output.cache_path) as cache:
            pipeline = AcquisitionPipeline.from_config(config, cache)
            report = pipeline.run(RunRequest(link, None, config.output_profile()))

Dependencies:
    - spotipy: Catalog API client
    - ytmusicapi: YouTube Music search
    - yt-dlp: Download and extraction (external process)
    - mutagen: Audio metadata
    - Pillow, requests: Cover art
    - rapidfuzz: Fuzzy matching
    - rich-click, rich, tqdm: CLI, progress, console logging
    - pyyaml, python-dotenv: Configuration
    - Unidecode: Portable filenames
"""

__version__ = "0.3.0"
__author__ = "trackfetch"
__license__ = "MIT"

# Convenience imports for common usage
from trackfetch.core import (
    Config,
    ConfigError,
    DedupCache,
    OutputProfile,
    TrackfetchError,
    build_profile,
    get_logger,
    load_config,
    setup_logging,
)
from trackfetch.catalog import LinkType, TrackDescriptor
from trackfetch.pipeline import AcquisitionPipeline, RunReport, RunRequest

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "DedupCache",
    "OutputProfile",
    "build_profile",
    "setup_logging",
    "get_logger",
    # Exceptions
    "TrackfetchError",
    "ConfigError",
    # Models
    "LinkType",
    "TrackDescriptor",
    # Pipeline
    "AcquisitionPipeline",
    "RunRequest",
    "RunReport",
]
