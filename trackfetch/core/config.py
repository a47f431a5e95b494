"""
Configuration management for trackfetch.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml.

The configuration file contains:
    - Catalog API credentials (client_id, client_secret)
    - Output directory for the library, playlists and the dedup cache
    - Default output profile (format, quality, portable)
    - Download behavior (threads, retries, timeouts, cookies, audio source)

Credentials may also come from the environment (SPOTIFY_CLIENT_ID,
SPOTIFY_CLIENT_SECRET), optionally through a .env file. Environment values
override the file.

Example config.yaml:
    catalog:
      client_id: "your_client_id_here"
      client_secret: "your_client_secret_here"

    output:
      directory: "~/Music/trackfetch"
      playlist_directory: null   # defaults to output.directory
      cache_path: null           # defaults to <directory>/cache.db

    profile:
      format: "mp3"              # mp3 | m4a | flac
      quality: "high"            # high | medium | low
      portable: false

    download:
      threads: 4
      max_attempts: 3
      retry_base_delay: 1.5
      extractor_timeout: 600
      cookie_file: null
      source: "ytmusic"          # ytmusic | youtube
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from trackfetch.core.exceptions import ConfigError
from trackfetch.core.profile import OutputProfile, QUALITY_LEVELS, SUPPORTED_FORMATS, build_profile


# Default configuration file name (in current working directory)
CONFIG_FILENAME = "config.yaml"

CACHE_FILENAME = "cache.db"

ENV_CLIENT_ID = "SPOTIFY_CLIENT_ID"
ENV_CLIENT_SECRET = "SPOTIFY_CLIENT_SECRET"

DEFAULT_THREADS = 4
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 1.5
DEFAULT_EXTRACTOR_TIMEOUT = 600.0
DEFAULT_SOURCE = "ytmusic"
KNOWN_SOURCES = ("ytmusic", "youtube")


@dataclass(frozen=True)
class CatalogConfig:
    """
    Catalog API credentials.

    Obtained from the Spotify Developer Dashboard:
    https://developer.spotify.com/dashboard
    """
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class OutputConfig:
    """
    Output locations.

    Attributes:
        directory: Library root. ~ is expanded; created at run time.
        playlist_directory: Where playlist files are written.
        cache_path: SQLite dedup cache file.
    """
    directory: Path
    playlist_directory: Path
    cache_path: Path


@dataclass(frozen=True)
class ProfileConfig:
    format: str
    quality: str
    portable: bool


@dataclass(frozen=True)
class DownloadConfig:
    """
    Download behavior.

    Attributes:
        threads: Worker pool size. Recommended range 1-8.
        max_attempts: Total extraction attempts per job, first one included.
        retry_base_delay: Base delay in seconds for exponential backoff.
        extractor_timeout: Seconds before the extractor process is killed.
        cookie_file: Optional cookies.txt passed to the extractor.
        source: Audio source backend name.
    """
    threads: int
    max_attempts: int
    retry_base_delay: float
    extractor_timeout: float
    cookie_file: Path | None
    source: str


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration, created by load_config().

    Example:
        config = load_config()
        profile = config.output_profile()
        print(f"Saving to: {config.output.directory}")
    """
    catalog: CatalogConfig
    output: OutputConfig
    profile: ProfileConfig
    download: DownloadConfig

    def output_profile(self) -> OutputProfile:
        return build_profile(
            format=self.profile.format,
            quality=self.profile.quality,
            portable=self.profile.portable,
        )


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml.

    Args:
        config_path: Optional explicit path to the config file. If None,
                     looks for config.yaml in the current working directory.

    Returns:
        A frozen Config.

    Raises:
        ConfigError: If the file is missing or unreadable, has invalid YAML,
                     is missing required fields or contains invalid values.

    Thread Safety:
        NOT thread-safe. Call once at startup.
    """
    load_dotenv()

    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    return parse_config(raw_config)


def parse_config(raw_config: dict[str, Any]) -> Config:
    """Validate an already-parsed configuration dictionary."""
    _validate_config(raw_config)

    output_config = _parse_output_config(raw_config["output"])
    return Config(
        catalog=_parse_catalog_config(raw_config.get("catalog")),
        output=output_config,
        profile=_parse_profile_config(raw_config.get("profile")),
        download=_parse_download_config(raw_config.get("download")),
    )


def _validate_config(raw_config: dict[str, Any]) -> None:
    if "output" not in raw_config:
        raise ConfigError(
            "Missing required section: 'output'",
            details={"missing_section": "output"}
        )

    for section in ("catalog", "output", "profile", "download"):
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )


def _parse_catalog_config(catalog_section: dict[str, Any] | None) -> CatalogConfig:
    """
    Parse the catalog credentials, letting the environment override them.

    Raises:
        ConfigError: If either credential is missing from both places.
    """
    catalog_section = catalog_section or {}

    client_id = os.environ.get(ENV_CLIENT_ID) or catalog_section.get("client_id") or ""
    client_secret = os.environ.get(ENV_CLIENT_SECRET) or catalog_section.get("client_secret") or ""

    if not isinstance(client_id, str) or not client_id.strip():
        raise ConfigError(
            f"'catalog.client_id' must be a non-empty string (or set {ENV_CLIENT_ID})",
            details={"field": "catalog.client_id"}
        )

    if not isinstance(client_secret, str) or not client_secret.strip():
        raise ConfigError(
            f"'catalog.client_secret' must be a non-empty string (or set {ENV_CLIENT_SECRET})",
            details={"field": "catalog.client_secret"}
        )

    return CatalogConfig(
        client_id=client_id.strip(),
        client_secret=client_secret.strip()
    )


def _optional_path(section: dict[str, Any], field: str, default: Path) -> Path:
    raw = section.get(field)
    if raw is None:
        return default
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(
            f"'output.{field}' must be a non-empty string",
            details={"field": f"output.{field}"}
        )
    return Path(raw.strip()).expanduser().resolve()


def _parse_output_config(output_section: dict[str, Any]) -> OutputConfig:
    """
    Parse the output section. Expands ~ and makes paths absolute but does
    NOT create anything.
    """
    directory = output_section.get("directory", "")

    if not isinstance(directory, str) or not directory.strip():
        raise ConfigError(
            "'output.directory' must be a non-empty string",
            details={"field": "output.directory"}
        )

    path = Path(directory.strip()).expanduser().resolve()

    return OutputConfig(
        directory=path,
        playlist_directory=_optional_path(output_section, "playlist_directory", path),
        cache_path=_optional_path(output_section, "cache_path", path / CACHE_FILENAME),
    )


def _parse_profile_config(profile_section: dict[str, Any] | None) -> ProfileConfig:
    profile_section = profile_section or {}

    fmt = profile_section.get("format", "mp3")
    if fmt not in SUPPORTED_FORMATS:
        raise ConfigError(
            f"'profile.format' must be one of {', '.join(SUPPORTED_FORMATS)}",
            details={"field": "profile.format", "value": fmt}
        )

    quality = profile_section.get("quality", "high")
    if quality not in QUALITY_LEVELS:
        raise ConfigError(
            f"'profile.quality' must be one of {', '.join(QUALITY_LEVELS)}",
            details={"field": "profile.quality", "value": quality}
        )

    portable = profile_section.get("portable", False)
    if not isinstance(portable, bool):
        raise ConfigError(
            "'profile.portable' must be true or false",
            details={"field": "profile.portable", "value": portable}
        )

    return ProfileConfig(format=fmt, quality=quality, portable=portable)


def _positive_number(section: dict[str, Any], field: str, default, kind: type):
    raw = section.get(field)
    if raw is None:
        return default
    # bool is an int subclass; reject it explicitly
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw <= 0:
        raise ConfigError(
            f"'download.{field}' must be a positive number",
            details={"field": f"download.{field}", "value": raw}
        )
    if kind is int and not isinstance(raw, int):
        raise ConfigError(
            f"'download.{field}' must be a positive integer",
            details={"field": f"download.{field}", "value": raw}
        )
    return kind(raw)


def _parse_download_config(download_section: dict[str, Any] | None) -> DownloadConfig:
    """
    Parse the download section, applying defaults for missing fields.

    Raises:
        ConfigError: On invalid numbers, an unknown source, or a
                     cookie_file that does not exist.
    """
    download_section = download_section or {}

    cookie_file = None
    raw_cookie = download_section.get("cookie_file")
    if raw_cookie is not None:
        if not isinstance(raw_cookie, str):
            raise ConfigError(
                "'download.cookie_file' must be a string path or null",
                details={"field": "download.cookie_file"}
            )
        cookie_path = Path(raw_cookie).expanduser().resolve()
        if not cookie_path.exists():
            raise ConfigError(
                f"Cookie file not found: {cookie_path}",
                details={"field": "download.cookie_file", "path": str(cookie_path)}
            )
        cookie_file = cookie_path

    source = download_section.get("source", DEFAULT_SOURCE)
    if source not in KNOWN_SOURCES:
        raise ConfigError(
            f"'download.source' must be one of {', '.join(KNOWN_SOURCES)}",
            details={"field": "download.source", "value": source}
        )

    return DownloadConfig(
        threads=_positive_number(download_section, "threads", DEFAULT_THREADS, int),
        max_attempts=_positive_number(download_section, "max_attempts", DEFAULT_MAX_ATTEMPTS, int),
        retry_base_delay=_positive_number(download_section, "retry_base_delay", DEFAULT_RETRY_BASE_DELAY, float),
        extractor_timeout=_positive_number(download_section, "extractor_timeout", DEFAULT_EXTRACTOR_TIMEOUT, float),
        cookie_file=cookie_file,
        source=source,
    )
