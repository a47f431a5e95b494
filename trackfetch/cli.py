"""
Command-line interface for trackfetch.

This module implements the CLI using Click, with rich-click for help
formatting and colors. It is a thin front end: every command builds a
RunRequest (or opens the cache) and hands over to the pipeline.

Commands:
    trackfetch album <link>             Acquire every track of an album
    trackfetch playlist <link>          Acquire every track of a playlist
    trackfetch convert [PATHS]...       Re-encode library files to another format
    trackfetch cache stats              Show dedup cache statistics
    trackfetch cache prune              Drop cache records whose file is gone

Options (album / playlist):
    --format mp3|m4a|flac               Output format (ignored with --portable)
    --quality high|medium|low           Extractor audio quality
    --portable                          Constrained-device profile
    --threads N                         Worker pool size
    --cookie-file <path>                cookies.txt for the audio platform
    --json                              Print the run report as JSON

Exit codes:
    0    every track done or already present
    1    at least one track failed (or the run was cancelled)
    2    run-level error (configuration, cache, link resolution)
    130  interrupted before any track was scheduled

Configuration:
    Reads config.yaml from the current directory (or --config). Catalog
    credentials may come from SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET.
"""

import dataclasses
import json
import sys
from pathlib import Path
from typing import Optional

import rich_click as click

from trackfetch import __version__
from trackfetch.catalog.models import LinkType, ResolvedCollection
from trackfetch.core.config import Config, load_config
from trackfetch.core.database import DedupCache
from trackfetch.core.exceptions import CacheError, ConfigError, ResolutionError, TrackfetchError
from trackfetch.core.logger import get_logger, setup_logging, shutdown_logging
from trackfetch.core.profile import QUALITY_LEVELS, SUPPORTED_FORMATS, build_profile
from trackfetch.core.progress import RunProgressBar
from trackfetch.library.converter import AudioConverter, LibraryConverter, collect_audio_files
from trackfetch.pipeline import AcquisitionPipeline, RunReport, RunRequest
from trackfetch.utils import ensure_directory

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.OPTION_GROUPS = {
    "trackfetch album": [
        {"name": "Output Profile", "options": ["--format", "--quality", "--portable"]},
        {"name": "Download Options", "options": ["--threads", "--cookie-file"]},
        {"name": "Output", "options": ["--json", "--help"]},
    ],
    "trackfetch playlist": [
        {"name": "Output Profile", "options": ["--format", "--quality", "--portable"]},
        {"name": "Download Options", "options": ["--threads", "--cookie-file"]},
        {"name": "Output", "options": ["--json", "--help"]},
    ],
    "trackfetch convert": [
        {"name": "Target", "options": ["--format", "--quality"]},
        {"name": "Output", "options": ["--json", "--help"]},
    ],
}

logger = get_logger(__name__)


EXIT_OK = 0
EXIT_TRACK_FAILURES = 1
EXIT_RUN_ERROR = 2
EXIT_INTERRUPTED = 130


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Show debug messages on the console"
)
@click.version_option(__version__, prog_name="trackfetch")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """
    trackfetch: build a local music library from catalog links.

    Resolves an album or playlist, finds matching audio, downloads and
    tags it, and places it into the library with a playlist file.

    \b
    BASIC USAGE:
        trackfetch album "https://open.spotify.com/album/..."
        trackfetch playlist "https://open.spotify.com/playlist/..." --format flac
        trackfetch playlist <link> --portable      # MP3, flat, short ASCII names
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _acquisition_options(func):
    """Options shared by the album and playlist commands."""
    options = [
        click.argument("link"),
        click.option(
            "--format", "fmt",
            type=click.Choice(SUPPORTED_FORMATS),
            default=None,
            help="Output format (default from config)"
        ),
        click.option(
            "--quality",
            type=click.Choice(QUALITY_LEVELS),
            default=None,
            help="Audio quality (default from config)"
        ),
        click.option(
            "--portable",
            is_flag=True,
            help="Portable profile: MP3, flat folder, 64-char ASCII names, 128px art"
        ),
        click.option(
            "--threads",
            type=click.IntRange(min=1),
            default=None,
            help="Parallel downloads (default from config)"
        ),
        click.option(
            "--cookie-file",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            default=None,
            metavar="<cookies.txt>",
            help="Cookies passed to the extractor"
        ),
        click.option(
            "--json", "as_json",
            is_flag=True,
            help="Print the run report as JSON"
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command()
@_acquisition_options
@click.pass_context
def album(ctx: click.Context, **options) -> None:
    """Acquire every track of an album."""
    _run_acquisition(ctx, LinkType.ALBUM, **options)


@cli.command()
@_acquisition_options
@click.pass_context
def playlist(ctx: click.Context, **options) -> None:
    """Acquire every track of a playlist."""
    _run_acquisition(ctx, LinkType.PLAYLIST, **options)


def _apply_overrides(
    config: Config,
    fmt: Optional[str],
    quality: Optional[str],
    portable: bool,
    threads: Optional[int],
    cookie_file: Optional[Path]
) -> Config:
    """Return config with command-line values taking precedence."""
    profile = dataclasses.replace(
        config.profile,
        format=fmt or config.profile.format,
        quality=quality or config.profile.quality,
        portable=config.profile.portable or portable,
    )
    download = dataclasses.replace(
        config.download,
        threads=threads or config.download.threads,
        cookie_file=cookie_file or config.download.cookie_file,
    )
    return dataclasses.replace(config, profile=profile, download=download)


def _build_pipeline(config: Config, cache: DedupCache) -> AcquisitionPipeline:
    return AcquisitionPipeline.from_config(config, cache)


def _run_acquisition(
    ctx: click.Context,
    link_type: LinkType,
    link: str,
    fmt: Optional[str],
    quality: Optional[str],
    portable: bool,
    threads: Optional[int],
    cookie_file: Optional[Path],
    as_json: bool
) -> None:
    """
    Execute one run and exit with the run's exit code.

    Steps:
        1. Load configuration, apply command-line overrides
        2. Set up logging under the output directory
        3. Open the dedup cache
        4. Run the pipeline (with a progress bar unless --json)
        5. Print the report
    """
    store: DedupCache | None = None
    progress: RunProgressBar | None = None
    exit_code = EXIT_OK

    try:
        config = load_config(ctx.obj["config_path"])
        config = _apply_overrides(config, fmt, quality, portable, threads, cookie_file)
        profile = build_profile(
            format=config.profile.format,
            quality=config.profile.quality,
            portable=config.profile.portable,
        )

        ensure_directory(config.output.directory)
        setup_logging(config.output.directory, verbose=ctx.obj["verbose"])
        logger.info(f"trackfetch {__version__} starting ({'portable' if profile.is_portable else profile.format})")

        ensure_directory(config.output.cache_path.parent)
        store = DedupCache(config.output.cache_path)
        pipeline = _build_pipeline(config, store)

        subscribers = []
        on_resolved = None
        if not as_json:
            def on_resolved(collection: ResolvedCollection) -> None:
                nonlocal progress
                progress = RunProgressBar(total=len(collection))
                progress.start()

            subscribers.append(lambda event: progress.handle_event(event) if progress else None)

        try:
            report = pipeline.run(
                RunRequest(link=link, link_type=link_type, profile=profile),
                subscribers=subscribers,
                on_resolved=on_resolved,
            )
        finally:
            if progress is not None:
                progress.stop()

        if as_json:
            click.echo(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
        else:
            _print_report(report)

        if report.failed > 0:
            exit_code = EXIT_TRACK_FAILURES

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        exit_code = EXIT_RUN_ERROR

    except CacheError as e:
        click.echo(f"Cache error: {e.message}", err=True)
        logger.error(f"Cache error: {e.message}", exc_info=True)
        exit_code = EXIT_RUN_ERROR

    except ResolutionError as e:
        click.echo(f"Could not resolve link [{e.kind_label}]: {e.message}", err=True)
        logger.error(f"Resolution failed: {e.message}")
        exit_code = EXIT_RUN_ERROR

    except TrackfetchError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        exit_code = EXIT_RUN_ERROR

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        exit_code = EXIT_INTERRUPTED

    finally:
        if store is not None:
            store.close()
        shutdown_logging()

    sys.exit(exit_code)


def _print_report(report: RunReport) -> None:
    logger.info("=" * 60)
    logger.info(f"RUN SUMMARY: {report.collection_name}")
    logger.info("=" * 60)
    logger.info(f"Total tracks:      {report.total}")
    logger.info(f"Downloaded:        {report.succeeded}")
    logger.info(f"Already present:   {report.skipped}")
    logger.info(f"Failed:            {report.failed}")
    if report.playlist_path:
        logger.info(f"Playlist:          {report.playlist_path}")
    if report.cancelled:
        logger.warning("Run was cancelled; remaining tracks were not processed")
    for outcome in report.outcomes:
        if outcome.status == "failed":
            logger.info(f"  ✗ {outcome.position:>3}. {outcome.artist} - {outcome.title} [{outcome.error_kind}]")
    logger.info("=" * 60)


# =============================================================================
# Format conversion
# =============================================================================

def _build_converter(config: Config) -> AudioConverter:
    return AudioConverter(timeout=config.download.extractor_timeout)


@cli.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True, path_type=Path))
@click.option(
    "--format", "fmt",
    type=click.Choice(SUPPORTED_FORMATS),
    required=True,
    help="Target format"
)
@click.option(
    "--quality",
    type=click.Choice(QUALITY_LEVELS),
    default=None,
    help="Bitrate tier for mp3/m4a (default from config)"
)
@click.option("--json", "as_json", is_flag=True, help="Print the outcomes as JSON")
@click.pass_context
def convert(ctx: click.Context, paths: tuple[Path, ...], fmt: str, quality: Optional[str], as_json: bool) -> None:
    """
    Re-encode library files to another format with FFmpeg.

    PATHS may be files or directories (searched recursively); the default
    is the whole library. Cache records follow the converted files, and
    each original is removed once its replacement is in place.
    """
    store: DedupCache | None = None
    exit_code = EXIT_OK

    try:
        config = load_config(ctx.obj["config_path"])
        ensure_directory(config.output.directory)
        setup_logging(config.output.directory, verbose=ctx.obj["verbose"])

        files = collect_audio_files(paths or (config.output.directory,))
        if not files:
            logger.info("No audio files found to convert")
        else:
            logger.info(f"Converting {len(files)} file(s) to {fmt}")
            ensure_directory(config.output.cache_path.parent)
            store = DedupCache(config.output.cache_path)
            converter = LibraryConverter(_build_converter(config), store, config.output.directory)
            outcomes = converter.convert_all(files, fmt, quality or config.profile.quality)

            failed = [o for o in outcomes if o.status == "failed"]
            if as_json:
                click.echo(json.dumps([o.to_dict() for o in outcomes], indent=2, ensure_ascii=False))
            else:
                converted = sum(1 for o in outcomes if o.status == "converted")
                logger.info(f"Converted: {converted}  Already {fmt}: {len(outcomes) - converted - len(failed)}  Failed: {len(failed)}")
                for outcome in failed:
                    logger.info(f"  ✗ {outcome.source} [{outcome.error_kind}]")
            if failed:
                exit_code = EXIT_TRACK_FAILURES

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        exit_code = EXIT_RUN_ERROR

    except CacheError as e:
        click.echo(f"Cache error: {e.message}", err=True)
        logger.error(f"Cache error: {e.message}", exc_info=True)
        exit_code = EXIT_RUN_ERROR

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        exit_code = EXIT_INTERRUPTED

    finally:
        if store is not None:
            store.close()
        shutdown_logging()

    sys.exit(exit_code)


# =============================================================================
# Cache maintenance
# =============================================================================

@cli.group()
def cache() -> None:
    """Inspect and maintain the dedup cache."""


def _open_cache(ctx: click.Context) -> DedupCache:
    config = load_config(ctx.obj["config_path"])
    if not config.output.cache_path.exists():
        raise CacheError(
            f"No cache at {config.output.cache_path} (nothing downloaded yet?)",
            details={"path": str(config.output.cache_path)}
        )
    return DedupCache(config.output.cache_path)


@cache.command("stats")
@click.pass_context
def cache_stats(ctx: click.Context) -> None:
    """Show how many completed tracks the cache knows about."""
    try:
        with _open_cache(ctx) as store:
            stats = store.stats()
    except (ConfigError, CacheError) as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(EXIT_RUN_ERROR)

    click.echo(f"Records:          {stats['total']}")
    click.echo(f"Files present:    {stats['present']}")
    click.echo(f"Files missing:    {stats['missing']}")


@cache.command("prune")
@click.pass_context
def cache_prune(ctx: click.Context) -> None:
    """Remove records whose file no longer exists."""
    try:
        with _open_cache(ctx) as store:
            removed, total = store.prune_missing()
    except (ConfigError, CacheError) as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(EXIT_RUN_ERROR)

    click.echo(f"Removed {removed} of {total} records")


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `trackfetch` from the command line.
    """
    cli()


if __name__ == "__main__":
    main()
