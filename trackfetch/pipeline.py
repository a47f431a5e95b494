"""
Acquisition pipeline: one catalog link in, one RunReport out.

    link -> TrackResolver -> [TrackDescriptor]
         -> fingerprints + LibraryPlacer.plan (destinations)
         -> DownloadOrchestrator (cache check, match, extract, tag, place)
         -> playlist file (after every job settled, catalog order)
         -> RunReport

The pipeline owns nothing global: the cache handle, the event aggregator
and every per-run object are created or passed in per run. Front ends
(the CLI, tests) only build a RunRequest and subscribe to events.

Usage:
    pipeline = AcquisitionPipeline.from_config(config, cache)
    report = pipeline.run(RunRequest(link, LinkType.ALBUM, config.output_profile()))
    print(report.succeeded, report.failed, report.skipped)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

from trackfetch.catalog.client import CatalogClient
from trackfetch.catalog.models import LinkType, ResolvedCollection
from trackfetch.catalog.resolver import TrackResolver
from trackfetch.core.config import Config
from trackfetch.core.database import DedupCache
from trackfetch.core.fingerprint import fingerprint
from trackfetch.core.logger import get_logger
from trackfetch.core.profile import OutputProfile
from trackfetch.download.artwork import ArtworkFetcher
from trackfetch.download.events import EventAggregator, EventCallback
from trackfetch.download.extractor import BASE_DELAY, MediaExtractor
from trackfetch.download.jobs import JobState, TrackJob
from trackfetch.download.orchestrator import DEFAULT_MAX_ATTEMPTS, DEFAULT_THREADS, DownloadOrchestrator
from trackfetch.download.tagger import Tagger
from trackfetch.library.placer import LibraryEntry, LibraryPlacer
from trackfetch.match.engine import MatchEngine
from trackfetch.source import create_audio_source

logger = get_logger(__name__)


STATUS_DONE = "done"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class RunRequest:
    """
    What a front end asks for.

    Attributes:
        link: Catalog URL, URI or bare id.
        link_type: Required for bare ids; checked against URLs/URIs.
        profile: OutputProfile for the whole run.
    """
    link: str
    link_type: LinkType | None
    profile: OutputProfile


@dataclass(frozen=True)
class TrackOutcome:
    position: int
    title: str
    artist: str
    status: str
    path: str | None = None
    error_kind: str | None = None
    reason: str | None = None

    @classmethod
    def from_job(cls, job: TrackJob) -> "TrackOutcome":
        if job.state is JobState.DONE:
            return cls(
                position=job.job_id + 1,
                title=job.descriptor.title,
                artist=job.descriptor.artist,
                status=STATUS_SKIPPED if job.skipped else STATUS_DONE,
                path=str(job.file_path),
            )
        return cls(
            position=job.job_id + 1,
            title=job.descriptor.title,
            artist=job.descriptor.artist,
            status=STATUS_FAILED,
            error_kind=job.error_kind,
            reason=str(job.error) if job.error is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "title": self.title,
            "artist": self.artist,
            "status": self.status,
            "path": self.path,
            "error_kind": self.error_kind,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RunReport:
    collection_name: str
    link_type: LinkType
    outcomes: tuple[TrackOutcome, ...] = field(default_factory=tuple)
    playlist_path: Path | None = None
    cancelled: bool = False

    def _count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(STATUS_DONE)

    @property
    def skipped(self) -> int:
        return self._count(STATUS_SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(STATUS_FAILED)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection_name,
            "link_type": self.link_type.value,
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "playlist_path": str(self.playlist_path) if self.playlist_path else None,
            "tracks": [outcome.to_dict() for outcome in self.outcomes],
        }


class AcquisitionPipeline:
    """
    Wires the components for a run.

    Collaborators are injected so tests can pass fakes; from_config()
    builds the real ones.
    """

    def __init__(
        self,
        resolver: TrackResolver,
        cache: DedupCache,
        engine: MatchEngine,
        extractor: MediaExtractor,
        output_dir: Path,
        playlist_dir: Path | None = None,
        tagger: Tagger | None = None,
        artwork_fetcher: ArtworkFetcher | None = None,
        threads: int = DEFAULT_THREADS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = BASE_DELAY
    ) -> None:
        self.resolver = resolver
        self.cache = cache
        self.engine = engine
        self.extractor = extractor
        self.output_dir = output_dir
        self.playlist_dir = playlist_dir
        self.tagger = tagger if tagger is not None else Tagger()
        self.artwork_fetcher = artwork_fetcher if artwork_fetcher is not None else ArtworkFetcher()
        self.threads = threads
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self._orchestrator: DownloadOrchestrator | None = None

    @classmethod
    def from_config(cls, config: Config, cache: DedupCache) -> "AcquisitionPipeline":
        """Build the production pipeline (spotipy, chosen audio source, yt-dlp)."""
        download = config.download
        cookie_file = str(download.cookie_file) if download.cookie_file else None

        client = CatalogClient.from_credentials(config.catalog.client_id, config.catalog.client_secret)
        if download.source == "youtube":
            source = create_audio_source("youtube", cookie_file=cookie_file)
        else:
            source = create_audio_source(download.source)

        return cls(
            resolver=TrackResolver(client),
            cache=cache,
            engine=MatchEngine(source),
            extractor=MediaExtractor(timeout=download.extractor_timeout, cookie_file=download.cookie_file),
            output_dir=config.output.directory,
            playlist_dir=config.output.playlist_directory,
            threads=download.threads,
            max_attempts=download.max_attempts,
            retry_base_delay=download.retry_base_delay,
        )

    def cancel(self) -> None:
        """Cancel the run in progress, if any. Safe from any thread."""
        if self._orchestrator is not None:
            self._orchestrator.cancel()

    def run(
        self,
        request: RunRequest,
        subscribers: Sequence[EventCallback] = (),
        on_resolved: Callable[[ResolvedCollection], None] | None = None
    ) -> RunReport:
        """
        Execute one acquisition run.

        Args:
            request: Link and profile.
            subscribers: Event callbacks, called on the aggregator thread.
            on_resolved: Called once with the collection before any job
                         starts (used by the CLI to size its progress bar).

        Raises:
            ResolutionError: The link could not be resolved. Nothing was
                             scheduled.
        """
        collection = self.resolver.resolve(request.link, request.link_type)
        logger.info(f"Resolved {collection.link_type.value} '{collection.name}': {len(collection)} tracks")
        if on_resolved is not None:
            on_resolved(collection)

        profile = request.profile
        placer = LibraryPlacer(self.output_dir, profile, self.playlist_dir)

        fingerprints = [fingerprint(descriptor) for descriptor in collection.tracks]
        owned = {}
        for fp in dict.fromkeys(fingerprints):
            record = self.cache.lookup(fp)
            # A file made under another profile is not a hit for this one
            if record is None or record.format != profile.format:
                continue
            if placer.fits_layout(Path(record.file_path)):
                owned[fp] = Path(record.file_path)

        destinations = placer.plan(collection.tracks, fingerprints, owned)
        jobs = [
            TrackJob(
                job_id=position,
                descriptor=descriptor,
                fingerprint=fp,
                destination=destination,
                profile=profile,
            )
            for position, (descriptor, fp, destination)
            in enumerate(zip(collection.tracks, fingerprints, destinations))
        ]
        if owned:
            logger.info(f"{len(owned)} tracks already in the library")

        aggregator = EventAggregator()
        for callback in subscribers:
            aggregator.subscribe(callback)

        self._orchestrator = DownloadOrchestrator(
            cache=self.cache,
            engine=self.engine,
            extractor=self.extractor,
            tagger=self.tagger,
            placer=placer,
            artwork_fetcher=self.artwork_fetcher,
            aggregator=aggregator,
            threads=self.threads,
            max_attempts=self.max_attempts,
            retry_base_delay=self.retry_base_delay,
        )

        aggregator.start()
        try:
            settled = self._orchestrator.run(jobs)
        finally:
            aggregator.stop()
        cancelled = self._orchestrator.cancelled
        self._orchestrator = None

        entries = [
            LibraryEntry(descriptor=job.descriptor, path=job.file_path)
            for job in settled
            if job.state is JobState.DONE
        ]
        playlist_path = placer.write_playlist(collection.name, entries) if entries else None

        report = RunReport(
            collection_name=collection.name,
            link_type=collection.link_type,
            outcomes=tuple(TrackOutcome.from_job(job) for job in settled),
            playlist_path=playlist_path,
            cancelled=cancelled,
        )
        logger.info(
            f"Run complete: {report.succeeded} downloaded, {report.skipped} already present, "
            f"{report.failed} failed"
        )
        return report
