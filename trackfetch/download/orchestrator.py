"""
Download orchestrator: runs a run's TrackJobs on a bounded worker pool.

Each worker pulls job ids off a queue and drives one job through its
state machine:

    1. Cache check (a record for this job's planned file and format,
       left by an earlier run -> DONE, skipped)
    2. Match (skipped on retries, the candidate is kept)
    3. Per-destination lock; cache re-check (another job of this run may
       have just completed the same track)
    4. Extract into a private temp dir
    5. Fetch art, tag
    6. Place atomically, checksum, commit CompletionRecord
    7. DONE

Failure policy:
    - DownloadError with transient=True goes FAILED -> RETRY and comes
      back as PENDING after an exponential backoff, until max_attempts.
    - Every other TrackfetchError is final for the job.
    - Any other exception is final with kind "UnexpectedError" and is
      logged with its traceback; the pool keeps running.
    - No job failure ever stops sibling jobs.

Cancellation:
    cancel() stops scheduling, kills running extractor processes, ends
    search backoff waits and cancels pending retries. Jobs that had not
    finished end FAILED with kind "Cancelled". Jobs already committed
    stay DONE.

Thread Safety:
    All job state lives in the JobRegistry; events go through the
    EventAggregator queue. The orchestrator itself keeps only locks,
    counters and timers, each guarded by its own lock.
"""

import queue
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from trackfetch.core.database import CompletionRecord, DedupCache, file_checksum, now_iso
from trackfetch.core.exceptions import DownloadError, DownloadErrorKind, TrackfetchError
from trackfetch.core.logger import get_logger, log_track_failure
from trackfetch.download.artwork import ArtworkFetcher
from trackfetch.download.events import EventAggregator, JobCompleted, JobFailed, JobProgress, JobStarted
from trackfetch.download.extractor import BASE_DELAY, MediaExtractor, calculate_backoff
from trackfetch.download.jobs import (
    STATE_PROGRESS,
    JobRegistry,
    JobState,
    TrackJob,
    download_progress,
)
from trackfetch.download.tagger import Tagger
from trackfetch.library.placer import LibraryPlacer
from trackfetch.match.engine import MatchEngine

logger = get_logger(__name__)


DEFAULT_THREADS = 4
DEFAULT_MAX_ATTEMPTS = 3

# Worker shutdown sentinel
_STOP = object()


class DownloadOrchestrator:
    """
    Worker pool plus state machine driver for one run.

    Example:
        orchestrator = DownloadOrchestrator(
            cache, engine, extractor, Tagger(), placer, ArtworkFetcher(), aggregator,
            threads=4,
        )
        jobs = orchestrator.run(jobs)
    """

    def __init__(
        self,
        cache: DedupCache,
        engine: MatchEngine,
        extractor: MediaExtractor,
        tagger: Tagger,
        placer: LibraryPlacer,
        artwork_fetcher: ArtworkFetcher,
        aggregator: EventAggregator,
        threads: int = DEFAULT_THREADS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = BASE_DELAY
    ) -> None:
        if threads < 1:
            raise ValueError(f"threads must be >= 1, got {threads}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        self.cache = cache
        self.engine = engine
        self.extractor = extractor
        self.tagger = tagger
        self.placer = placer
        self.artwork_fetcher = artwork_fetcher
        self.aggregator = aggregator
        self.threads = threads
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

        self.registry = JobRegistry()
        self._queue: queue.Queue = queue.Queue()
        self._cancel_event = threading.Event()
        self._settled = threading.Event()

        self._unsettled = 0
        self._unsettled_lock = threading.Lock()

        self._path_locks: dict[Path, threading.Lock] = {}
        self._path_locks_lock = threading.Lock()

        self._retry_timers: dict[int, threading.Timer] = {}
        self._retry_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # =========================================================================
    # Run control
    # =========================================================================

    def run(self, jobs: list[TrackJob]) -> list[TrackJob]:
        """
        Run every job to a terminal state.

        Blocks until all jobs are DONE or FAILED. Ctrl-C while waiting
        cancels the run; the call still returns once every job settled.

        Returns:
            The jobs in job id order.
        """
        for job in jobs:
            self.registry.add(job)

        if not jobs:
            return []

        with self._unsettled_lock:
            self._unsettled = len(jobs)

        for job in self.registry.jobs():
            self._queue.put(job.job_id)

        workers = min(self.threads, len(jobs))
        logger.info(f"Processing {len(jobs)} tracks with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="trackfetch-worker") as executor:
            for _ in range(workers):
                executor.submit(self._worker_loop)

            try:
                # Short waits keep the main thread responsive to Ctrl-C
                while not self._settled.wait(timeout=0.5):
                    pass
            except KeyboardInterrupt:
                logger.warning("Interrupted, cancelling remaining tracks...")
                self.cancel()
                self._settled.wait()

        return self.registry.jobs()

    def cancel(self) -> None:
        """Stop the run: nothing new starts, running extractions are killed."""
        if self._cancel_event.is_set():
            return
        self._cancel_event.set()
        self.extractor.terminate_active()

        with self._retry_lock:
            waiting = list(self._retry_timers.items())
            self._retry_timers.clear()

        for job_id, timer in waiting:
            timer.cancel()
            self._fail(
                self.registry.get(job_id),
                DownloadError(DownloadErrorKind.CANCELLED, "Run cancelled while waiting to retry")
            )

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self._process(item)

    def _settle(self) -> None:
        with self._unsettled_lock:
            self._unsettled -= 1
            remaining = self._unsettled
        if remaining == 0:
            for _ in range(self.threads):
                self._queue.put(_STOP)
            self._settled.set()

    # =========================================================================
    # Job processing
    # =========================================================================

    def _process(self, job_id: int) -> None:
        job = self.registry.get(job_id)

        if self._cancel_event.is_set():
            self._fail(job, DownloadError(DownloadErrorKind.CANCELLED, "Run cancelled before the track started"))
            return

        self.aggregator.publish(JobStarted(job_id=job_id, title=job.descriptor.title))

        try:
            self._execute(job)
        except TrackfetchError as e:
            self._handle_failure(job, e)
        except Exception as e:
            logger.exception(f"Unexpected error processing {job.descriptor.search_query}")
            self._fail(job, e)

    def _execute(self, job: TrackJob) -> None:
        descriptor = job.descriptor

        record = self._cached_for(job)
        if record is not None:
            self._complete(job, Path(record.file_path), skipped=True)
            return

        job = self.registry.transition(job.job_id, JobState.MATCHING, attempts=job.attempts + 1)
        self._report_state(job)

        if job.candidate is None:
            candidate = self.engine.match(descriptor, cancel_event=self._cancel_event)
            job = self.registry.update(job.job_id, candidate=candidate)

        with self._path_lock(job.destination):
            record = self._cached_for(job)
            if record is not None:
                logger.debug(f"Completed by another job meanwhile: {descriptor.search_query}")
                self._complete(job, Path(record.file_path), skipped=True)
                return

            self._set_state(job, JobState.DOWNLOADING)

            work_dir = Path(tempfile.mkdtemp(prefix=f"trackfetch_{job.job_id}_"))
            try:
                produced = self.extractor.extract(
                    job.candidate.url,
                    work_dir,
                    job.profile,
                    on_progress=lambda phase, pct: self._on_extractor_progress(job.job_id, phase, pct),
                    cancel_event=self._cancel_event,
                )
                if self.registry.get(job.job_id).state is JobState.DOWNLOADING:
                    self._set_state(job, JobState.EXTRACTING)

                self._set_state(job, JobState.TAGGING)
                art = self.artwork_fetcher.fetch(descriptor.cover_url)
                self.tagger.tag(produced, descriptor, art, job.profile)

                self._set_state(job, JobState.PLACING)
                final_path = self.placer.place(produced, job.destination)
                self.cache.commit(CompletionRecord(
                    fingerprint=job.fingerprint,
                    file_path=str(final_path),
                    format=job.profile.format,
                    tagged_at=now_iso(),
                    checksum=file_checksum(final_path),
                ))
            finally:
                shutil.rmtree(work_dir, ignore_errors=True)

        self._complete(job, final_path, skipped=False)

    def _cached_for(self, job: TrackJob) -> CompletionRecord | None:
        """
        The job's completion record, if it describes this job's planned file.

        A record for the same track made under another profile (other
        format, other naming) is a miss; the fresh acquisition overwrites it.
        """
        record = self.cache.lookup(job.fingerprint)
        if record is None:
            return None
        if record.format != job.profile.format or Path(record.file_path) != job.destination:
            return None
        return record

    def _handle_failure(self, job: TrackJob, error: TrackfetchError) -> None:
        job = self.registry.get(job.job_id)
        retryable = (
            isinstance(error, DownloadError)
            and error.transient
            and not self._cancel_event.is_set()
            and job.attempts < self.max_attempts
        )
        if not retryable:
            self._fail(job, error)
            return

        self.registry.transition(job.job_id, JobState.FAILED, error=error)
        self.registry.transition(job.job_id, JobState.RETRY)

        delay = calculate_backoff(job.attempts - 1, self.retry_base_delay)
        logger.warning(
            f"Retrying {job.descriptor.search_query} "
            f"(attempt {job.attempts}/{self.max_attempts} failed: {error.message}) in {delay:.1f}s"
        )

        timer = threading.Timer(delay, self._requeue, args=(job.job_id,))
        timer.daemon = True
        with self._retry_lock:
            if self._cancel_event.is_set():
                cancelled = True
            else:
                cancelled = False
                self._retry_timers[job.job_id] = timer
                timer.start()

        if cancelled:
            self._fail(
                self.registry.get(job.job_id),
                DownloadError(DownloadErrorKind.CANCELLED, "Run cancelled while waiting to retry")
            )

    def _requeue(self, job_id: int) -> None:
        with self._retry_lock:
            # cancel() already took this job over
            if self._retry_timers.pop(job_id, None) is None:
                return
            self.registry.transition(job_id, JobState.PENDING)
            self._queue.put(job_id)

    # =========================================================================
    # Terminal states
    # =========================================================================

    def _complete(self, job: TrackJob, path: Path, skipped: bool) -> None:
        self.registry.transition(job.job_id, JobState.DONE, file_path=path, skipped=skipped, error=None)
        self._report_progress(job.job_id, 100, JobState.DONE)
        self.aggregator.publish(JobCompleted(job_id=job.job_id, path=str(path), skipped=skipped))
        if skipped:
            logger.debug(f"Already in library: {job.descriptor.search_query} -> {path}")
        else:
            logger.info(f"Done: {job.descriptor.search_query}")
        self._settle()

    def _fail(self, job: TrackJob, error: Exception) -> None:
        job = self.registry.transition(job.job_id, JobState.FAILED, error=error)
        reason = str(error) or type(error).__name__
        kind = job.error_kind

        self.aggregator.publish(JobFailed(job_id=job.job_id, reason=reason, error_kind=kind))
        log_track_failure(
            logger,
            track_name=job.descriptor.title,
            artist=job.descriptor.artist,
            catalog_url=job.descriptor.catalog_url,
            kind=kind,
            reason=reason,
        )
        self._settle()

    # =========================================================================
    # Progress helpers
    # =========================================================================

    def _set_state(self, job: TrackJob, state: JobState) -> None:
        job = self.registry.transition(job.job_id, state)
        self._report_state(job)

    def _report_state(self, job: TrackJob) -> None:
        pct = STATE_PROGRESS.get(job.state)
        if pct is not None:
            self._report_progress(job.job_id, pct, job.state)

    def _report_progress(self, job_id: int, pct: int, state: JobState) -> None:
        new_pct = self.registry.advance_progress(job_id, pct)
        if new_pct is not None:
            self.aggregator.publish(JobProgress(job_id=job_id, pct=new_pct, state=state.value))

    def _on_extractor_progress(self, job_id: int, phase: str, pct: float | None) -> None:
        if phase == "download" and pct is not None:
            self._report_progress(job_id, download_progress(pct), JobState.DOWNLOADING)
        elif phase == "extract":
            job = self.registry.get(job_id)
            if job.state is JobState.DOWNLOADING:
                self._set_state(job, JobState.EXTRACTING)

    @contextmanager
    def _path_lock(self, destination: Path) -> Generator[None, None, None]:
        with self._path_locks_lock:
            lock = self._path_locks.setdefault(destination, threading.Lock())
        with lock:
            yield
