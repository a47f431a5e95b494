"""
Track jobs and their state machine.

One TrackJob per descriptor in a run. The state only moves forward:

    PENDING -> MATCHING -> DOWNLOADING -> EXTRACTING -> TAGGING -> PLACING -> DONE

with two exceptions:
    - any non-terminal state may go to FAILED
    - FAILED -> RETRY -> PENDING is the single backward edge, used by the
      orchestrator for transient download failures

PENDING -> DONE and MATCHING -> DONE are the cache-hit shortcuts (the track
was completed by an earlier run, or by another job of this run).

Anything else raises InvalidTransition.

Progress:
    Each state maps to a fixed percentage; the download phase is spread
    over 5..80. The registry only ever raises a job's progress, so the
    value reported for a job never goes backwards, even across retries.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from trackfetch.catalog.models import TrackDescriptor
from trackfetch.core.exceptions import TrackfetchError
from trackfetch.core.profile import OutputProfile
from trackfetch.source.models import CandidateMatch


class JobState(Enum):
    PENDING = "Pending"
    MATCHING = "Matching"
    DOWNLOADING = "Downloading"
    EXTRACTING = "Extracting"
    TAGGING = "Tagging"
    PLACING = "Placing"
    DONE = "Done"
    FAILED = "Failed"
    RETRY = "Retry"


ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.MATCHING, JobState.DONE, JobState.FAILED}),
    JobState.MATCHING: frozenset({JobState.DOWNLOADING, JobState.DONE, JobState.FAILED}),
    JobState.DOWNLOADING: frozenset({JobState.EXTRACTING, JobState.FAILED}),
    JobState.EXTRACTING: frozenset({JobState.TAGGING, JobState.FAILED}),
    JobState.TAGGING: frozenset({JobState.PLACING, JobState.FAILED}),
    JobState.PLACING: frozenset({JobState.DONE, JobState.FAILED}),
    JobState.FAILED: frozenset({JobState.RETRY}),
    JobState.RETRY: frozenset({JobState.PENDING, JobState.FAILED}),
    JobState.DONE: frozenset(),
}

# =============================================================================
# Progress percentages
# =============================================================================

STATE_PROGRESS = {
    JobState.MATCHING: 5,
    JobState.DOWNLOADING: 5,
    JobState.EXTRACTING: 85,
    JobState.TAGGING: 90,
    JobState.PLACING: 95,
    JobState.DONE: 100,
}

DOWNLOAD_PROGRESS_START = 5
DOWNLOAD_PROGRESS_END = 80


def download_progress(pct: float) -> int:
    """Map an extractor download percentage onto the job's 5..80 range."""
    pct = min(max(pct, 0.0), 100.0)
    span = DOWNLOAD_PROGRESS_END - DOWNLOAD_PROGRESS_START
    return DOWNLOAD_PROGRESS_START + int(pct * span / 100)


class InvalidTransition(TrackfetchError):
    """Raised when a job is moved along an edge the state machine forbids."""

    def __init__(self, job_id: int, current: JobState, target: JobState) -> None:
        super().__init__(
            f"Job {job_id}: invalid transition {current.value} -> {target.value}",
            details={"job_id": job_id, "from": current.value, "to": target.value}
        )
        self.current = current
        self.target = target


@dataclass
class TrackJob:
    """
    Mutable per-track work item.

    Only the orchestrator mutates jobs, and only through JobRegistry.
    """
    job_id: int
    descriptor: TrackDescriptor
    fingerprint: str
    destination: Path
    profile: OutputProfile
    candidate: CandidateMatch | None = None
    state: JobState = JobState.PENDING
    attempts: int = 0
    error: Exception | None = None
    file_path: Path | None = None
    skipped: bool = False
    progress: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.DONE, JobState.FAILED)

    @property
    def error_kind(self) -> str | None:
        if self.error is None:
            return None
        if isinstance(self.error, TrackfetchError):
            return self.error.kind_label
        return "UnexpectedError"

    def transition(self, target: JobState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(self.job_id, self.state, target)
        self.state = target


class JobRegistry:
    """
    Lock-guarded table of the run's jobs.

    Workers hold no job state of their own; every read-modify-write of a
    TrackJob goes through one of these methods.
    """

    def __init__(self) -> None:
        self._jobs: dict[int, TrackJob] = {}
        self._lock = threading.Lock()

    def add(self, job: TrackJob) -> None:
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Duplicate job id: {job.job_id}")
            self._jobs[job.job_id] = job

    def get(self, job_id: int) -> TrackJob:
        with self._lock:
            return self._jobs[job_id]

    def jobs(self) -> list[TrackJob]:
        """All jobs ordered by job id (catalog order)."""
        with self._lock:
            return [self._jobs[job_id] for job_id in sorted(self._jobs)]

    def transition(self, job_id: int, target: JobState, **changes) -> TrackJob:
        """
        Move a job to target and apply field changes atomically.

        Raises:
            InvalidTransition: If the edge is not allowed. No field is
                               changed in that case.
        """
        with self._lock:
            job = self._jobs[job_id]
            job.transition(target)
            for field_name, value in changes.items():
                setattr(job, field_name, value)
            return job

    def update(self, job_id: int, **changes) -> TrackJob:
        with self._lock:
            job = self._jobs[job_id]
            for field_name, value in changes.items():
                setattr(job, field_name, value)
            return job

    def advance_progress(self, job_id: int, pct: int) -> int | None:
        """
        Raise a job's progress to pct.

        Returns:
            The new value, or None if pct would not increase it.
        """
        with self._lock:
            job = self._jobs[job_id]
            pct = min(pct, 100)
            if pct <= job.progress:
                return None
            job.progress = pct
            return pct

    def count(self, state: JobState) -> int:
        with self._lock:
            return sum(1 for job in self._jobs.values() if job.state is state)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
