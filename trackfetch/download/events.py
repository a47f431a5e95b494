"""
Job events and the single-consumer event aggregator.

Workers never touch the UI or shared counters directly. They put events on
a queue.Queue; one aggregator thread takes them off in order and fans them
out to subscribers (the progress bar, the JSON reporter, tests).

Events:
    JobStarted     a worker picked up the job
    JobProgress    pct in [0, 100], never decreasing for one job
    JobCompleted   the job reached DONE (skipped=True for cache hits)
    JobFailed      the job reached a terminal FAILED state

Usage:
    aggregator = EventAggregator()
    aggregator.subscribe(progress_bar.handle_event)
    aggregator.start()
    ...
    aggregator.publish(JobProgress(job_id=3, pct=42, state="DOWNLOADING"))
    ...
    aggregator.stop()   # drains remaining events, then joins
"""

import queue
import threading
from dataclasses import dataclass
from typing import Callable

from trackfetch.core.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class JobEvent:
    job_id: int


@dataclass(frozen=True)
class JobStarted(JobEvent):
    title: str


@dataclass(frozen=True)
class JobProgress(JobEvent):
    pct: int
    state: str


@dataclass(frozen=True)
class JobCompleted(JobEvent):
    path: str
    skipped: bool = False


@dataclass(frozen=True)
class JobFailed(JobEvent):
    reason: str
    error_kind: str


EventCallback = Callable[[JobEvent], None]

# Sentinel put on the queue by stop()
_STOP = object()


class EventAggregator:
    """
    Single consumer of job events.

    publish() is safe from any thread. Subscribers are called only from the
    aggregator thread, in publish order, so they need no locking of their
    own. The last progress value per job is kept for inspection.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._subscribers: list[EventCallback] = []
        self._thread: threading.Thread | None = None
        self._progress: dict[int, int] = {}
        self._progress_lock = threading.Lock()

    def subscribe(self, callback: EventCallback) -> None:
        """Register a callback. Must be called before start()."""
        self._subscribers.append(callback)

    def publish(self, event: JobEvent) -> None:
        self._queue.put(event)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="event-aggregator", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Deliver every event already published, then stop the thread."""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None

    def progress_of(self, job_id: int) -> int:
        with self._progress_lock:
            return self._progress.get(job_id, 0)

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            if event is _STOP:
                break
            self._dispatch(event)

    def _dispatch(self, event: JobEvent) -> None:
        if isinstance(event, JobProgress):
            with self._progress_lock:
                self._progress[event.job_id] = event.pct
        elif isinstance(event, JobCompleted):
            with self._progress_lock:
                self._progress[event.job_id] = 100

        for callback in self._subscribers:
            try:
                callback(event)
            except Exception:
                # A broken subscriber must not stop delivery to the others
                logger.exception(f"Event subscriber failed on {type(event).__name__}")
