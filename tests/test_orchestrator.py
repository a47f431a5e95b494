"""Test the download orchestrator"""

import threading
import time
from collections import defaultdict
from pathlib import Path

import pytest

from tests.conftest import (
    ALBUM_TRACKS,
    FakeArtworkFetcher,
    FakeExtractor,
    FakeSource,
    permanent_error,
    transient_error,
)
from trackfetch.catalog.models import TrackDescriptor
from trackfetch.core.database import CompletionRecord, file_checksum, now_iso
from trackfetch.core.exceptions import TagError, TagErrorKind
from trackfetch.core.fingerprint import fingerprint
from trackfetch.core.profile import normal_profile
from trackfetch.download.events import EventAggregator, JobCompleted, JobFailed, JobProgress, JobStarted
from trackfetch.download.jobs import JobState, TrackJob
from trackfetch.download.orchestrator import DownloadOrchestrator
from trackfetch.download.tagger import Tagger
from trackfetch.library.placer import LibraryPlacer
from trackfetch.match.engine import MatchEngine


DESCRIPTORS = [TrackDescriptor.from_spotify_api(t) for t in ALBUM_TRACKS]


def url_of(descriptor):
    return f"https://music.youtube.com/watch?v=yt_{descriptor.catalog_id}"


class Harness:
    """Orchestrator wired to fakes, recording every event."""

    def __init__(self, cache, library, extractor, source=None, threads=2, max_attempts=3, tagger=None):
        self.cache = cache
        self.events = []
        self.aggregator = EventAggregator()
        self.aggregator.subscribe(self.events.append)
        self.profile = normal_profile()
        self.placer = LibraryPlacer(library, self.profile)
        self.extractor = extractor
        self.orchestrator = DownloadOrchestrator(
            cache=cache,
            engine=MatchEngine(source if source is not None else FakeSource(ALBUM_TRACKS)),
            extractor=extractor,
            tagger=tagger if tagger is not None else Tagger(),
            placer=self.placer,
            artwork_fetcher=FakeArtworkFetcher(),
            aggregator=self.aggregator,
            threads=threads,
            max_attempts=max_attempts,
            retry_base_delay=0.01,
        )

    def jobs_for(self, descriptors):
        fingerprints = [fingerprint(d) for d in descriptors]
        owned = {}
        for fp in fingerprints:
            record = self.cache.lookup(fp)
            if record is not None and self.placer.fits_layout(Path(record.file_path)):
                owned[fp] = Path(record.file_path)
        destinations = self.placer.plan(descriptors, fingerprints, owned)
        return [
            TrackJob(job_id=i, descriptor=d, fingerprint=fp, destination=dest, profile=self.profile)
            for i, (d, fp, dest) in enumerate(zip(descriptors, fingerprints, destinations))
        ]

    def run(self, descriptors=DESCRIPTORS):
        self.aggregator.start()
        try:
            return self.orchestrator.run(self.jobs_for(descriptors))
        finally:
            self.aggregator.stop()

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def library(temp_dir):
    return temp_dir / "library"


class TestHappyPath:

    def test_all_done(self, cache, library):
        harness = Harness(cache, library, FakeExtractor())
        jobs = harness.run()

        assert [j.state for j in jobs] == [JobState.DONE] * 3
        assert all(j.file_path.is_file() for j in jobs)
        assert all(not j.skipped for j in jobs)
        assert len(harness.of_type(JobCompleted)) == 3
        assert len(harness.of_type(JobStarted)) == 3

        for job in jobs:
            record = cache.lookup(job.fingerprint)
            assert record.file_path == str(job.file_path)
            assert len(record.checksum) == 64

    def test_progress_monotonic_and_complete(self, cache, library):
        harness = Harness(cache, library, FakeExtractor())
        harness.run()

        by_job = defaultdict(list)
        for event in harness.of_type(JobProgress):
            by_job[event.job_id].append(event.pct)

        assert set(by_job) == {0, 1, 2}
        for values in by_job.values():
            assert values == sorted(values)
            assert len(values) == len(set(values))
            assert values[-1] == 100
            assert all(0 <= v <= 100 for v in values)

    def test_pool_never_exceeds_threads(self, cache, library):
        active = 0
        peak = 0
        lock = threading.Lock()

        class CountingExtractor(FakeExtractor):
            def extract(self, url, work_dir, profile, on_progress=None, cancel_event=None):
                nonlocal active, peak
                with lock:
                    active += 1
                    peak = max(peak, active)
                try:
                    return super().extract(url, work_dir, profile, on_progress, cancel_event)
                finally:
                    with lock:
                        active -= 1

        extractor = CountingExtractor(delays={url_of(d): 0.1 for d in DESCRIPTORS})
        Harness(cache, library, extractor, threads=2).run()

        assert peak <= 2

    def test_empty_run(self, cache, library):
        assert Harness(cache, library, FakeExtractor()).run([]) == []


class TestDedup:

    def test_cached_track_skipped(self, cache, library):
        Harness(cache, library, FakeExtractor()).run()

        extractor = FakeExtractor()
        harness = Harness(cache, library, extractor)
        jobs = harness.run()

        assert extractor.calls == []
        assert all(j.state is JobState.DONE and j.skipped for j in jobs)
        assert all(e.skipped for e in harness.of_type(JobCompleted))

    def test_record_for_other_profile_is_a_miss(self, cache, library):
        """A flac copy elsewhere does not satisfy an mp3 job"""
        elsewhere = library / "old" / "track.flac"
        elsewhere.parent.mkdir(parents=True)
        elsewhere.write_bytes(b"flac data")
        fp = fingerprint(DESCRIPTORS[0])
        cache.commit(CompletionRecord(
            fingerprint=fp, file_path=str(elsewhere), format="flac",
            tagged_at=now_iso(), checksum=file_checksum(elsewhere),
        ))

        extractor = FakeExtractor()
        jobs = Harness(cache, library, extractor).run(DESCRIPTORS[:1])

        assert extractor.calls == [url_of(DESCRIPTORS[0])]
        assert not jobs[0].skipped
        record = cache.get(fp)
        assert record.format == "mp3"
        assert record.file_path == str(jobs[0].destination)
        assert elsewhere.exists()

    def test_duplicate_in_one_run_extracted_once(self, cache, library):
        """The same track twice in a playlist is acquired once"""
        extractor = FakeExtractor(delays={url_of(DESCRIPTORS[0]): 0.2})
        harness = Harness(cache, library, extractor, threads=4)

        jobs = harness.run([DESCRIPTORS[0], DESCRIPTORS[1], DESCRIPTORS[0]])

        assert extractor.calls_for(url_of(DESCRIPTORS[0])) == 1
        assert jobs[0].file_path == jobs[2].file_path
        assert sorted([jobs[0].skipped, jobs[2].skipped]) == [False, True]


class TestRetries:

    def test_transient_then_success(self, cache, library):
        url = url_of(DESCRIPTORS[0])
        extractor = FakeExtractor(failures={url: [transient_error()]})
        jobs = Harness(cache, library, extractor).run(DESCRIPTORS[:1])

        assert jobs[0].state is JobState.DONE
        assert jobs[0].attempts == 2
        assert extractor.calls_for(url) == 2

    def test_retries_bounded(self, cache, library):
        url = url_of(DESCRIPTORS[0])
        extractor = FakeExtractor(failures={url: [transient_error() for _ in range(10)]})
        harness = Harness(cache, library, extractor, max_attempts=3)

        jobs = harness.run(DESCRIPTORS[:1])

        assert extractor.calls_for(url) == 3
        assert jobs[0].state is JobState.FAILED
        assert jobs[0].attempts == 3
        assert jobs[0].error_kind == "DownloadError.ExternalToolFailure(1)"
        assert len(harness.of_type(JobFailed)) == 1

    def test_permanent_not_retried(self, cache, library):
        url = url_of(DESCRIPTORS[0])
        extractor = FakeExtractor(failures={url: [permanent_error()]})

        jobs = Harness(cache, library, extractor).run(DESCRIPTORS[:1])

        assert extractor.calls_for(url) == 1
        assert jobs[0].state is JobState.FAILED

    def test_failure_is_isolated(self, cache, library):
        extractor = FakeExtractor(failures={url_of(DESCRIPTORS[1]): [permanent_error()]})
        jobs = Harness(cache, library, extractor).run()

        assert [j.state for j in jobs] == [JobState.DONE, JobState.FAILED, JobState.DONE]
        assert cache.lookup(jobs[1].fingerprint) is None


class TestFailures:

    def test_match_failure(self, cache, library):
        source = FakeSource(ALBUM_TRACKS, overrides={DESCRIPTORS[0].search_query: []})
        extractor = FakeExtractor()
        harness = Harness(cache, library, extractor, source=source)

        jobs = harness.run(DESCRIPTORS[:1])

        assert jobs[0].state is JobState.FAILED
        assert jobs[0].error_kind == "MatchError.NoAcceptableCandidate"
        assert extractor.calls == []
        assert harness.of_type(JobFailed)[0].error_kind == "MatchError.NoAcceptableCandidate"

    def test_tag_failure_not_committed(self, cache, library):
        class BrokenTagger(Tagger):
            def tag(self, path, descriptor, art_bytes, profile):
                raise TagError(TagErrorKind.IO_FAILURE, "disk error")

        jobs = Harness(cache, library, FakeExtractor(), tagger=BrokenTagger()).run(DESCRIPTORS[:1])

        assert jobs[0].error_kind == "TagError.IOFailure"
        assert not jobs[0].destination.exists()
        assert cache.lookup(jobs[0].fingerprint) is None

    def test_unexpected_error(self, cache, library):
        class CrashingTagger(Tagger):
            def tag(self, path, descriptor, art_bytes, profile):
                raise KeyError("bug")

        jobs = Harness(cache, library, FakeExtractor(), tagger=CrashingTagger()).run()

        assert all(j.state is JobState.FAILED for j in jobs)
        assert all(j.error_kind == "UnexpectedError" for j in jobs)


class TestCancellation:

    def test_cancel_fails_remaining_jobs(self, cache, library):
        extractor = FakeExtractor(block=True)
        harness = Harness(cache, library, extractor, threads=1)
        result = {}

        runner = threading.Thread(target=lambda: result.setdefault("jobs", harness.run()))
        runner.start()
        assert extractor.started.wait(timeout=10)

        harness.orchestrator.cancel()
        runner.join(timeout=10)

        assert not runner.is_alive()
        jobs = result["jobs"]
        assert all(j.state is JobState.FAILED for j in jobs)
        assert all(j.error_kind == "Cancelled" for j in jobs)
        assert harness.orchestrator.cancelled
        assert extractor.calls_for(url_of(DESCRIPTORS[1])) == 0

    def test_cancel_keeps_completed(self, cache, library):
        first = url_of(DESCRIPTORS[0])

        class BlockAfterFirst(FakeExtractor):
            def extract(self, url, work_dir, profile, on_progress=None, cancel_event=None):
                self.block = url != first
                return super().extract(url, work_dir, profile, on_progress, cancel_event)

        extractor = BlockAfterFirst()
        harness = Harness(cache, library, extractor, threads=1)
        result = {}

        runner = threading.Thread(target=lambda: result.setdefault("jobs", harness.run()))
        runner.start()
        for _ in range(100):
            if extractor.calls_for(url_of(DESCRIPTORS[1])):
                break
            time.sleep(0.05)

        harness.orchestrator.cancel()
        runner.join(timeout=10)

        jobs = result["jobs"]
        assert jobs[0].state is JobState.DONE
        assert cache.lookup(jobs[0].fingerprint) is not None
        assert [j.error_kind for j in jobs[1:]] == ["Cancelled", "Cancelled"]

    def test_cancel_pending_retry(self, cache, library):
        url = url_of(DESCRIPTORS[0])
        extractor = FakeExtractor(failures={url: [transient_error()]})
        harness = Harness(cache, library, extractor, threads=1)
        harness.orchestrator.retry_base_delay = 30
        result = {}

        runner = threading.Thread(target=lambda: result.setdefault("jobs", harness.run(DESCRIPTORS[:1])))
        runner.start()
        for _ in range(100):
            if harness.orchestrator.registry.count(JobState.RETRY):
                break
            time.sleep(0.05)

        harness.orchestrator.cancel()
        runner.join(timeout=10)

        assert not runner.is_alive()
        assert result["jobs"][0].error_kind == "Cancelled"
        assert extractor.calls_for(url) == 1

    def test_cancel_during_search_backoff(self, cache, library):
        class FlakySource(FakeSource):
            def __init__(self):
                super().__init__(ALBUM_TRACKS)
                self.max_retries = 5
                self.retry_delay_base = 30
                self.failing = threading.Event()

            def search(self, query, cancel_event=None):
                return self._search_with_retry(self._fail, query, cancel_event=cancel_event)

            def _fail(self, query):
                self.failing.set()
                raise ConnectionError("search backend down")

        source = FlakySource()
        harness = Harness(cache, library, FakeExtractor(), source=source, threads=1)
        result = {}

        runner = threading.Thread(target=lambda: result.setdefault("jobs", harness.run(DESCRIPTORS[:1])))
        runner.start()
        assert source.failing.wait(timeout=10)

        started = time.monotonic()
        harness.orchestrator.cancel()
        runner.join(timeout=10)

        assert not runner.is_alive()
        assert time.monotonic() - started < 10
        assert result["jobs"][0].error_kind == "Cancelled"
