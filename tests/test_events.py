"""Test the event aggregator"""

import threading

from trackfetch.download.events import (
    EventAggregator,
    JobCompleted,
    JobFailed,
    JobProgress,
    JobStarted,
)


class TestEventAggregator:

    def test_delivers_in_publish_order(self):
        received = []
        aggregator = EventAggregator()
        aggregator.subscribe(received.append)
        aggregator.start()

        events = [
            JobStarted(job_id=0, title="A"),
            JobProgress(job_id=0, pct=5, state="Matching"),
            JobProgress(job_id=0, pct=50, state="Downloading"),
            JobCompleted(job_id=0, path="/a.mp3"),
        ]
        for event in events:
            aggregator.publish(event)
        aggregator.stop()

        assert received == events

    def test_subscribers_run_on_one_thread(self):
        threads = set()
        aggregator = EventAggregator()
        aggregator.subscribe(lambda event: threads.add(threading.current_thread().name))
        aggregator.start()

        publishers = [
            threading.Thread(target=aggregator.publish, args=(JobStarted(job_id=i, title=str(i)),))
            for i in range(10)
        ]
        for t in publishers:
            t.start()
        for t in publishers:
            t.join()
        aggregator.stop()

        assert threads == {"event-aggregator"}

    def test_broken_subscriber_does_not_block_others(self):
        received = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        aggregator = EventAggregator()
        aggregator.subscribe(broken)
        aggregator.subscribe(received.append)
        aggregator.start()
        aggregator.publish(JobFailed(job_id=1, reason="x", error_kind="TagError.IOFailure"))
        aggregator.stop()

        assert len(received) == 1

    def test_progress_of(self):
        aggregator = EventAggregator()
        aggregator.start()
        aggregator.publish(JobProgress(job_id=3, pct=42, state="Downloading"))
        aggregator.publish(JobCompleted(job_id=4, path="/b.mp3", skipped=True))
        aggregator.stop()

        assert aggregator.progress_of(3) == 42
        assert aggregator.progress_of(4) == 100
        assert aggregator.progress_of(99) == 0

    def test_stop_without_start(self):
        EventAggregator().stop()
