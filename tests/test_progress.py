"""Test the run progress bar"""

from trackfetch.core.progress import RunProgressBar
from trackfetch.download.events import JobCompleted, JobFailed, JobProgress, JobStarted


class TestRunProgressBar:

    def test_counts_outcomes(self):
        with RunProgressBar(total=4) as bar:
            bar.handle_event(JobStarted(job_id=0, title="Bohemian Rhapsody"))
            bar.handle_event(JobProgress(job_id=0, pct=50, state="downloading"))
            bar.handle_event(JobCompleted(job_id=0, path="/music/a.mp3"))
            bar.handle_event(JobCompleted(job_id=1, path="/music/b.mp3", skipped=True))
            bar.handle_event(JobFailed(job_id=2, reason="Private video", error_kind="DownloadError.ExternalToolFailure(1)"))

            assert (bar.completed, bar.done, bar.skipped, bar.failed) == (3, 1, 1, 1)
            task = bar.progress.tasks[0]
            assert task.completed == 3
            assert task.total == 4
            assert task.description == "Bohemian Rhapsody"

    def test_progress_events_do_not_count(self):
        with RunProgressBar(total=1) as bar:
            bar.handle_event(JobProgress(job_id=0, pct=90, state="tagging"))
            assert bar.completed == 0

    def test_status_text(self):
        with RunProgressBar(total=2) as bar:
            assert "⊘" not in bar._get_status_text()

            bar.handle_event(JobCompleted(job_id=0, path="/x.mp3", skipped=True))
            assert "⊘ 1" in bar._get_status_text()

    def test_start_stop_idempotent(self):
        bar = RunProgressBar(total=1)
        bar.start()
        bar.start()
        bar.stop()
        bar.stop()
        assert len(bar.progress.tasks) == 1
