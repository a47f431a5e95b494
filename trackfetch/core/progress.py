"""
Run progress bar for trackfetch using the Rich library.

The bar is driven entirely by job events: it subscribes to the run's
EventAggregator and is therefore only ever updated from the aggregator
thread.

Usage:
    from trackfetch.core.progress import RunProgressBar

    with RunProgressBar(total=len(tracks)) as progress:
        aggregator.subscribe(progress.handle_event)
        ...
"""

from typing import Optional

from rich import get_console
from rich.console import OverflowMethod
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    Task,
    TaskID,
)
from rich.style import StyleType
from rich.text import Text
from rich.theme import Theme

from trackfetch.download.events import JobCompleted, JobEvent, JobFailed, JobStarted


# =============================================================================
# Theme
# =============================================================================

PROGRESS_THEME = Theme({
    "bar.back": "grey23",
    "bar.complete": "rgb(165,66,129)",
    "bar.finished": "rgb(114,156,31)",
    "bar.pulse": "rgb(165,66,129)",
    "progress.percentage": "white",
})


# =============================================================================
# Custom Column
# =============================================================================

class SizedTextColumn(ProgressColumn):
    """
    Markup text column padded or truncated to a fixed width.

    Track titles vary wildly in length; a fixed width keeps the counters
    and the bar from jumping around as the description changes.
    """

    def __init__(
        self,
        text_format: str,
        width: int,
        style: StyleType = "none",
        overflow: Optional[OverflowMethod] = None,
    ) -> None:
        super().__init__()
        self.text_format = text_format
        self.width = width
        self.style = style
        self.overflow = overflow

    def render(self, task: Task) -> Text:
        text = Text.from_markup(self.text_format.format(task=task), style=self.style)
        text.truncate(max_width=self.width, overflow=self.overflow, pad=True)
        return text


# =============================================================================
# Run Progress Bar
# =============================================================================

class RunProgressBar:
    """
    Overall progress for one acquisition run.

    Displays:
    - Description (the title of the most recently started track)
    - Status: ✓ done, ✗ failed, ⊘ skipped via cache
    - Progress bar
    - Percentage

    Example:
        Downloading     ✓ 12  ✗ 1  ⊘ 5         ━━━━━━━━━━━━━━━━━  64%
    """

    def __init__(self, total: int, description: str = "Downloading", status_width: int = 35):
        self.total = total
        self.description = description
        self.completed = 0
        self.done = 0
        self.failed = 0
        self.skipped = 0

        self.console = get_console()
        self.console.push_theme(PROGRESS_THEME)

        self.progress = Progress(
            SizedTextColumn(
                "[white]{task.description}",
                overflow="ellipsis",
                width=20,
            ),
            SizedTextColumn(
                "{task.fields[status]}",
                width=status_width,
                style="white",
            ),
            BarColumn(bar_width=40, finished_style="green"),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=self.console,
            transient=False,
            refresh_per_second=10,
        )

        self.task_id: Optional[TaskID] = None
        self._started = False

    def __enter__(self) -> "RunProgressBar":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def start(self) -> None:
        if not self._started:
            self.progress.start()
            self.task_id = self.progress.add_task(
                description=self.description,
                total=self.total,
                status=self._get_status_text(),
            )
            self._started = True

    def stop(self) -> None:
        if self._started:
            self.progress.stop()
            self.console.pop_theme()
            self._started = False

    def handle_event(self, event: JobEvent) -> None:
        """EventAggregator subscriber."""
        if isinstance(event, JobStarted):
            if self.task_id is not None:
                self.progress.update(self.task_id, description=event.title)
            return

        if isinstance(event, JobCompleted):
            self.completed += 1
            if event.skipped:
                self.skipped += 1
            else:
                self.done += 1
        elif isinstance(event, JobFailed):
            self.completed += 1
            self.failed += 1
        else:
            return

        self._update_progress()

    def _get_status_text(self) -> str:
        parts = [
            f"[green]✓ {self.done}[/green]",
            f"[red]✗ {self.failed}[/red]",
        ]
        if self.skipped > 0:
            parts.append(f"[yellow]⊘ {self.skipped}[/yellow]")
        return "  ".join(parts)

    def _update_progress(self) -> None:
        if self.task_id is not None:
            self.progress.update(
                self.task_id,
                completed=self.completed,
                status=self._get_status_text(),
            )


__all__ = [
    "PROGRESS_THEME",
    "SizedTextColumn",
    "RunProgressBar",
]
