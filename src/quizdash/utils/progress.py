from typing import Optional

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn


class ProgressReporter:
    """A single rich progress bar for one processing loop.

    Use as a context manager; log lines written while it is active are
    printed above the bar.
    """

    def __init__(self, total: int, description: str, console: Optional[Console] = None):
        self.total = total
        self.description = description
        self._progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}"),
            console=console,
            transient=False,
        )
        self._task_id = self._progress.add_task(description, total=total, status="Starting...")
        self.completed = 0

    def __enter__(self) -> "ProgressReporter":
        self._progress.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finish()

    def advance(self, status: str = "") -> None:
        self.completed += 1
        self._progress.update(self._task_id, advance=1, status=status)

    def finish(self) -> None:
        if self._progress.live.is_started:
            self._progress.update(self._task_id, status="Complete")
            self._progress.stop()
