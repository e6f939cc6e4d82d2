"""Download progress display built on rich."""

from __future__ import annotations

from types import TracebackType

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

# Files smaller than this get no bar of their own.
PROGRESS_THRESHOLD = 100 * 1024


class ProgressTracker:
    """Advances one file's bar and the overall bar, when either exists."""

    def __init__(
        self, progress: Progress, task: TaskID | None, overall: TaskID | None
    ) -> None:
        self._progress = progress
        self._task = task
        self._overall = overall

    def advance(self, nbytes: int) -> None:
        if self._task is not None:
            self._progress.advance(self._task, nbytes)
        if self._overall is not None:
            self._progress.advance(self._overall, nbytes)

    def close(self) -> None:
        if self._task is not None:
            self._progress.remove_task(self._task)
            self._task = None


class DownloadProgress:
    """One live display shared by every download of a batch.

    Use as a context manager. With ``total`` an overall bar is shown in
    addition to the per-file bars.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        threshold: int = PROGRESS_THRESHOLD,
        total: int | None = None,
        description: str = "downloading",
        console: Console | None = None,
    ) -> None:
        self.threshold = threshold
        self._total = total
        self._description = description
        self._progress = Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console or Console(stderr=True),
            disable=not enabled,
            transient=True,
        )
        self._overall: TaskID | None = None

    def __enter__(self) -> DownloadProgress:
        self._progress.start()
        if self._total is not None and self._total >= self.threshold:
            self._overall = self._progress.add_task(self._description, total=self._total)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._progress.stop()

    def track(self, label: str, size: int | None, *, completed: int = 0) -> ProgressTracker:
        """Start tracking one file; only files of at least ``threshold`` bytes get a bar."""
        task = None
        if size is not None and size >= self.threshold:
            task = self._progress.add_task(label, total=size, completed=completed)
        if completed and self._overall is not None:
            self._progress.advance(self._overall, completed)
        return ProgressTracker(self._progress, task, self._overall)
