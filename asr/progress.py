from __future__ import annotations

from typing import Optional, Protocol

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)


class ProgressSink(Protocol):
    def update(self, fraction: float) -> None: ...


class NullProgress:
    def update(self, fraction: float) -> None:
        pass


class RichProgressSink:
    """Terminal progress bar; use as a context manager around transcription."""

    def __init__(self, description: str = "transcribing", console: Optional[Console] = None):
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn(f"[bold blue]{description}[/bold blue]"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("•"),
            TimeElapsedColumn(),
            TextColumn("• ETA:"),
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )
        self._task: Optional[TaskID] = None

    def __enter__(self) -> "RichProgressSink":
        self._progress.start()
        self._task = self._progress.add_task(description="", total=1.0)
        return self

    def __exit__(self, *exc_info) -> None:
        self._progress.stop()

    def update(self, fraction: float) -> None:
        if self._task is not None:
            self._progress.update(self._task, completed=fraction)
