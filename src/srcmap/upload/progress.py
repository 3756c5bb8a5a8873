"""Rich progress display for the upload command.

Implements :class:`UploadObserver` so the orchestrator stays free of any
printing. Shows an overall progress bar with the current sourcemap as
status text, and prints one line per notable event above the bar.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from srcmap.upload.observer import UploadObserver

if TYPE_CHECKING:
    from srcmap.upload.job import UploadJob


class UploadProgressTracker(UploadObserver):
    """Rich progress tracker for a batch of sourcemaps.

    Usage::

        tracker = UploadProgressTracker(total_files=42)
        with tracker:
            summary = await UploadOrchestrator(config, request, observer=tracker).run(jobs)
    """

    def __init__(
        self,
        total_files: int,
        console: Console | None = None,
    ) -> None:
        self._total_files = total_files
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
            console=console,
        )
        self._task: TaskID | None = None
        self._stats: dict[str, int] = {
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
            "retried": 0,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the Rich progress display."""
        self._progress.start()
        self._task = self._progress.add_task(
            "[green]Sourcemaps",
            total=self._total_files,
            status="starting...",
        )

    def stop(self) -> None:
        """Stop the Rich progress display."""
        self._progress.stop()

    def __enter__(self) -> UploadProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Observer events
    # ------------------------------------------------------------------

    def _print(self, message: str) -> None:
        self._progress.console.print(message)

    def _advance(self, status: str) -> None:
        if self._task is not None:
            self._progress.advance(self._task, 1)
            self._progress.update(self._task, status=status)

    def on_upload(self, job: UploadJob) -> None:
        self._print(
            f"Uploading sourcemap {escape(job.sourcemap_path)} "
            f"for JS file available at {escape(job.minified_url)}"
        )
        if self._task is not None:
            self._progress.update(self._task, status=escape(_truncate_path(job.sourcemap_path)))

    def on_retry(self, job: UploadJob, error: BaseException, attempt: int) -> None:
        self._stats["retried"] += 1
        self._print(
            f"[yellow]Retry {attempt}[/yellow] sourcemap upload {escape(job.sourcemap_path)}: "
            f"{escape(str(error))}"
        )

    def on_error(self, job: UploadJob, error: BaseException) -> None:
        self._stats["failed"] += 1
        self._print(f"[red]Failed upload[/red] {escape(job.sourcemap_path)}: {escape(str(error))}")
        self._advance(f"[red]FAIL[/red] {escape(_truncate_path(job.sourcemap_path))}")

    def on_success(self, job: UploadJob) -> None:
        self._stats["succeeded"] += 1
        self._advance(escape(_truncate_path(job.sourcemap_path)))

    def on_dry_run(self, job: UploadJob) -> None:
        self._stats["succeeded"] += 1
        self._print(
            f"\\[DRYRUN] Uploading sourcemap {escape(job.sourcemap_path)} "
            f"for JS file available at {escape(job.minified_url)}"
        )
        self._advance(escape(_truncate_path(job.sourcemap_path)))

    def on_skipped(self, job: UploadJob, message: str, unexpected: bool = False) -> None:
        self._stats["skipped"] += 1
        color = "red" if unexpected else "yellow"
        self._print(f"[{color}]Skipped[/{color}] {escape(message)}")
        self._advance(f"[{color}]SKIP[/{color}] {escape(_truncate_path(job.sourcemap_path))}")

    def on_warning(self, message: str) -> None:
        self._print(f"[yellow]Warning:[/yellow] {escape(message)}")

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current statistics."""
        return dict(self._stats)


def _truncate_path(file_path: str, max_len: int = 40) -> str:
    """Truncate a file path for display, keeping the end."""
    if len(file_path) <= max_len:
        return file_path
    return "..." + file_path[-(max_len - 3) :]
