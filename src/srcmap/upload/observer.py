"""Event sink interface for job lifecycle notifications.

The pipeline never prints. Callers that want to report progress pass an
:class:`UploadObserver` to the orchestrator and override the events they
care about. Observers have no effect on control flow.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from srcmap.upload.job import UploadJob


class UploadObserver:
    """Base observer; every event is a no-op."""

    def on_upload(self, job: UploadJob) -> None:
        """Called once, right before the first upload attempt."""

    def on_retry(self, job: UploadJob, error: BaseException, attempt: int) -> None:
        """Called before each retry with the attempt number that failed."""

    def on_error(self, job: UploadJob, error: BaseException) -> None:
        """Called once when the job ends in failure."""

    def on_success(self, job: UploadJob) -> None:
        """Called once when the upload was accepted."""

    def on_dry_run(self, job: UploadJob) -> None:
        """Called instead of uploading when running in dry-run mode."""

    def on_skipped(self, job: UploadJob, message: str, unexpected: bool = False) -> None:
        """Called when the job is skipped before any network call.

        ``unexpected`` is true when the cause was not a validation rejection.
        """

    def on_warning(self, message: str) -> None:
        """Non-fatal batch or job level warning (repository data, sources)."""
