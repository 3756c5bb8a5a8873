"""Batch upload orchestrator for sourcemaps.

Composes the upload primitives (transport, retry policy, multipart
builder, scheduler, aggregator) into a complete upload engine that:

* Runs every job through validate -> build payload -> upload
* Limits concurrency with :func:`do_with_max_concurrency`
* Retries transient failures, fails fast on terminal status codes
* Isolates failures: one bad sourcemap never aborts the batch
* Reports every lifecycle event to an :class:`UploadObserver`
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from srcmap.constants import REPOSITORY_PAYLOAD_VERSION
from srcmap.models import BatchSummary, RepositoryData, UploadConfig, UploadStatus
from srcmap.upload.concurrency import do_with_max_concurrency
from srcmap.upload.fsm import create_fsm
from srcmap.upload.job import UploadJob
from srcmap.upload.multipart import MultipartPayload, open_multipart_stream
from srcmap.upload.observer import UploadObserver
from srcmap.upload.retry import RetryPolicy, retry_request
from srcmap.upload.status import summarize
from srcmap.validation import InvalidPayload, validate_payload

if TYPE_CHECKING:
    from srcmap.git import RepositoryInfo
    from srcmap.upload.transport import RequestBuilder

logger = logging.getLogger(__name__)

UPLOAD_PATH = "v1/input"


class UploadFailedError(Exception):
    """Final error reported for a job that ended in failure."""


def format_upload_error(error: BaseException) -> UploadFailedError:
    """Append the HTTP status text to the error message when there is one."""
    status_text = getattr(error, "status_text", None)
    if status_text:
        failed = UploadFailedError(f"{error} ({status_text})")
    else:
        failed = UploadFailedError(str(error) or type(error).__name__)
    failed.__cause__ = error
    return failed


def build_repository_payload(files: list[str], commit_sha: str, repository_url: str) -> str:
    """Serialize the tracked source files of one sourcemap."""
    return json.dumps(
        {
            "data": [
                {
                    "files": files,
                    "hash": commit_sha,
                    "repository_url": repository_url,
                }
            ],
            "version": REPOSITORY_PAYLOAD_VERSION,
        }
    )


class UploadOrchestrator:
    """Main upload engine coordinating the sourcemap upload pipeline.

    Usage::

        async with ClientCache(timeout=config.timeout_seconds) as clients:
            orchestrator = UploadOrchestrator(
                config, RequestBuilder(config, clients), observer=observer
            )
            summary = await orchestrator.run(jobs)

    Args:
        config: Upload pipeline configuration.
        request: Transport call; may be ``None`` only in dry-run mode.
        validator: Raises :class:`InvalidPayload` for unacceptable jobs.
        observer: Receives lifecycle events (omit for headless mode).
    """

    def __init__(
        self,
        config: UploadConfig,
        request: RequestBuilder | Callable[..., Any] | None = None,
        validator: Callable[[UploadJob], None] = validate_payload,
        observer: UploadObserver | None = None,
    ) -> None:
        if request is None and not config.dry_run:
            raise ValueError("A transport is required unless running in dry-run mode")

        self._config = config
        self._request = request
        self._validator = validator
        self._observer = observer or UploadObserver()
        self._policy = RetryPolicy(
            max_attempts=config.max_attempts,
            terminal_status_codes=frozenset(config.terminal_status_codes),
            min_wait=config.min_wait,
            max_wait=config.max_wait,
        )

    # ------------------------------------------------------------------
    # Repository augmentation
    # ------------------------------------------------------------------

    def add_repository_data(
        self,
        jobs: Sequence[UploadJob],
        resolve: Callable[[], RepositoryInfo],
    ) -> bool:
        """Attach revision-control data to every job.

        If *resolve* fails the whole batch proceeds without repository
        data and a single warning is emitted. A failure to match the
        sources of one sourcemap only affects that job.

        Returns:
            ``True`` if repository data was attached.
        """
        try:
            info = resolve()
            base = RepositoryData(commit_sha=info.hash, repository_url=info.remote)
        except Exception as exc:
            logger.warning("Could not gather repository data: %s", exc)
            self._observer.on_warning(
                f"Could not gather git data, sourcemaps will be uploaded "
                f"without repository information: {exc}"
            )
            return False

        for job in jobs:
            job.attach_repository_data(
                replace(base, payload=self._repository_payload(info, job))
            )
        return True

    def _repository_payload(self, info: RepositoryInfo, job: UploadJob) -> str | None:
        def _on_sources_not_found() -> None:
            self._observer.on_warning(
                f"No tracked files found for sources contained in {job.sourcemap_path}"
            )

        try:
            files = info.tracked_files_matcher.match_sourcemap(
                job.sourcemap_path, _on_sources_not_found
            )
        except Exception as exc:
            logger.warning(
                "Repository data not attached to %s: %s", job.sourcemap_path, exc
            )
            self._observer.on_warning(
                f"Could not attach git data for sourcemap {job.sourcemap_path}: {exc}"
            )
            return None

        if not files:
            return None
        return build_repository_payload(files, info.hash, info.remote)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self, jobs: Sequence[UploadJob]) -> BatchSummary:
        """Upload every job and return the batch summary.

        Per-job failures are reported through the observer and counted;
        they never raise.
        """
        started = time.monotonic()
        logger.info(
            "Uploading %d sourcemap(s) with concurrency %d%s",
            len(jobs),
            self._config.max_concurrency,
            " (dry run)" if self._config.dry_run else "",
        )

        results = await do_with_max_concurrency(
            self._config.max_concurrency, jobs, self.upload_job
        )
        summary = summarize(results, time.monotonic() - started)

        logger.info(
            "Upload complete: %d succeeded, %d failed, %d skipped of %d total in %.2fs",
            summary.succeeded,
            summary.failed,
            summary.skipped,
            summary.total,
            summary.elapsed_seconds,
        )
        return summary

    # ------------------------------------------------------------------
    # Single job
    # ------------------------------------------------------------------

    async def upload_job(self, job: UploadJob) -> UploadStatus:
        """Drive one job from validation to its terminal status."""
        fsm = create_fsm()

        fsm.start_validation()
        try:
            self._validator(job)
        except InvalidPayload as exc:
            logger.info("Skipping %s: %s", job.sourcemap_path, exc)
            fsm.skip()
            self._observer.on_skipped(job, str(exc), unexpected=False)
            return fsm.status
        except Exception as exc:
            return self._skip_unexpected(fsm, job, exc)

        fsm.accept()
        try:
            payload = job.as_multipart_payload(
                self._config.service or "",
                self._config.release_version or "",
                self._config.project_path,
            )
        except Exception as exc:
            return self._skip_unexpected(fsm, job, exc)

        if self._config.dry_run:
            fsm.complete_dry_run()
            self._observer.on_dry_run(job)
            return fsm.status

        fsm.start_upload()
        self._observer.on_upload(job)

        def _on_retry(error: BaseException, attempt: int) -> None:
            logger.warning(
                "Retrying upload of %s (attempt %d failed): %s",
                job.sourcemap_path,
                attempt,
                error,
            )
            self._observer.on_retry(job, error, attempt)

        try:
            await retry_request(
                lambda: self._send(payload), self._policy, on_retry=_on_retry
            )
        except Exception as exc:
            error = format_upload_error(exc)
            logger.error("Failed to upload %s: %s", job.sourcemap_path, error)
            fsm.fail_upload()
            self._observer.on_error(job, error)
            return fsm.status

        logger.debug("Uploaded %s", job.sourcemap_path)
        fsm.complete_upload()
        self._observer.on_success(job)
        return fsm.status

    def _skip_unexpected(self, fsm: Any, job: UploadJob, exc: Exception) -> UploadStatus:
        message = f"Skipping sourcemap {job.sourcemap_path} because of error: {exc}"
        logger.warning(message, exc_info=True)
        fsm.skip()
        self._observer.on_skipped(job, message, unexpected=True)
        return fsm.status

    async def _send(self, payload: MultipartPayload) -> Any:
        async with open_multipart_stream(payload) as stream:
            return await self._request(
                "POST",
                url=UPLOAD_PATH,
                headers=stream.headers,
                content=stream.content,
            )
