"""Pre-upload checks on sourcemap jobs."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from srcmap.upload.job import UploadJob


class InvalidPayload(Exception):
    """A job that cannot be uploaded as-is; the job is skipped.

    Attributes:
        reason: Short machine-readable cause (``missing_sourcemap``, ...).
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def check_file(path: str) -> tuple[bool, bool]:
    """Return ``(exists, empty)`` for *path*.

    Raises:
        OSError: For errors other than the file not existing.
    """
    try:
        size = os.stat(path).st_size
    except FileNotFoundError:
        return False, False
    return True, size == 0


def validate_payload(job: UploadJob) -> None:
    """Reject jobs whose sourcemap or minified file is missing or empty.

    Raises:
        InvalidPayload: With the reason of the first failed check.
    """
    exists, empty = check_file(job.sourcemap_path)
    if not exists:
        raise InvalidPayload(
            "missing_sourcemap", f"Skipping missing sourcemap ({job.sourcemap_path})"
        )
    if empty:
        raise InvalidPayload(
            "empty_sourcemap", f"Skipping empty sourcemap ({job.sourcemap_path})"
        )

    exists, empty = check_file(job.minified_file_path)
    if not exists:
        raise InvalidPayload(
            "missing_js",
            f"Missing corresponding JS file for sourcemap ({job.minified_file_path})",
        )
    if empty:
        raise InvalidPayload(
            "empty_js",
            f"Skipping sourcemap ({job.sourcemap_path}) due to "
            f"{job.minified_file_path} being empty",
        )
