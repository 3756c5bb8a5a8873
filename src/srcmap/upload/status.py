"""Batch outcome aggregation."""

from __future__ import annotations

from collections.abc import Iterable

from srcmap.models import BatchSummary, UploadStatus


def summarize(
    results: Iterable[UploadStatus | BaseException],
    elapsed_seconds: float,
) -> BatchSummary:
    """Count successes, failures and skips.

    Exceptions captured by the scheduler in place of a status count as
    failures.
    """
    counts = {status: 0 for status in UploadStatus}
    for result in results:
        if isinstance(result, UploadStatus):
            counts[result] += 1
        else:
            counts[UploadStatus.FAILURE] += 1

    return BatchSummary(
        succeeded=counts[UploadStatus.SUCCESS],
        failed=counts[UploadStatus.FAILURE],
        skipped=counts[UploadStatus.SKIPPED],
        elapsed_seconds=elapsed_seconds,
    )
