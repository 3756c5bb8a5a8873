"""Data models and enums for the sourcemap upload pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from srcmap.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_OVERRIDE_URL,
    DEFAULT_TERMINAL_STATUS_CODES,
)


class UploadStatus(str, Enum):
    """Terminal outcome of a single upload job."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class RepositoryData:
    """Revision-control data attached to a job.

    Either the whole descriptor is present on a job or the job carries
    ``None``; commit and remote are both required. ``payload`` is the
    serialized list of tracked source files, absent when no tracked file
    matched the sourcemap.
    """

    commit_sha: str
    repository_url: str
    payload: str | None = None

    def __post_init__(self) -> None:
        if not self.commit_sha or not self.repository_url:
            raise ValueError(
                "Repository data requires both a commit hash and a remote URL"
            )


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Counts of each outcome for one batch plus the elapsed wall time."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    elapsed_seconds: float = 0.0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped

    def to_dict(self) -> dict[str, float | int]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "elapsed_seconds": self.elapsed_seconds,
        }


@dataclass
class ProxyConfiguration:
    """Explicit proxy settings. ``host`` and ``port`` are both needed."""

    protocol: str = "http"
    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None


@dataclass
class UploadConfig:
    """Configuration for the sourcemap upload pipeline.

    Controls endpoint targeting, credentials, concurrency, retry policy and
    the metadata sent with every sourcemap.
    """

    service: str | None = None
    release_version: str | None = None
    project_path: str = ""
    api_key: str | None = None
    app_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    override_url: str | None = DEFAULT_OVERRIDE_URL
    headers: dict[str, str] = field(default_factory=dict)
    proxy: ProxyConfiguration | None = None
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    min_wait: float = 1.0
    max_wait: float = 30.0
    timeout_seconds: float = 60.0
    terminal_status_codes: frozenset[int] = DEFAULT_TERMINAL_STATUS_CODES
    dry_run: bool = False
    cli_version: str = "0.0.0"
