"""Sourcemap upload tool with bounded concurrency and per-file retries."""

__version__ = "0.1.0"

from srcmap.models import BatchSummary, ProxyConfiguration, RepositoryData, UploadConfig, UploadStatus

__all__ = [
    "BatchSummary",
    "ProxyConfiguration",
    "RepositoryData",
    "UploadConfig",
    "UploadStatus",
    "__version__",
]
