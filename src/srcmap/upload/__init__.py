"""Upload pipeline for sourcemaps.

Public API
----------
.. autoclass:: UploadOrchestrator
.. autoclass:: UploadJob
.. autoclass:: UploadObserver
.. autoclass:: UploadProgressTracker
.. autoclass:: MultipartPayload
.. autoclass:: RetryPolicy
.. autoclass:: ClientCache
.. autoclass:: RequestBuilder
"""

from srcmap.upload.concurrency import do_with_max_concurrency
from srcmap.upload.fsm import JobLifecycleSM, create_fsm
from srcmap.upload.job import UploadJob
from srcmap.upload.multipart import (
    FilePart,
    MultipartPayload,
    MultipartStream,
    StringPart,
    open_multipart_stream,
)
from srcmap.upload.observer import UploadObserver
from srcmap.upload.orchestrator import UploadFailedError, UploadOrchestrator
from srcmap.upload.progress import UploadProgressTracker
from srcmap.upload.retry import RetryPolicy, retry_request
from srcmap.upload.status import summarize
from srcmap.upload.transport import ClientCache, RequestBuilder, UploadHTTPError, build_path

__all__ = [
    "ClientCache",
    "FilePart",
    "JobLifecycleSM",
    "MultipartPayload",
    "MultipartStream",
    "RequestBuilder",
    "RetryPolicy",
    "StringPart",
    "UploadFailedError",
    "UploadHTTPError",
    "UploadJob",
    "UploadObserver",
    "UploadOrchestrator",
    "UploadProgressTracker",
    "build_path",
    "create_fsm",
    "do_with_max_concurrency",
    "open_multipart_stream",
    "retry_request",
    "summarize",
]
