"""Shared pytest fixtures for sourcemap upload tests.

Provides a temporary build directory with sourcemaps, job and config
factories, a recording observer, an in-memory fake transport, and a small
multipart parser used to check request bodies.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from srcmap.models import UploadConfig
from srcmap.upload.job import UploadJob
from srcmap.upload.observer import UploadObserver

SOURCEMAP_CONTENT = {
    "version": 3,
    "file": "app.js",
    "sources": ["webpack:///src/index.ts", "webpack:///src/utils/format.ts?abc"],
    "names": [],
    "mappings": "AAAA,SAASA",
}


class RecordingObserver(UploadObserver):
    """Observer that keeps every event in memory, in order."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def on_upload(self, job: UploadJob) -> None:
        self.events.append(("upload", job))

    def on_retry(self, job: UploadJob, error: BaseException, attempt: int) -> None:
        self.events.append(("retry", job, error, attempt))

    def on_error(self, job: UploadJob, error: BaseException) -> None:
        self.events.append(("error", job, error))

    def on_success(self, job: UploadJob) -> None:
        self.events.append(("success", job))

    def on_dry_run(self, job: UploadJob) -> None:
        self.events.append(("dry_run", job))

    def on_skipped(self, job: UploadJob, message: str, unexpected: bool = False) -> None:
        self.events.append(("skipped", job, message, unexpected))

    def on_warning(self, message: str) -> None:
        self.events.append(("warning", message))

    def count(self, kind: str) -> int:
        return sum(1 for event in self.events if event[0] == kind)

    def kinds(self) -> list[str]:
        return [event[0] for event in self.events]


class FakeTransport:
    """Transport double that consumes the streamed body of every request.

    *outcome* is called with the raw body of each request and returns the
    response, or raises to simulate a failure.
    """

    def __init__(self, outcome: Callable[[bytes], Any] | None = None) -> None:
        self._outcome = outcome or (lambda body: "ok")
        self.requests: list[dict[str, Any]] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def __call__(
        self,
        method: str,
        url: str | None = None,
        headers: dict[str, str] | None = None,
        content: Any = None,
    ) -> Any:
        body = b"".join([chunk async for chunk in content]) if content is not None else b""
        self.requests.append(
            {"method": method, "url": url, "headers": headers or {}, "body": body}
        )
        return self._outcome(body)


def parse_multipart(body: bytes, content_type: str) -> list[dict[str, Any]]:
    """Split a multipart/form-data body into its parts.

    Returns one dict per part with ``name``, ``filename``, ``content_type``
    and the raw ``data`` bytes, in transmission order.
    """
    boundary = re.search(r"boundary=([^;]+)", content_type).group(1)
    delimiter = b"--" + boundary.encode("ascii")
    sections = body.split(delimiter)
    assert sections[0] == b"", "body must start with the first delimiter"
    assert sections[-1] == b"--\r\n", "body must end with the closing delimiter"

    parts = []
    for section in sections[1:-1]:
        assert section.startswith(b"\r\n")
        raw_headers, _, data = section[2:].partition(b"\r\n\r\n")
        assert data.endswith(b"\r\n")
        headers = {}
        for line in raw_headers.decode("utf-8").split("\r\n"):
            key, _, value = line.partition(": ")
            headers[key.lower()] = value
        disposition = headers["content-disposition"]
        name = re.search(r'name="([^"]*)"', disposition).group(1)
        filename = re.search(r'filename="([^"]*)"', disposition)
        parts.append(
            {
                "name": name,
                "filename": filename.group(1) if filename else None,
                "content_type": headers.get("content-type"),
                "data": data[:-2],
            }
        )
    return parts


@pytest.fixture
def recording_observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def build_dir(tmp_path: Path) -> Path:
    """Create a temporary build output tree.

    Structure:
        dist/
          app.js          (minified)
          app.js.map
          vendor/
            lib.js
            lib.js.map
          styles.css.map  (not a JS sourcemap, never picked up)
    """
    root = tmp_path / "dist"
    (root / "vendor").mkdir(parents=True)

    (root / "app.js").write_text("console.log('app');")
    (root / "app.js.map").write_text(json.dumps(SOURCEMAP_CONTENT))
    (root / "vendor" / "lib.js").write_text("var lib=1;")
    (root / "vendor" / "lib.js.map").write_text(
        json.dumps({**SOURCEMAP_CONTENT, "file": "lib.js", "sources": ["lib.ts"]})
    )
    (root / "styles.css.map").write_text("{}")
    return root


@pytest.fixture
def make_job(tmp_path: Path) -> Callable[..., UploadJob]:
    """Factory creating a minified file + sourcemap pair and its job."""

    def _make(name: str = "app", content: dict | None = None) -> UploadJob:
        minified = tmp_path / f"{name}.js"
        sourcemap = tmp_path / f"{name}.js.map"
        minified.write_text(f"console.log('{name}');")
        sourcemap.write_text(json.dumps(content or SOURCEMAP_CONTENT))
        return UploadJob(
            minified_file_path=str(minified),
            minified_url=f"https://cdn.example.com/static/{name}.js",
            sourcemap_path=str(sourcemap),
            relative_path=f"/{name}.js",
            minified_path_prefix="https://cdn.example.com/static",
        )

    return _make


@pytest.fixture
def upload_config() -> UploadConfig:
    """Configuration with near-zero backoff so retry tests run fast."""
    return UploadConfig(
        service="web-frontend",
        release_version="1.2.3",
        api_key="test-key",
        max_concurrency=4,
        max_attempts=5,
        min_wait=0.001,
        max_wait=0.002,
    )


@pytest.fixture
def multipart_parts() -> Callable[[bytes, str], list[dict[str, Any]]]:
    return parse_multipart
