"""Tests for the upload orchestrator: per-job lifecycle and batch runs."""

from __future__ import annotations

import asyncio
import gzip
import json
from dataclasses import replace

import httpx
import pytest

from srcmap.git import RepositoryError, RepositoryInfo, TrackedFilesMatcher
from srcmap.models import RepositoryData, UploadStatus
from srcmap.upload.orchestrator import (
    UploadFailedError,
    UploadOrchestrator,
    build_repository_payload,
    format_upload_error,
)
from srcmap.upload.transport import UploadHTTPError
from srcmap.validation import InvalidPayload

from conftest import FakeTransport


def _http_error(status: int) -> UploadHTTPError:
    return UploadHTTPError(
        f"Request failed with status code {status}",
        status_code=status,
        status_text=httpx.codes.get_reason_phrase(status),
    )


def _raise(error: Exception):
    def outcome(body: bytes):
        raise error

    return outcome


def _fail_times(count: int, error: Exception):
    """Outcome failing the first *count* requests, then succeeding."""
    calls = 0

    def outcome(body: bytes):
        nonlocal calls
        calls += 1
        if calls <= count:
            raise error
        return "ok"

    return outcome


def _metadata(body: bytes, content_type: str, multipart_parts) -> dict:
    parts = multipart_parts(body, content_type)
    return json.loads(parts[0]["data"])


# ============================================================
# Single job lifecycle
# ============================================================


class TestUploadJob:
    """One job from validation to its terminal status."""

    async def test_success_sends_one_request(
        self, make_job, upload_config, recording_observer, multipart_parts
    ):
        job = make_job()
        transport = FakeTransport()
        orchestrator = UploadOrchestrator(
            upload_config, transport, observer=recording_observer
        )

        status = await orchestrator.upload_job(job)

        assert status is UploadStatus.SUCCESS
        assert transport.calls == 1
        assert recording_observer.kinds() == ["upload", "success"]

        request = transport.requests[0]
        assert request["method"] == "POST"
        assert request["url"] == "v1/input"
        content_type = request["headers"]["Content-Type"]
        parts = multipart_parts(request["body"], content_type)
        assert [p["name"] for p in parts] == ["metadata", "sourcemap"]
        assert json.loads(parts[0]["data"]) == {
            "assetPath": "https://cdn.example.com/static/app.js",
            "service": "web-frontend",
            "version": "1.2.3",
        }
        with open(job.sourcemap_path, "rb") as f:
            assert gzip.decompress(parts[1]["data"]) == f.read()

    async def test_dry_run_never_calls_transport(self, make_job, upload_config, recording_observer):
        config = replace(upload_config, dry_run=True)
        orchestrator = UploadOrchestrator(config, None, observer=recording_observer)

        status = await orchestrator.upload_job(make_job())

        assert status is UploadStatus.SUCCESS
        assert recording_observer.kinds() == ["dry_run"]

    async def test_dry_run_with_transport_still_sends_nothing(self, make_job, upload_config):
        transport = FakeTransport()
        config = replace(upload_config, dry_run=True)

        status = await UploadOrchestrator(config, transport).upload_job(make_job())

        assert status is UploadStatus.SUCCESS
        assert transport.calls == 0

    async def test_transport_required_outside_dry_run(self, upload_config):
        with pytest.raises(ValueError, match="transport"):
            UploadOrchestrator(upload_config, None)

    async def test_invalid_payload_is_skipped(self, make_job, upload_config, recording_observer):
        """Validation rejection: skipped, no upload event, no request."""
        job = make_job()
        job.sourcemap_path += ".missing"
        transport = FakeTransport()
        orchestrator = UploadOrchestrator(
            upload_config, transport, observer=recording_observer
        )

        status = await orchestrator.upload_job(job)

        assert status is UploadStatus.SKIPPED
        assert transport.calls == 0
        assert recording_observer.kinds() == ["skipped"]
        _, _, message, unexpected = recording_observer.events[0]
        assert message.startswith("Skipping missing sourcemap")
        assert unexpected is False

    async def test_custom_validator_rejection(self, make_job, upload_config, recording_observer):
        def reject(job):
            raise InvalidPayload("too_old", "Sourcemap predates release")

        orchestrator = UploadOrchestrator(
            upload_config, FakeTransport(), validator=reject, observer=recording_observer
        )

        assert await orchestrator.upload_job(make_job()) is UploadStatus.SKIPPED
        assert recording_observer.events[0][2] == "Sourcemap predates release"

    async def test_unexpected_validator_error_is_skipped(
        self, make_job, upload_config, recording_observer
    ):
        def broken(job):
            raise PermissionError("permission denied")

        job = make_job()
        orchestrator = UploadOrchestrator(
            upload_config, FakeTransport(), validator=broken, observer=recording_observer
        )

        status = await orchestrator.upload_job(job)

        assert status is UploadStatus.SKIPPED
        assert recording_observer.count("upload") == 0
        _, _, message, unexpected = recording_observer.events[0]
        assert message == (
            f"Skipping sourcemap {job.sourcemap_path} because of error: permission denied"
        )
        assert unexpected is True

    async def test_payload_build_error_is_skipped(
        self, make_job, upload_config, recording_observer, monkeypatch
    ):
        job = make_job()

        def explode(*args, **kwargs):
            raise ValueError("cannot encode metadata")

        monkeypatch.setattr(job, "as_multipart_payload", explode)
        orchestrator = UploadOrchestrator(
            upload_config, FakeTransport(), observer=recording_observer
        )

        assert await orchestrator.upload_job(job) is UploadStatus.SKIPPED
        assert recording_observer.events[0][3] is True

    @pytest.mark.parametrize("status_code", [400, 413])
    async def test_terminal_status_fails_without_retry(
        self, make_job, upload_config, recording_observer, status_code
    ):
        transport = FakeTransport(_raise(_http_error(status_code)))
        orchestrator = UploadOrchestrator(
            upload_config, transport, observer=recording_observer
        )

        status = await orchestrator.upload_job(make_job())

        assert status is UploadStatus.FAILURE
        assert transport.calls == 1
        assert recording_observer.kinds() == ["upload", "error"]
        error = recording_observer.events[1][2]
        assert isinstance(error, UploadFailedError)
        assert str(error) == (
            f"Request failed with status code {status_code} "
            f"({httpx.codes.get_reason_phrase(status_code)})"
        )

    async def test_server_error_exhausts_attempts(
        self, make_job, upload_config, recording_observer
    ):
        transport = FakeTransport(_raise(_http_error(500)))
        orchestrator = UploadOrchestrator(
            upload_config, transport, observer=recording_observer
        )

        status = await orchestrator.upload_job(make_job())

        assert status is UploadStatus.FAILURE
        assert transport.calls == upload_config.max_attempts
        assert recording_observer.count("retry") == upload_config.max_attempts - 1
        assert recording_observer.count("upload") == 1
        assert recording_observer.kinds()[-1] == "error"
        attempts = [e[3] for e in recording_observer.events if e[0] == "retry"]
        assert attempts == [1, 2, 3, 4]

    async def test_succeeds_on_third_attempt(
        self, make_job, upload_config, recording_observer, multipart_parts
    ):
        transport = FakeTransport(_fail_times(2, httpx.ConnectError("reset")))
        orchestrator = UploadOrchestrator(
            upload_config, transport, observer=recording_observer
        )

        status = await orchestrator.upload_job(make_job())

        assert status is UploadStatus.SUCCESS
        assert transport.calls == 3
        assert recording_observer.kinds() == ["upload", "retry", "retry", "success"]
        # Every attempt streams a complete, fresh body
        bodies = [r["body"] for r in transport.requests]
        for request in transport.requests:
            parts = multipart_parts(request["body"], request["headers"]["Content-Type"])
            assert len(parts) == 2
        assert all(len(body) == len(bodies[0]) for body in bodies)

    async def test_network_error_message_without_status(
        self, make_job, upload_config, recording_observer
    ):
        config = replace(upload_config, max_attempts=1)
        transport = FakeTransport(_raise(httpx.ConnectError("connection refused")))
        orchestrator = UploadOrchestrator(config, transport, observer=recording_observer)

        assert await orchestrator.upload_job(make_job()) is UploadStatus.FAILURE
        assert str(recording_observer.events[-1][2]) == "connection refused"

    async def test_project_path_in_metadata(
        self, make_job, upload_config, multipart_parts
    ):
        transport = FakeTransport()
        config = replace(upload_config, project_path="packages/web")

        await UploadOrchestrator(config, transport).upload_job(make_job())

        request = transport.requests[0]
        metadata = _metadata(
            request["body"], request["headers"]["Content-Type"], multipart_parts
        )
        assert metadata["project_path"] == "packages/web"


# ============================================================
# Batch runs
# ============================================================


class TestRun:
    """Whole-batch behaviour: isolation, ordering and the summary."""

    async def test_mixed_batch_summary(self, make_job, upload_config, recording_observer):
        """Concurrency 1: second job always fails, the others succeed."""
        jobs = [make_job("one"), make_job("two"), make_job("three")]
        config = replace(upload_config, max_concurrency=1, max_attempts=2)

        def outcome(body: bytes):
            if b"/static/two.js" in body:
                raise _http_error(500)
            return "ok"

        transport = FakeTransport(outcome)
        orchestrator = UploadOrchestrator(config, transport, observer=recording_observer)

        summary = await orchestrator.run(jobs)

        assert (summary.succeeded, summary.failed, summary.skipped) == (2, 1, 0)
        assert summary.total == 3
        assert summary.elapsed_seconds >= 0
        assert transport.calls == 4
        order = [
            next(name for name in ("one", "two", "three") if f"/static/{name}.js".encode() in r["body"])
            for r in transport.requests
        ]
        assert order == ["one", "two", "two", "three"]
        assert recording_observer.count("retry") == 1
        assert recording_observer.count("error") == 1
        assert recording_observer.count("success") == 2

    async def test_skips_are_counted(self, make_job, upload_config, tmp_path):
        good = make_job("good")
        empty = make_job("empty")
        with open(empty.minified_file_path, "w"):
            pass

        summary = await UploadOrchestrator(upload_config, FakeTransport()).run([good, empty])

        assert (summary.succeeded, summary.failed, summary.skipped) == (1, 0, 1)

    async def test_empty_batch(self, upload_config):
        transport = FakeTransport()

        summary = await UploadOrchestrator(upload_config, transport).run([])

        assert summary.total == 0
        assert transport.calls == 0

    async def test_dry_run_batch(self, make_job, upload_config, recording_observer):
        config = replace(upload_config, dry_run=True)
        jobs = [make_job("a"), make_job("b")]

        summary = await UploadOrchestrator(config, observer=recording_observer).run(jobs)

        assert summary.succeeded == 2
        assert recording_observer.count("dry_run") == 2
        assert recording_observer.count("upload") == 0

    async def test_concurrency_limit_respected(self, make_job, upload_config):
        in_flight = 0
        peak = 0

        async def slow_transport(method, url=None, headers=None, content=None):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            async for _ in content:
                pass
            await asyncio.sleep(0.01)
            in_flight -= 1
            return "ok"

        config = replace(upload_config, max_concurrency=2)
        jobs = [make_job(f"file{i}") for i in range(6)]

        summary = await UploadOrchestrator(config, slow_transport).run(jobs)

        assert summary.succeeded == 6
        assert peak == 2


# ============================================================
# Repository data
# ============================================================


class TestAddRepositoryData:
    """Attaching git data to jobs before the batch runs."""

    @staticmethod
    def _info(tracked: list[str]) -> RepositoryInfo:
        return RepositoryInfo(
            hash="abc123",
            remote="https://github.com/acme/web.git",
            tracked_files_matcher=TrackedFilesMatcher(tracked),
        )

    def test_attaches_to_every_job(self, make_job, upload_config, recording_observer):
        jobs = [make_job("a"), make_job("b")]
        info = self._info(["src/index.ts", "src/utils/format.ts", "README.md"])
        orchestrator = UploadOrchestrator(
            upload_config, FakeTransport(), observer=recording_observer
        )

        assert orchestrator.add_repository_data(jobs, lambda: info) is True

        for job in jobs:
            assert job.repository.commit_sha == "abc123"
            assert job.repository.repository_url == "https://github.com/acme/web.git"
            payload = json.loads(job.repository.payload)
            assert payload == {
                "data": [
                    {
                        "files": ["src/index.ts", "src/utils/format.ts"],
                        "hash": "abc123",
                        "repository_url": "https://github.com/acme/web.git",
                    }
                ],
                "version": 1,
            }
        assert recording_observer.events == []

    def test_resolver_failure_warns_once(self, make_job, upload_config, recording_observer):
        jobs = [make_job("a"), make_job("b")]

        def resolve():
            raise RepositoryError("not a git repository")

        orchestrator = UploadOrchestrator(
            upload_config, FakeTransport(), observer=recording_observer
        )

        assert orchestrator.add_repository_data(jobs, resolve) is False
        assert all(job.repository is None for job in jobs)
        assert recording_observer.kinds() == ["warning"]
        assert "not a git repository" in recording_observer.events[0][1]

    @pytest.mark.parametrize("sha,remote", [("abc123", ""), ("", "https://github.com/acme/web.git")])
    def test_incomplete_repository_info_warns_once(
        self, make_job, upload_config, recording_observer, sha, remote
    ):
        """A resolved working copy without commit or remote is skipped as a whole."""
        jobs = [make_job("a"), make_job("b")]
        info = RepositoryInfo(
            hash=sha, remote=remote, tracked_files_matcher=TrackedFilesMatcher(["src/index.ts"])
        )
        orchestrator = UploadOrchestrator(
            upload_config, FakeTransport(), observer=recording_observer
        )

        assert orchestrator.add_repository_data(jobs, lambda: info) is False
        assert all(job.repository is None for job in jobs)
        assert recording_observer.kinds() == ["warning"]
        assert "commit hash and a remote URL" in recording_observer.events[0][1]

    def test_no_matching_sources_warns(self, make_job, upload_config, recording_observer):
        job = make_job()
        orchestrator = UploadOrchestrator(
            upload_config, FakeTransport(), observer=recording_observer
        )

        orchestrator.add_repository_data([job], lambda: self._info(["other.py"]))

        assert job.repository is not None
        assert job.repository.payload is None
        assert recording_observer.kinds() == ["warning"]
        assert "No tracked files found" in recording_observer.events[0][1]

    def test_unreadable_sourcemap_only_affects_that_job(
        self, make_job, upload_config, recording_observer
    ):
        good = make_job("good")
        broken = make_job("broken")
        with open(broken.sourcemap_path, "w") as f:
            f.write("{not json")
        orchestrator = UploadOrchestrator(
            upload_config, FakeTransport(), observer=recording_observer
        )

        orchestrator.add_repository_data([good, broken], lambda: self._info(["src/index.ts"]))

        assert good.repository.payload is not None
        assert broken.repository is not None
        assert broken.repository.payload is None
        assert recording_observer.count("warning") == 1

    async def test_repository_part_is_sent(
        self, make_job, upload_config, multipart_parts
    ):
        job = make_job()
        transport = FakeTransport()
        orchestrator = UploadOrchestrator(upload_config, transport)
        orchestrator.add_repository_data([job], lambda: self._info(["src/index.ts"]))

        await orchestrator.upload_job(job)

        request = transport.requests[0]
        parts = multipart_parts(request["body"], request["headers"]["Content-Type"])
        assert [p["name"] for p in parts] == ["metadata", "sourcemap", "repository"]
        metadata = json.loads(parts[0]["data"])
        assert metadata["git_commit_sha"] == "abc123"
        assert metadata["git_repository_url"] == "https://github.com/acme/web.git"
        assert parts[2]["content_type"] == "application/json"
        assert json.loads(parts[2]["data"])["data"][0]["files"] == ["src/index.ts"]


# ============================================================
# Helpers
# ============================================================


class TestHelpers:
    def test_format_error_appends_status_text(self):
        error = format_upload_error(_http_error(413))

        assert str(error) == (
            f"Request failed with status code 413 ({httpx.codes.get_reason_phrase(413)})"
        )
        assert isinstance(error.__cause__, UploadHTTPError)

    def test_format_error_without_status_text(self):
        assert str(format_upload_error(TimeoutError())) == "TimeoutError"

    def test_repository_payload_shape(self):
        payload = json.loads(build_repository_payload(["a.ts"], "sha", "url"))
        assert payload["version"] == 1
        assert payload["data"] == [{"files": ["a.ts"], "hash": "sha", "repository_url": "url"}]

    def test_repository_data_requires_commit_and_remote(self):
        with pytest.raises(ValueError):
            RepositoryData(commit_sha="", repository_url="https://x")
        with pytest.raises(ValueError):
            RepositoryData(commit_sha="abc", repository_url="")
