"""Repository metadata gathered from git.

Resolves the commit hash, the remote URL and the list of tracked files of
the working directory, and matches the ``sources`` declared in a sourcemap
against the tracked files.
"""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Git data could not be gathered (git missing, not a repository, ...)."""


class TrackedFilesMatcher:
    """Index of tracked files by file name.

    A sourcemap source matches every tracked file with the same file name,
    ignoring directories and any query string.
    """

    def __init__(self, tracked_files: Iterable[str]) -> None:
        self._by_filename: dict[str, list[str]] = {}
        for path in tracked_files:
            self._by_filename.setdefault(_filename(path), []).append(path)

    def match_sourcemap(
        self,
        sourcemap_path: str,
        on_sources_not_found: Callable[[], None],
    ) -> list[str] | None:
        """Tracked files matching the sources of *sourcemap_path*.

        Returns ``None`` when the sourcemap declares no sources, or when
        none matched (after calling *on_sources_not_found*).

        Raises:
            OSError: If the sourcemap cannot be read.
            ValueError: If the sourcemap is not valid JSON.
        """
        with open(sourcemap_path, encoding="utf-8") as f:
            sourcemap = json.load(f)

        sources = sourcemap.get("sources") if isinstance(sourcemap, dict) else None
        if not sources:
            return None

        matched = self.match_sources(sources)
        if not matched:
            on_sources_not_found()
            return None
        return matched

    def match_sources(self, sources: Iterable[str]) -> list[str]:
        matched: list[str] = []
        seen: set[str] = set()
        for source in sources:
            name = _filename(source)
            if name in seen:
                continue
            seen.add(name)
            matched.extend(self._by_filename.get(name, []))
        return matched


def _filename(path: str) -> str:
    start = path.rfind("/") + 1
    end = path.rfind("?")
    if end == -1 or end <= start:
        end = len(path)
    return path[start:end]


@dataclass
class RepositoryInfo:
    """Commit, remote and tracked-file index of one working copy."""

    hash: str
    remote: str
    tracked_files_matcher: TrackedFilesMatcher


def strip_credentials(url: str) -> str:
    """Remove ``user:password@`` from HTTP(S) remote URLs."""
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or "@" not in parts.netloc:
        return url
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit(parts._replace(netloc=host))


def _git(args: list[str], cwd: Path) -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as exc:
        raise RepositoryError("git executable not found") from exc
    except subprocess.CalledProcessError as exc:
        raise RepositoryError(
            f"git {' '.join(args)} failed: {exc.stderr.strip() or exc.returncode}"
        ) from exc
    return result.stdout


def _remote(cwd: Path) -> str:
    names = _git(["remote"], cwd).split()
    if not names:
        raise RepositoryError("No git remotes available")
    name = "origin" if "origin" in names else names[0]
    url = _git(["remote", "get-url", "--push", name], cwd).strip()
    return strip_credentials(url)


def get_repository_data(
    cwd: str | Path | None = None,
    repository_url: str | None = None,
) -> RepositoryInfo:
    """Resolve commit, remote and tracked files for *cwd*.

    Args:
        cwd: Any directory inside the working copy (defaults to the
            current directory).
        repository_url: Overrides the remote read from git.

    Raises:
        RepositoryError: If any git command fails.
    """
    cwd = Path(cwd) if cwd is not None else Path.cwd()
    root = Path(_git(["rev-parse", "--show-toplevel"], cwd).strip())

    commit = _git(["rev-parse", "HEAD"], root).strip()
    remote = repository_url or _remote(root)
    tracked = [line for line in _git(["ls-files"], root).splitlines() if line]

    logger.debug(
        "Repository %s at %s: %d tracked files", remote, commit, len(tracked)
    )
    return RepositoryInfo(
        hash=commit,
        remote=remote,
        tracked_files_matcher=TrackedFilesMatcher(tracked),
    )
