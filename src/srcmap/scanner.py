"""Sourcemap discovery.

Finds ``*js.map`` files below a base directory and turns each into an
:class:`~srcmap.upload.job.UploadJob` pointing at its minified file and
the public URL that file is served from.
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path

from srcmap.upload.job import UploadJob
from srcmap.upload.transport import build_path

logger = logging.getLogger(__name__)

SOURCEMAP_PATTERN = "*js.map"


def get_minified_file_path(sourcemap_path: str) -> str:
    """``dist/app.js.map`` -> ``dist/app.js``.

    Raises:
        ValueError: If *sourcemap_path* does not end with ``.map``.
    """
    if not sourcemap_path.endswith(".map"):
        raise ValueError(
            f"Cannot get minified file path from {sourcemap_path}, not a sourcemap"
        )
    return sourcemap_path[: -len(".map")]


def find_sourcemaps(base_path: str) -> list[str]:
    """All sourcemap files below *base_path*, sorted.

    Hidden files and anything under a hidden directory are skipped.
    """
    base = Path(base_path)
    return sorted(
        p.as_posix()
        for p in base.rglob(SOURCEMAP_PATTERN)
        if p.is_file() and not _is_hidden(p.relative_to(base))
    )


def _is_hidden(relative: Path) -> bool:
    return any(part.startswith(".") for part in relative.parts)


def scan_sourcemaps(base_path: str, minified_path_prefix: str) -> list[UploadJob]:
    """Build one upload job per sourcemap found below *base_path*.

    The relative path of each minified file (with a leading slash) is
    appended to *minified_path_prefix* to form its public URL.
    """
    base_path = posixpath.normpath(base_path)
    jobs: list[UploadJob] = []
    for sourcemap_path in find_sourcemaps(base_path):
        minified_file_path = get_minified_file_path(sourcemap_path)
        relative_path = "/" + Path(minified_file_path).relative_to(base_path).as_posix()
        jobs.append(
            UploadJob(
                minified_file_path=minified_file_path,
                minified_url=build_path(minified_path_prefix, relative_path),
                sourcemap_path=sourcemap_path,
                relative_path=relative_path,
                minified_path_prefix=minified_path_prefix,
            )
        )
    logger.info("Found %d sourcemap(s) in %s", len(jobs), base_path)
    return jobs
