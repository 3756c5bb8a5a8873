"""Per-sourcemap upload job and its multipart payload."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from srcmap.models import RepositoryData
from srcmap.upload.multipart import FilePart, MultipartPayload, MultipartValue, StringPart


@dataclass
class UploadJob:
    """One sourcemap to send, with the minified file it describes.

    Attributes:
        minified_file_path: Local path of the minified JavaScript file.
        minified_url: Public URL the minified file is served from.
        sourcemap_path: Local path of the sourcemap (the uploaded file).
        relative_path: Minified file path relative to the scanned base path.
        minified_path_prefix: Prefix used to compute ``minified_url``.
        repository: Revision-control data, or ``None`` when not attached.
    """

    minified_file_path: str
    minified_url: str
    sourcemap_path: str
    relative_path: str
    minified_path_prefix: str | None = None
    repository: RepositoryData | None = field(default=None)

    def attach_repository_data(self, repository: RepositoryData) -> None:
        """Attach revision-control data. Allowed once per job.

        Raises:
            RuntimeError: If repository data is already attached.
        """
        if self.repository is not None:
            raise RuntimeError(
                f"Repository data already attached to {self.sourcemap_path}"
            )
        self.repository = repository

    def as_multipart_payload(
        self,
        service: str,
        version: str,
        project_path: str = "",
    ) -> MultipartPayload:
        """Build the request body: metadata, the sourcemap and, when
        available, the tracked source files of the repository."""
        content: dict[str, MultipartValue] = {
            "metadata": self._metadata_part(service, version, project_path),
            "sourcemap": FilePart(
                path=self.sourcemap_path,
                content_type="application/gzip",
                filename="sourcemap",
            ),
        }
        if self.repository is not None and self.repository.payload is not None:
            content["repository"] = StringPart(
                value=self.repository.payload,
                content_type="application/json",
                filename="repository",
            )
        return MultipartPayload(content)

    def _metadata_part(self, service: str, version: str, project_path: str) -> StringPart:
        metadata: dict[str, str] = {
            "assetPath": self.minified_url,
            "service": service,
            "version": version,
        }
        if project_path:
            metadata["project_path"] = project_path
        if self.repository is not None:
            metadata["git_repository_url"] = self.repository.repository_url
            metadata["git_commit_sha"] = self.repository.commit_sha
        return StringPart(
            value=json.dumps(metadata),
            content_type="application/json",
            filename="metadata",
        )
