"""Streaming multipart/form-data bodies.

String parts are embedded as-is. File parts are read in fixed-size chunks
and gzip-compressed while the request is being sent, so memory use per
file is bounded by the chunk size whatever the file size.

Usage::

    payload = MultipartPayload({
        "metadata": StringPart('{"service": "web"}', "application/json", "metadata"),
        "sourcemap": FilePart("dist/app.js.map", "application/gzip", "sourcemap"),
    })
    async with open_multipart_stream(payload) as stream:
        await request("POST", headers=stream.headers, content=stream.content)

Every file handle is opened when the context is entered and closed when it
exits, whether the request succeeded or not.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import zlib
from collections.abc import AsyncIterator, Mapping
from contextlib import ExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import BinaryIO

from srcmap.constants import STREAM_CHUNK_SIZE

logger = logging.getLogger(__name__)

_CRLF = b"\r\n"
_GZIP_WBITS = 16 + zlib.MAX_WBITS


@dataclass(frozen=True)
class StringPart:
    """In-memory part, typically a JSON metadata block."""

    value: str
    content_type: str = "text/plain"
    filename: str | None = None


@dataclass(frozen=True)
class FilePart:
    """File-backed part, streamed through gzip compression."""

    path: str
    content_type: str = "application/gzip"
    filename: str | None = None


MultipartValue = StringPart | FilePart


class MultipartPayload:
    """Ordered mapping of part name to part content.

    Insertion order is transmission order. A payload must carry a string
    part named ``metadata`` and at least one file part.

    Raises:
        ValueError: If either required part is missing.
    """

    def __init__(self, content: Mapping[str, MultipartValue]) -> None:
        self.content: dict[str, MultipartValue] = dict(content)
        if not isinstance(self.content.get("metadata"), StringPart):
            raise ValueError("Multipart payload requires a string 'metadata' part")
        if not any(isinstance(v, FilePart) for v in self.content.values()):
            raise ValueError("Multipart payload requires at least one file part")

    def __contains__(self, name: object) -> bool:
        return name in self.content

    def __getitem__(self, name: str) -> MultipartValue:
        return self.content[name]

    def __iter__(self):
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)

    def __repr__(self) -> str:
        return f"MultipartPayload({list(self.content)!r})"


def _quote(value: str) -> str:
    # Same escaping browsers apply to form-data names and filenames.
    return value.replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")


class MultipartStream:
    """One multipart request body over already-opened file handles.

    The body can be iterated once; build a new stream for every attempt.
    """

    def __init__(
        self,
        payload: MultipartPayload,
        handles: dict[str, BinaryIO],
        boundary: str,
        chunk_size: int = STREAM_CHUNK_SIZE,
        compress_level: int = 6,
    ) -> None:
        self._payload = payload
        self._handles = handles
        self._chunk_size = chunk_size
        self._compress_level = compress_level
        self.boundary = boundary

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    @property
    def headers(self) -> dict[str, str]:
        return {"Content-Type": self.content_type}

    @property
    def content(self) -> AsyncIterator[bytes]:
        return self._iter_body()

    def _part_header(self, name: str, part: MultipartValue) -> bytes:
        disposition = f'form-data; name="{_quote(name)}"'
        if part.filename is not None:
            disposition += f'; filename="{_quote(part.filename)}"'
        lines = [
            f"--{self.boundary}",
            f"Content-Disposition: {disposition}",
        ]
        if part.content_type:
            lines.append(f"Content-Type: {part.content_type}")
        return ("\r\n".join(lines)).encode("utf-8") + _CRLF + _CRLF

    async def _iter_compressed(self, handle: BinaryIO) -> AsyncIterator[bytes]:
        compressor = zlib.compressobj(self._compress_level, zlib.DEFLATED, _GZIP_WBITS)
        while True:
            chunk = await asyncio.to_thread(handle.read, self._chunk_size)
            if not chunk:
                break
            compressed = compressor.compress(chunk)
            if compressed:
                yield compressed
        yield compressor.flush()

    async def _iter_body(self) -> AsyncIterator[bytes]:
        for name, part in self._payload.content.items():
            yield self._part_header(name, part)
            if isinstance(part, StringPart):
                yield part.value.encode("utf-8")
            else:
                async for chunk in self._iter_compressed(self._handles[name]):
                    yield chunk
            yield _CRLF
        yield f"--{self.boundary}--".encode("utf-8") + _CRLF


@asynccontextmanager
async def open_multipart_stream(
    payload: MultipartPayload,
    boundary: str | None = None,
    chunk_size: int = STREAM_CHUNK_SIZE,
) -> AsyncIterator[MultipartStream]:
    """Open every file part and yield a streaming body over them.

    Raises:
        FileNotFoundError: If a file part does not exist; no handle stays open.
    """
    with ExitStack() as stack:
        handles: dict[str, BinaryIO] = {}
        for name, part in payload.content.items():
            if isinstance(part, FilePart):
                handles[name] = stack.enter_context(open(part.path, "rb"))
        logger.debug("Opened %d file part(s) for %r", len(handles), payload)
        yield MultipartStream(
            payload,
            handles,
            boundary or uuid.uuid4().hex,
            chunk_size=chunk_size,
        )
