"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: streams that behave like pipes and a
scripted in-memory store served through ``httpx.MockTransport``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import io
import json
import threading
from typing import Any

import httpx

from tests.conftest import BUCKET_ID, ORG_ID


class ChunkedStream(io.RawIOBase):
    """Binary stream that hands out fixed chunks, like a pipe would."""

    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = list(chunks)

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        del size
        return self._chunks.pop(0) if self._chunks else b""

    read1 = read


class CountingStream(ChunkedStream):
    """Stream that counts how many reads the segmenter has issued."""

    def __init__(self, chunks: list[bytes]) -> None:
        super().__init__(chunks)
        self.reads = 0

    def read(self, size: int = -1) -> bytes:
        self.reads += 1
        return super().read(size)

    read1 = read


class BlockingStream(ChunkedStream):
    """Stream that blocks once its chunks run out until ``release`` is set.

    Mimics an idle stdin. ``release`` is always set on teardown so the
    reader thread can finish.
    """

    def __init__(self, chunks: list[bytes]) -> None:
        super().__init__(chunks)
        self.release = threading.Event()
        self.drained = threading.Event()

    def read(self, size: int = -1) -> bytes:
        data = super().read(size)
        if data:
            return data
        self.drained.set()
        self.release.wait(timeout=5)
        return b""

    read1 = read


class FailingStream(ChunkedStream):
    """Stream that raises OSError after its chunks are consumed."""

    def read(self, size: int = -1) -> bytes:
        data = super().read(size)
        if data:
            return data
        raise OSError("device unplugged")

    read1 = read


@dataclass
class MockStore:
    """Scripted store answering bucket lookups and writes.

    ``write_statuses`` is consumed one per write; once empty every write gets
    204. Requests are recorded for assertions.
    """

    buckets: list[dict[str, Any]] = field(
        default_factory=lambda: [{"id": BUCKET_ID, "orgID": ORG_ID, "name": "b"}]
    )
    write_statuses: list[int] = field(default_factory=list)
    write_error_body: dict[str, Any] = field(
        default_factory=lambda: {"code": "invalid", "message": "unable to parse"}
    )
    lookup_status: int = 200
    requests: list[httpx.Request] = field(default_factory=list)

    @property
    def writes(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/api/v2/write"]

    @property
    def lookups(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/api/v2/buckets"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/v2/buckets":
            if self.lookup_status != 200:
                return httpx.Response(
                    self.lookup_status, json={"message": "lookup failed"}
                )
            return httpx.Response(200, json={"buckets": self.buckets})
        if request.url.path == "/api/v2/write":
            status = self.write_statuses.pop(0) if self.write_statuses else 204
            if status < 300:
                return httpx.Response(status)
            return httpx.Response(
                status,
                content=json.dumps(self.write_error_body).encode(),
                headers={"Content-Type": "application/json"},
            )
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)
