"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker handling,
and the transport/finder test doubles. All fixtures here are autouse unless
noted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os

import pytest

from lpstream.cancel import CancellationToken
from lpstream.errors import WriteError
from lpstream.models import Batch, Bucket, BucketFilter, Destination, WriteResult

ORG_ID = "00000000000000aa"
BUCKET_ID = "00000000000000bb"
TOKEN = "test-token"

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeTransport:
    """Transport test double that records every batch it is handed.

    ``script`` supplies per-call outcomes ("success", "retryable", "fatal");
    once it runs dry every call succeeds. ``cancel_on_call`` sets ``token``
    while the given (1-based) call is in flight.
    ``observe`` is sampled after each call has been in flight for ``delay_s``.
    """

    script: list[str] = field(default_factory=list)
    sent: list[tuple[Batch, Destination, str]] = field(default_factory=list)
    token: CancellationToken | None = None
    cancel_on_call: int | None = None
    in_flight: int = 0
    max_in_flight: int = 0
    delay_s: float = 0.0
    observe: Callable[[], int] | None = None
    observed: list[int] = field(default_factory=list)

    @property
    def calls(self) -> int:
        return len(self.sent)

    @property
    def bodies(self) -> list[bytes]:
        return [b.body() for b, _, _ in self.sent]

    async def send(
        self, batch: Batch, destination: Destination, precision: str
    ) -> WriteResult:
        self.sent.append((batch, destination, precision))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.token is not None and self.cancel_on_call == self.calls:
                self.token.cancel()
            await asyncio.sleep(self.delay_s)
            if self.observe is not None:
                self.observed.append(self.observe())
            outcome = self.script.pop(0) if self.script else "success"
        finally:
            self.in_flight -= 1

        if outcome == "success":
            return WriteResult(outcome="success", batch=batch, status_code=204)
        status = 503 if outcome == "retryable" else 400
        return WriteResult(
            outcome=outcome,  # type: ignore[arg-type]
            batch=batch,
            status_code=status,
            error=WriteError(
                f"write of batch {batch.index} failed (status={status})",
                retryable=outcome == "retryable",
                status_code=status,
                batch_index=batch.index,
            ),
        )


@dataclass
class FakeFinder:
    """Bucket lookup test double returning a fixed list."""

    buckets: list[Bucket] = field(
        default_factory=lambda: [
            Bucket.model_validate({"id": BUCKET_ID, "orgID": ORG_ID, "name": "b"})
        ]
    )
    calls: list[BucketFilter] = field(default_factory=list)

    async def find_buckets(self, flt: BucketFilter) -> tuple[list[Bucket], int]:
        self.calls.append(flt)
        return list(self.buckets), len(self.buckets)


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================

_ENV_PREFIXES = ("INFLUX_", "BUCKET_")


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_store_env(request, monkeypatch):
    """Ensure a clean store environment for each test.

    Clears INFLUX_*, BUCKET_* and PRECISION to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("PRECISION", raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Shared Fixtures (opt-in)
# =============================================================================


@pytest.fixture
def destination() -> Destination:
    """A resolved destination matching :class:`FakeFinder`'s default bucket."""
    return Destination(org_id=ORG_ID, bucket_id=BUCKET_ID, bucket_name="b")


@pytest.fixture
def live_store_env():
    """Return (host, token, bucket) for a live store or skip the test."""
    host = os.getenv("INFLUX_HOST")
    token = os.getenv("INFLUX_TOKEN")
    bucket = os.getenv("BUCKET_NAME")
    if not (host and token and bucket):
        pytest.skip("INFLUX_HOST, INFLUX_TOKEN and BUCKET_NAME must be set")
    return host, token, bucket
