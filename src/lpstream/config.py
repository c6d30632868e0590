"""Configuration: frozen Config validated before any I/O happens."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
import re

from dotenv import load_dotenv

from lpstream.errors import ConfigurationError
from lpstream.models import PRECISIONS, BucketFilter, Precision
from lpstream.retry import RetryPolicy

load_dotenv()

DEFAULT_HOST = "http://localhost:8086"
DEFAULT_PRECISION: Precision = "ns"
DEFAULT_MAX_RECORDS = 5000
DEFAULT_MAX_BYTES = 500_000

_ID_RE = re.compile(r"^[0-9a-fA-F]{16}$")

# (explicit field, env var) pairs; env only fills a concept nobody set.
_BUCKET_ENV = (("bucket", "BUCKET_NAME"), ("bucket_id", "BUCKET_ID"))
_ORG_ENV = (("org", "INFLUX_ORG"), ("org_id", "INFLUX_ORG_ID"))


def _env(name: str) -> str | None:
    value = os.environ.get(name)
    return value if value else None


def _decode_id(value: str, flag: str) -> str:
    if not _ID_RE.match(value):
        raise ConfigurationError(
            f"failed to decode {flag}: {value!r}",
            hint="IDs are 16 hexadecimal characters.",
        )
    return value.lower()


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one write run.

    Destination and credentials are auto-resolved from the environment when
    not given. Everything here is checked in ``__post_init__`` so a bad flag
    never costs a network round trip.

    Example:
        config = Config(bucket="telemetry", org="acme", precision="s")
        # token is read from INFLUX_TOKEN
    """

    #: Base URL of the store. Falls back to ``INFLUX_HOST``.
    host: str | None = None
    #: Falls back to ``INFLUX_TOKEN``.
    token: str | None = None
    skip_verify: bool = False
    #: Exactly one of *bucket* / *bucket_id* (``BUCKET_NAME`` / ``BUCKET_ID``).
    bucket: str | None = None
    bucket_id: str | None = None
    #: At most one of *org* / *org_id* (``INFLUX_ORG`` / ``INFLUX_ORG_ID``).
    org: str | None = None
    org_id: str | None = None
    #: Falls back to ``PRECISION``, then ``ns``.
    precision: str | None = None
    max_records: int = DEFAULT_MAX_RECORDS
    max_bytes: int = DEFAULT_MAX_BYTES
    timeout_s: float = 10.0
    read_chunk_bytes: int = 64 * 1024
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Resolve environment fallbacks and validate configuration."""
        precision = self.precision or _env("PRECISION") or DEFAULT_PRECISION
        if precision not in PRECISIONS:
            raise ConfigurationError(
                f"invalid precision: {precision!r}",
                hint=f"Supported precisions: {', '.join(sorted(PRECISIONS))}",
            )
        object.__setattr__(self, "precision", precision)

        # Mutually exclusive pairs are checked on explicit values first so a
        # stray env var never masks a conflicting pair of flags.
        if self.bucket and self.bucket_id:
            raise ConfigurationError(
                "please specify one of bucket or bucket-id",
                hint="Pass --bucket NAME or --bucket-id ID, not both.",
            )
        if self.org and self.org_id:
            raise ConfigurationError(
                "please specify one of org or org-id",
                hint="Pass --org NAME or --org-id ID, not both.",
            )

        for pair in (_BUCKET_ENV, _ORG_ENV):
            if any(getattr(self, attr) for attr, _ in pair):
                continue
            for attr, env_var in pair:
                object.__setattr__(self, attr, _env(env_var))

        if self.bucket and self.bucket_id:
            raise ConfigurationError(
                "please specify one of bucket or bucket-id",
                hint="Both BUCKET_NAME and BUCKET_ID are set in the environment.",
            )
        if self.org and self.org_id:
            raise ConfigurationError(
                "please specify one of org or org-id",
                hint="Both INFLUX_ORG and INFLUX_ORG_ID are set in the environment.",
            )
        if not self.bucket and not self.bucket_id:
            raise ConfigurationError(
                "a destination bucket is required",
                hint="Pass --bucket/--bucket-id or set BUCKET_NAME/BUCKET_ID.",
            )

        if self.bucket_id:
            object.__setattr__(
                self, "bucket_id", _decode_id(self.bucket_id, "bucket-id")
            )
        if self.org_id:
            object.__setattr__(self, "org_id", _decode_id(self.org_id, "org-id"))

        if self.max_records < 1:
            raise ConfigurationError(
                f"max_records must be ≥ 1, got {self.max_records}",
                hint="This bounds how many records go into one write request.",
            )
        if self.max_bytes < 1:
            raise ConfigurationError(
                f"max_bytes must be ≥ 1, got {self.max_bytes}",
                hint="This bounds the body size of one write request.",
            )
        if self.read_chunk_bytes < 1:
            raise ConfigurationError(
                f"read_chunk_bytes must be ≥ 1, got {self.read_chunk_bytes}",
            )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
            )

        host = self.host or _env("INFLUX_HOST") or DEFAULT_HOST
        if not host.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"host must be an http(s) URL, got {host!r}",
                hint="Example: --host http://localhost:8086",
            )
        object.__setattr__(self, "host", host.rstrip("/"))

        if self.token is None:
            object.__setattr__(self, "token", _env("INFLUX_TOKEN"))
        if not self.token:
            raise ConfigurationError(
                "an authentication token is required",
                hint="Set INFLUX_TOKEN environment variable or pass --token.",
            )

    def bucket_filter(self) -> BucketFilter:
        """Return the lookup filter for the destination bucket."""
        return BucketFilter(
            id=self.bucket_id,
            name=self.bucket,
            org_id=self.org_id,
            org=self.org,
        )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(host={self.host!r}, bucket={self.bucket!r}, "
            f"bucket_id={self.bucket_id!r}, org={self.org!r}, org_id={self.org_id!r}, "
            f"precision={self.precision!r}, "
            f"token={'[REDACTED]' if self.token else None})"
        )

    __repr__ = __str__
