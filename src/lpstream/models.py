"""Domain models shared by the writer stages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from lpstream.errors import WriteError

Precision = Literal["ns", "us", "ms", "s"]
PRECISIONS: frozenset[str] = frozenset({"ns", "us", "ms", "s"})

#: Line-protocol records are split on this byte and keep it.
RECORD_TERMINATOR = b"\n"

WriteOutcome = Literal["success", "retryable", "fatal"]


class PipelineState(Enum):
    """Lifecycle of one write run."""

    IDLE = "idle"
    RESOLVING = "resolving"
    STREAMING = "streaming"
    DRAINING = "draining"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Destination:
    """Resolved (organization, bucket) pair every batch is written into."""

    org_id: str
    bucket_id: str
    bucket_name: str | None = None


@dataclass(frozen=True)
class BucketFilter:
    """Lookup filter for the destination bucket."""

    id: str | None = None
    name: str | None = None
    org_id: str | None = None
    org: str | None = None

    def describe(self) -> str:
        """Human label for error messages."""
        if self.name is not None:
            return f"bucket {self.name!r}"
        return f"bucket with id {self.id!r}"


class Bucket(BaseModel):
    """One entry of the ``/api/v2/buckets`` listing."""

    model_config = ConfigDict(extra="ignore")

    id: str
    org_id: str = Field(alias="orgID")
    name: str


class BucketList(BaseModel):
    """Body of ``GET /api/v2/buckets``."""

    model_config = ConfigDict(extra="ignore")

    buckets: list[Bucket] = Field(default_factory=list)


@dataclass(frozen=True)
class Batch:
    """An ordered group of records sent as one write request."""

    index: int
    records: tuple[bytes, ...]

    @property
    def size_bytes(self) -> int:
        return sum(len(r) for r in self.records)

    def __len__(self) -> int:
        return len(self.records)

    def body(self) -> bytes:
        """Byte-exact concatenation of the records as they were read."""
        return b"".join(self.records)


@dataclass(frozen=True)
class WriteRequest:
    """Everything one write call needs, built fresh per batch."""

    destination: Destination
    precision: Precision
    body: bytes
    batch_index: int

    def params(self) -> dict[str, str]:
        return {
            "org": self.destination.org_id,
            "bucket": self.destination.bucket_id,
            "precision": self.precision,
        }


@dataclass(frozen=True)
class WriteResult:
    """Classified outcome of one write attempt."""

    outcome: WriteOutcome
    batch: Batch
    status_code: int | None = None
    error: WriteError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == "success"


@dataclass
class WriteReport:
    """Terminal accounting for one run."""

    state: PipelineState = PipelineState.IDLE
    destination: Destination | None = None
    batches_sent: int = 0
    batches_accepted: int = 0
    records_accepted: int = 0
    bytes_accepted: int = 0
    cancelled: bool = False
    duration_s: float = 0.0
