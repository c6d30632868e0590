"""Batch accumulation: group records into bounded write requests."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lpstream.errors import ConfigurationError
from lpstream.models import Batch

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

log = logging.getLogger(__name__)


def iter_batches(
    records: Iterable[bytes],
    *,
    max_records: int,
    max_bytes: int,
) -> Iterator[Batch]:
    """Group *records* into batches, preserving order.

    A batch is closed when the next record would push it past *max_bytes*,
    when it holds *max_records* records, or when the input ends. A record
    larger than *max_bytes* on its own becomes a single-record batch; it is
    never dropped or split.
    """
    if max_records < 1:
        raise ConfigurationError(f"max_records must be ≥ 1, got {max_records}")
    if max_bytes < 1:
        raise ConfigurationError(f"max_bytes must be ≥ 1, got {max_bytes}")

    index = 0
    pending: list[bytes] = []
    pending_bytes = 0

    def _emit() -> Batch:
        nonlocal index, pending, pending_bytes
        batch = Batch(index=index, records=tuple(pending))
        log.debug(
            "Batch %d closed: %d record(s), %d byte(s)",
            index,
            len(pending),
            pending_bytes,
        )
        index += 1
        pending = []
        pending_bytes = 0
        return batch

    for record in records:
        size = len(record)
        if pending and pending_bytes + size > max_bytes:
            yield _emit()
        pending.append(record)
        pending_bytes += size
        if len(pending) >= max_records or pending_bytes >= max_bytes:
            yield _emit()

    if pending:
        yield _emit()
