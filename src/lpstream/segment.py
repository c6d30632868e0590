"""Record segmentation: split a byte stream into line-protocol records.

Records keep their terminator so that joining them reproduces the input
byte for byte. Record syntax is never inspected; the store validates it.
"""

from __future__ import annotations

import logging
from typing import IO, TYPE_CHECKING

from lpstream.errors import SourceReadError
from lpstream.models import RECORD_TERMINATOR

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from lpstream.cancel import CancellationToken

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


def _reader(stream: IO[bytes]) -> Callable[[int], bytes]:
    # read1() returns whatever is buffered instead of waiting for a full
    # chunk, which keeps piped stdin flowing.
    read1 = getattr(stream, "read1", None)
    return read1 if callable(read1) else stream.read


def iter_records(
    stream: IO[bytes],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cancel: CancellationToken | None = None,
) -> Iterator[bytes]:
    """Yield records from *stream* in order, terminator included.

    A trailing record without terminator is still yielded when non-empty.
    The stream is consumed but not closed. Stops early once *cancel* is set.

    Raises:
        SourceReadError: If reading the stream fails.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    read = _reader(stream)
    buf = bytearray()
    n_records = 0

    while cancel is None or not cancel.cancelled:
        try:
            chunk = read(chunk_size)
        except (OSError, ValueError) as e:
            raise SourceReadError(
                f"failed to read input: {e}",
                hint="The input stream failed mid-read; nothing after it was sent.",
            ) from e
        if not chunk:
            break

        buf += chunk
        start = 0
        while True:
            end = buf.find(RECORD_TERMINATOR, start)
            if end < 0:
                break
            end += len(RECORD_TERMINATOR)
            yield bytes(buf[start:end])
            n_records += 1
            start = end
        if start:
            del buf[:start]
    else:
        log.debug("Segmenter stopped by cancellation after %d record(s)", n_records)
        return

    if buf:
        yield bytes(buf)
        n_records += 1
    log.debug("Segmenter reached end of input after %d record(s)", n_records)
