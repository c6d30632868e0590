"""lpstream: stream line protocol into a time-series store in bounded batches.

Public API:
    - write(): Resolve the destination bucket and stream a byte source into it
    - Source: Explicit input types (literal text, @file, stdin)
    - Config: Configuration dataclass
    - CancellationToken: Cooperative stop signal
"""

from __future__ import annotations

import asyncio
import logging
from typing import IO, TYPE_CHECKING

from lpstream.cancel import (
    CancellationToken,
    install_signal_handlers,
    remove_signal_handlers,
)
from lpstream.config import Config
from lpstream.errors import (
    ConfigurationError,
    LpstreamError,
    RateLimitError,
    ResolutionError,
    SourceReadError,
    WriteError,
)
from lpstream.models import (
    Batch,
    BucketFilter,
    Destination,
    PipelineState,
    WriteReport,
    WriteResult,
)
from lpstream.pipeline import BatchWriter
from lpstream.resolve import BucketService
from lpstream.retry import RetryPolicy
from lpstream.source import Source
from lpstream.transport import WriteTransport, build_client

if TYPE_CHECKING:
    from lpstream.resolve import BucketFinder
    from lpstream.transport import Transport

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("lpstream")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("lpstream").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


async def write(
    stream: IO[bytes],
    *,
    config: Config,
    cancel: CancellationToken | None = None,
    transport: Transport | None = None,
    finder: BucketFinder | None = None,
    handle_signals: bool = False,
) -> WriteReport:
    """Resolve the destination from *config* and stream *stream* into it.

    The caller owns *stream*; it is read to the end (or until cancelled) but
    never closed.

    Args:
        stream: Binary line-protocol source.
        config: Configuration specifying endpoint, destination and batching.
        cancel: Optional token; setting it stops the run after the batch in flight.
        transport: Override the HTTP write transport (tests, custom clients).
        finder: Override the bucket lookup.
        handle_signals: Bind SIGINT/SIGTERM to *cancel* for the duration of the run.

    Returns:
        WriteReport with batch accounting. ``cancelled`` is True when the run
        was stopped by *cancel*; cancellation is never raised as an error.

    Example:
        config = Config(bucket="telemetry", org="acme")
        with Source.from_file("points.lp").open() as stream:
            report = await write(stream, config=config)
        print(report.batches_accepted)
    """
    cancel = cancel or CancellationToken()
    loop = asyncio.get_running_loop()
    if handle_signals:
        install_signal_handlers(loop, cancel)

    client = None
    if transport is None or finder is None:
        client = build_client(config)
    try:
        writer = BatchWriter.from_config(
            config, transport or WriteTransport(client, owns_client=False)
        )
        return await writer.run(
            stream,
            finder=finder or BucketService(client, owns_client=False),
            flt=config.bucket_filter(),
            cancel=cancel,
        )
    finally:
        if handle_signals:
            remove_signal_handlers(loop)
        if client is not None:
            try:
                await client.aclose()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Cleanup should never mask the primary failure.
                logger.warning("HTTP client cleanup failed: %s", exc)


__all__ = [
    "Batch",
    "BatchWriter",
    "BucketFilter",
    "BucketService",
    "CancellationToken",
    "Config",
    "ConfigurationError",
    "Destination",
    "LpstreamError",
    "PipelineState",
    "RateLimitError",
    "ResolutionError",
    "RetryPolicy",
    "Source",
    "SourceReadError",
    "WriteError",
    "WriteReport",
    "WriteResult",
    "WriteTransport",
    "write",
]
