"""Pipeline coordination: resolve, stream, drain.

Blocking source reads run on one daemon thread that owns the segmenter and
the accumulator. The event loop asks that thread for one batch at a time, so
at most one batch is being accumulated while one is in flight. Batches are
sent strictly in read order.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
import time
from typing import TYPE_CHECKING, Any, Self

from lpstream.batch import iter_batches
from lpstream.cancel import CancellationToken
from lpstream.errors import SourceReadError, WriteError
from lpstream.models import PipelineState, WriteReport, WriteResult
from lpstream.resolve import resolve_destination
from lpstream.retry import RetryPolicy, retry_async
from lpstream.segment import DEFAULT_CHUNK_SIZE, iter_records

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import IO

    from lpstream.config import Config
    from lpstream.models import Batch, BucketFilter, Destination, Precision
    from lpstream.resolve import BucketFinder
    from lpstream.transport import Transport

log = logging.getLogger(__name__)


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    if fut.cancelled():
        return
    _ = fut.exception()


def _settle(
    fut: asyncio.Future[Batch | None],
    batch: Batch | None,
    exc: BaseException | None,
) -> None:
    if fut.done():
        return
    if exc is not None:
        fut.set_exception(exc)
    else:
        fut.set_result(batch)


class _BatchChannel:
    """Depth-1 handoff from the reader thread to the event loop.

    Each request pulls exactly one batch; ``None`` marks the end of input.
    The thread is a daemon so a read blocked on stdin never holds up exit.
    """

    def __init__(
        self, batches: Iterator[Batch], *, loop: asyncio.AbstractEventLoop
    ) -> None:
        self._batches = batches
        self._loop = loop
        self._requests: queue.SimpleQueue[asyncio.Future[Batch | None] | None] = (
            queue.SimpleQueue()
        )
        self._thread = threading.Thread(
            target=self._run, name="lpstream-reader", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def request(self) -> asyncio.Future[Batch | None]:
        fut: asyncio.Future[Batch | None] = self._loop.create_future()
        fut.add_done_callback(consume_future_exception)
        self._requests.put(fut)
        return fut

    def close(self) -> None:
        self._requests.put(None)

    def _run(self) -> None:
        exhausted = False
        failure: Exception | None = None
        while True:
            fut = self._requests.get()
            if fut is None:
                return
            batch: Batch | None = None
            if not exhausted and failure is None:
                try:
                    batch = next(self._batches, None)
                except Exception as e:
                    failure = e
                exhausted = batch is None
            try:
                self._loop.call_soon_threadsafe(_settle, fut, batch, failure)
            except RuntimeError:
                # The loop closed while this read was blocked.
                return


class BatchWriter:
    """Streams a byte source to one destination in bounded, ordered batches."""

    def __init__(
        self,
        transport: Transport,
        *,
        precision: Precision = "ns",
        max_records: int = 5000,
        max_bytes: int = 500_000,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._transport = transport
        self._precision: Precision = precision
        self._max_records = max_records
        self._max_bytes = max_bytes
        self._chunk_size = chunk_size
        self._retry = retry or RetryPolicy()
        self.state = PipelineState.IDLE
        self.report = WriteReport()

    @classmethod
    def from_config(cls, config: Config, transport: Transport) -> Self:
        return cls(
            transport,
            precision=config.precision,  # type: ignore[arg-type]
            max_records=config.max_records,
            max_bytes=config.max_bytes,
            chunk_size=config.read_chunk_bytes,
            retry=config.retry,
        )

    def _transition(self, state: PipelineState) -> None:
        log.debug("Pipeline %s -> %s", self.state.value, state.value)
        self.state = state
        self.report.state = state

    async def run(
        self,
        stream: IO[bytes],
        *,
        finder: BucketFinder,
        flt: BucketFilter,
        cancel: CancellationToken | None = None,
    ) -> WriteReport:
        """Resolve the destination once, then stream *stream* into it.

        Raises:
            ConfigurationError: The bucket filter is invalid.
            ResolutionError: The destination could not be resolved.
            SourceReadError: Reading the input failed.
            WriteError: A batch was not accepted.
        """
        cancel = cancel or CancellationToken()
        if self.state is not PipelineState.IDLE:
            raise RuntimeError("BatchWriter instances run once")

        start = time.perf_counter()
        if cancel.cancelled:
            self._transition(PipelineState.TERMINATED)
            self.report.cancelled = True
            return self.report

        self._transition(PipelineState.RESOLVING)
        try:
            destination = await resolve_destination(finder, flt)
        except BaseException:
            self._transition(PipelineState.TERMINATED)
            self.report.duration_s = time.perf_counter() - start
            raise

        return await self._stream(stream, destination, cancel, start=start)

    async def write(
        self,
        stream: IO[bytes],
        destination: Destination,
        *,
        cancel: CancellationToken | None = None,
    ) -> WriteReport:
        """Stream *stream* into an already resolved *destination*."""
        cancel = cancel or CancellationToken()
        if self.state is not PipelineState.IDLE:
            raise RuntimeError("BatchWriter instances run once")
        return await self._stream(
            stream, destination, cancel, start=time.perf_counter()
        )

    async def _stream(
        self,
        stream: IO[bytes],
        destination: Destination,
        cancel: CancellationToken,
        *,
        start: float,
    ) -> WriteReport:
        report = self.report
        report.destination = destination
        if cancel.cancelled:
            report.cancelled = True
            self._transition(PipelineState.TERMINATED)
            return report

        self._transition(PipelineState.STREAMING)
        records = iter_records(stream, chunk_size=self._chunk_size, cancel=cancel)
        batches = iter_batches(
            records, max_records=self._max_records, max_bytes=self._max_bytes
        )
        channel = _BatchChannel(batches, loop=asyncio.get_running_loop())
        channel.start()
        try:
            batch = await self._next_batch(channel.request(), cancel)
            while batch is not None:
                report.batches_sent += 1
                send_task = asyncio.create_task(
                    self._send(batch, destination, cancel)
                )
                # Accumulate the next batch while this one is on the wire.
                ahead = channel.request()
                result = await self._await_send(send_task, ahead)
                try:
                    self._account(result)
                except WriteError:
                    ahead.cancel()
                    raise
                if cancel.cancelled:
                    ahead.cancel()
                    report.cancelled = True
                    break
                batch = await self._next_batch(ahead, cancel)
        except SourceReadError as e:
            e.batches_accepted = report.batches_accepted
            raise
        finally:
            channel.close()
            report.duration_s = time.perf_counter() - start
            self._transition(PipelineState.TERMINATED)

        log.info(
            "Wrote %d batch(es), %d record(s), %d byte(s) to bucket %s%s",
            report.batches_accepted,
            report.records_accepted,
            report.bytes_accepted,
            destination.bucket_name or destination.bucket_id,
            " (cancelled)" if report.cancelled else "",
        )
        return report

    async def _await_send(
        self,
        send_task: asyncio.Task[WriteResult],
        ahead: asyncio.Future[Batch | None],
    ) -> WriteResult:
        try:
            done, _ = await asyncio.wait(
                {send_task, ahead}, return_when=asyncio.FIRST_COMPLETED
            )
            if ahead in done and _is_end_of_input(ahead):
                self._transition(PipelineState.DRAINING)
            return await send_task
        except BaseException:
            send_task.cancel()
            ahead.cancel()
            raise

    async def _next_batch(
        self, fut: asyncio.Future[Batch | None], cancel: CancellationToken
    ) -> Batch | None:
        """Wait for the next batch or for cancellation, whichever comes first."""
        if not fut.done() and not cancel.cancelled:
            cancel_wait = asyncio.ensure_future(cancel.wait())
            try:
                await asyncio.wait(
                    {fut, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                cancel_wait.cancel()

        if fut.done() and _is_end_of_input(fut):
            if self.state is PipelineState.STREAMING:
                self._transition(PipelineState.DRAINING)
            return None
        if cancel.cancelled:
            fut.cancel()
            self.report.cancelled = True
            return None
        return fut.result()

    async def _send(
        self, batch: Batch, destination: Destination, cancel: CancellationToken
    ) -> WriteResult:
        if self._retry.max_attempts <= 1:
            return await self._transport.send(batch, destination, self._precision)

        async def _attempt() -> WriteResult:
            result = await self._transport.send(batch, destination, self._precision)
            if result.outcome == "retryable" and result.error is not None:
                raise result.error
            return result

        try:
            return await retry_async(_attempt, policy=self._retry, cancel=cancel)
        except WriteError as e:
            return WriteResult(
                outcome="retryable", batch=batch, status_code=e.status_code, error=e
            )

    def _account(self, result: WriteResult) -> None:
        report = self.report
        batch = result.batch
        if result.ok:
            report.batches_accepted += 1
            report.records_accepted += len(batch)
            report.bytes_accepted += batch.size_bytes
            return

        err = result.error or WriteError(
            f"write of batch {batch.index} failed ({result.outcome})",
            retryable=result.outcome == "retryable",
            status_code=result.status_code,
            batch_index=batch.index,
        )
        err.batches_accepted = report.batches_accepted
        log.debug(
            "Batch %d failed after %d accepted batch(es): %s",
            batch.index,
            report.batches_accepted,
            err,
        )
        raise err


def _is_end_of_input(fut: asyncio.Future[Batch | None]) -> bool:
    return (
        fut.done()
        and not fut.cancelled()
        and fut.exception() is None
        and fut.result() is None
    )
