"""Write transport: one batch, one ``POST /api/v2/write``.

The transport never retries. It classifies each attempt as success,
retryable or fatal and leaves the policy to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol, Self, runtime_checkable

import httpx

from lpstream._http import (
    LINE_PROTOCOL_CONTENT_TYPE,
    WRITE_PATH,
    auth_header,
    is_retryable_status,
)
from lpstream.errors import RateLimitError, WriteError
from lpstream.models import WriteRequest, WriteResult

if TYPE_CHECKING:
    from types import TracebackType

    from lpstream.config import Config
    from lpstream.models import Batch, Destination, Precision

log = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    """Minimal transport protocol used by the pipeline."""

    async def send(
        self, batch: Batch, destination: Destination, precision: Precision
    ) -> WriteResult:
        """Attempt to write *batch* once and classify the outcome."""
        ...


def build_client(
    config: Config, *, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """Build the HTTP client shared by the resolver and the writer."""
    return httpx.AsyncClient(
        base_url=config.host or "",
        headers=auth_header(config.token or ""),
        verify=not config.skip_verify,
        timeout=config.timeout_s,
        transport=transport,
    )


def extract_retry_after_s(response: httpx.Response) -> float | None:
    """Return the ``Retry-After`` delay in seconds, if the server sent one."""
    raw = response.headers.get("Retry-After")
    if not raw or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def extract_error_message(response: httpx.Response) -> str:
    """Pull the store's ``message`` field out of an error body."""
    try:
        payload: Any = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    return response.text.strip()


def _status_hint(status_code: int) -> str | None:
    if status_code in {401, 403}:
        return "Check the token and its write permission on the bucket (INFLUX_TOKEN)."
    if status_code == 404:
        return "The bucket or organization no longer exists."
    if status_code == 413:
        return "Lower --max-bytes so each request fits the server limit."
    if status_code == 400:
        return "The store rejected the line protocol or precision; check the input."
    return None


def classify_response(response: httpx.Response, *, batch: Batch) -> WriteResult:
    """Map an HTTP response to a WriteResult."""
    status = response.status_code
    if response.is_success:
        return WriteResult(outcome="success", batch=batch, status_code=status)

    retryable = is_retryable_status(status)
    detail = extract_error_message(response)
    message = f"write of batch {batch.index} failed (status={status})"
    if detail:
        message = f"{message}: {detail}"
    err_cls: type[WriteError] = RateLimitError if status == 429 else WriteError
    error = err_cls(
        message,
        hint=_status_hint(status),
        retryable=retryable,
        status_code=status,
        retry_after_s=extract_retry_after_s(response),
        batch_index=batch.index,
    )
    return WriteResult(
        outcome="retryable" if retryable else "fatal",
        batch=batch,
        status_code=status,
        error=error,
    )


class WriteTransport:
    """httpx-backed write transport bound to one endpoint for a whole run."""

    def __init__(self, client: httpx.AsyncClient, *, owns_client: bool = True) -> None:
        """Wrap an already configured client (base URL, auth, TLS, timeout)."""
        self._client = client
        self._owns_client = owns_client

    @classmethod
    def from_config(
        cls, config: Config, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> Self:
        """Create a transport with its own client built from *config*."""
        return cls(build_client(config, transport=transport))

    async def send(
        self, batch: Batch, destination: Destination, precision: Precision
    ) -> WriteResult:
        """Write *batch* with exactly one request and classify the outcome."""
        request = WriteRequest(
            destination=destination,
            precision=precision,
            body=batch.body(),
            batch_index=batch.index,
        )
        log.debug(
            "Sending batch %d: %d record(s), %d byte(s)",
            request.batch_index,
            len(batch),
            len(request.body),
        )
        try:
            response = await self._client.post(
                WRITE_PATH,
                params=request.params(),
                content=request.body,
                headers={"Content-Type": LINE_PROTOCOL_CONTENT_TYPE},
            )
        except asyncio.CancelledError:
            raise
        except (httpx.TimeoutException, httpx.RequestError) as e:
            error = WriteError(
                f"write of batch {batch.index} failed: {type(e).__name__}: {e}",
                hint="The store was unreachable; the batch may be retried.",
                retryable=True,
                batch_index=batch.index,
            )
            error.__cause__ = e
            return WriteResult(outcome="retryable", batch=batch, error=error)

        result = classify_response(response, batch=batch)
        log.debug(
            "Batch %d -> %s (status=%s)",
            batch.index,
            result.outcome,
            result.status_code,
        )
        return result

    async def aclose(self) -> None:
        """Close the underlying client when this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
