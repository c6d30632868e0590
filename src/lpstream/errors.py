"""Exception hierarchy for lpstream."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class LpstreamError(Exception):
    """Base exception for all lpstream errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(LpstreamError):
    """Configuration validation failed before any I/O was attempted."""


class ResolutionError(LpstreamError):
    """The destination bucket could not be resolved."""


class SourceReadError(LpstreamError):
    """The local input could not be opened or read.

    ``batches_accepted`` is set when the read failed mid-stream, after some
    batches may already have been written.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        batches_accepted: int | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.batches_accepted = batches_accepted


class WriteError(LpstreamError):
    """A batch was rejected by the store or never reached it.

    ``batches_accepted`` counts the batches the store acknowledged before this
    failure, so callers can tell a clean failure from a partial write.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool = False,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        batch_index: int | None = None,
        batches_accepted: int | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.batch_index = batch_index
        self.batches_accepted = batches_accepted


class RateLimitError(WriteError):
    """The store throttled the write (HTTP 429)."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
