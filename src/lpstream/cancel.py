"""Cooperative cancellation shared by every pipeline stage.

The token is set from the event loop (signal handlers) and read both from the
loop and from the reader thread, so it wraps a ``threading.Event`` and wakes
loop waiters explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading

log = logging.getLogger(__name__)

_STANDARD_SIGNALS: tuple[str, ...] = ("SIGINT", "SIGTERM")


class CancellationToken:
    """One-way cancellation flag; once set it stays set."""

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._lock = threading.Lock()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._flag.is_set()

    def cancel(self) -> None:
        """Request cancellation. Safe to call from any thread, more than once."""
        with self._lock:
            if self._flag.is_set():
                return
            self._flag.set()
            waiters, self._waiters = self._waiters, []
        for loop, fut in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve, fut)

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        if self._flag.is_set():
            return
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[None] = loop.create_future()
        entry = (loop, fut)
        with self._lock:
            if self._flag.is_set():
                return
            self._waiters.append(entry)
        try:
            await fut
        finally:
            with self._lock:
                if entry in self._waiters:
                    self._waiters.remove(entry)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


def _resolve(fut: asyncio.Future[None]) -> None:
    if not fut.done():
        fut.set_result(None)


def install_signal_handlers(
    loop: asyncio.AbstractEventLoop, token: CancellationToken
) -> None:
    """Bind SIGINT/SIGTERM to *token*, with a fallback where the loop can't."""

    def _trigger(signame: str) -> None:
        if not token.cancelled:
            log.info("Received %s, stopping after the in-flight batch", signame)
        token.cancel()

    for sig_name in _STANDARD_SIGNALS:
        sig = getattr(signal, sig_name, None)
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, _trigger, sig_name)
        except (NotImplementedError, RuntimeError):
            signal.signal(
                sig,
                lambda *_args, s=sig_name: loop.call_soon_threadsafe(_trigger, s),
            )


def remove_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """Undo :func:`install_signal_handlers` on loops that support it."""
    for sig_name in _STANDARD_SIGNALS:
        sig = getattr(signal, sig_name, None)
        if sig is None:
            continue
        try:
            loop.remove_signal_handler(sig)
        except (NotImplementedError, RuntimeError):
            default = (
                signal.default_int_handler if sig_name == "SIGINT" else signal.SIG_DFL
            )
            signal.signal(sig, default)
