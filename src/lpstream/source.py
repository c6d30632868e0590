"""Source: explicit input types for a write run."""

from __future__ import annotations

from collections.abc import Callable  # noqa: TC003 - used at runtime in dataclass
from contextlib import contextmanager
from dataclasses import dataclass
import io
from pathlib import Path
import sys
from typing import IO, TYPE_CHECKING, Literal

from lpstream.errors import SourceReadError

if TYPE_CHECKING:
    from collections.abc import Iterator

SourceType = Literal["text", "file", "stdin"]

STDIN_MARKER = "-"
FILE_PREFIX = "@"


@dataclass(frozen=True, slots=True)
class Source:
    """A structured representation of where line protocol is read from.

    The writer only ever sees a binary stream; :meth:`open` hands one out and
    closes it again when the source owns it.
    """

    source_type: SourceType
    identifier: str
    opener: Callable[[], IO[bytes]]
    owns_stream: bool = True

    @classmethod
    def from_text(cls, text: str, *, identifier: str | None = None) -> Source:
        """Create a Source from literal line protocol."""
        content = text.encode("utf-8")
        return cls(
            source_type="text",
            identifier=identifier or text[:50],
            opener=lambda: io.BytesIO(content),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> Source:
        """Create a Source from a local file.

        Args:
            path: Path to the file. Must exist or ``SourceReadError`` is raised.
        """
        p = Path(path)
        if not p.is_file():
            raise SourceReadError(f'failed to open "{p}": file not found')

        def opener() -> IO[bytes]:
            try:
                return p.open("rb")
            except OSError as e:
                raise SourceReadError(f'failed to open "{p}": {e}') from e

        return cls(source_type="file", identifier=str(p), opener=opener)

    @classmethod
    def from_stdin(cls) -> Source:
        """Create a Source reading the process's standard input."""
        return cls(
            source_type="stdin",
            identifier="<stdin>",
            opener=lambda: sys.stdin.buffer,
            owns_stream=False,
        )

    @classmethod
    def from_argument(cls, arg: str) -> Source:
        """Interpret a command-line argument.

        ``-`` reads stdin, ``@path`` reads a file, anything else is literal
        line protocol.
        """
        if arg == STDIN_MARKER:
            return cls.from_stdin()
        if arg.startswith(FILE_PREFIX):
            return cls.from_file(arg[len(FILE_PREFIX) :])
        return cls.from_text(arg)

    @contextmanager
    def open(self) -> Iterator[IO[bytes]]:
        """Yield the binary stream, closing it afterwards when owned."""
        stream = self.opener()
        try:
            yield stream
        finally:
            if self.owns_stream:
                stream.close()
