"""Record segmentation: byte exactness across chunk boundaries."""

from __future__ import annotations

import io

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from lpstream.cancel import CancellationToken
from lpstream.errors import SourceReadError
from lpstream.segment import iter_records
from tests.helpers import ChunkedStream, FailingStream

pytestmark = pytest.mark.unit


def test_records_keep_their_terminator() -> None:
    data = b"m v=1 1\nm v=2 2\n"

    assert list(iter_records(io.BytesIO(data))) == [b"m v=1 1\n", b"m v=2 2\n"]


def test_trailing_record_without_terminator_is_yielded() -> None:
    records = list(iter_records(io.BytesIO(b"a\nb")))

    assert records == [b"a\n", b"b"]


def test_empty_input_yields_nothing() -> None:
    assert list(iter_records(io.BytesIO(b""))) == []


def test_blank_lines_are_records_too() -> None:
    """The segmenter never inspects record content."""
    assert list(iter_records(io.BytesIO(b"\n\nx\n"))) == [b"\n", b"\n", b"x\n"]


def test_record_split_across_reads_is_reassembled() -> None:
    stream = ChunkedStream([b"cpu,ho", b"st=a us", b"age=1 1\nmem", b" v=2 2\n"])

    records = list(iter_records(stream))

    assert records == [b"cpu,host=a usage=1 1\n", b"mem v=2 2\n"]


def test_tiny_chunk_size_still_segments_correctly() -> None:
    data = b"a=1\nbb=22\nccc=333\n"

    assert b"".join(iter_records(io.BytesIO(data), chunk_size=1)) == data


def test_invalid_chunk_size_raises() -> None:
    with pytest.raises(ValueError, match="chunk_size"):
        list(iter_records(io.BytesIO(b"x\n"), chunk_size=0))


def test_read_failure_surfaces_as_source_read_error() -> None:
    stream = FailingStream([b"a\n"])

    records = iter_records(stream)
    assert next(records) == b"a\n"
    with pytest.raises(SourceReadError, match="device unplugged") as exc:
        next(records)
    assert isinstance(exc.value.__cause__, OSError)


def test_cancelled_token_stops_reading() -> None:
    token = CancellationToken()
    token.cancel()

    assert list(iter_records(io.BytesIO(b"a\nb\n"), cancel=token)) == []


def test_stream_is_not_closed() -> None:
    stream = io.BytesIO(b"a\n")

    list(iter_records(stream))

    assert not stream.closed


@given(
    lines=st.lists(
        st.binary(max_size=40).map(lambda b: b.replace(b"\n", b"")), max_size=30
    ),
    trailing=st.booleans(),
    chunk_size=st.integers(min_value=1, max_value=17),
)
@settings(max_examples=50, deadline=None, derandomize=True)
def test_concatenated_records_equal_input(
    lines: list[bytes], trailing: bool, chunk_size: int
) -> None:
    """Property: joining the records reproduces the input byte for byte."""
    data = b"\n".join(lines)
    if trailing and data:
        data += b"\n"

    records = list(iter_records(io.BytesIO(data), chunk_size=chunk_size))

    assert b"".join(records) == data
    assert all(r for r in records)
    assert all(r.endswith(b"\n") for r in records[:-1])
