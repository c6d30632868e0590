"""Command-line entry point.

Examples:
- lpstream write --bucket telemetry 'cpu,host=a usage=0.5 1700000000000000000'
- lpstream write --bucket telemetry --precision s @points.lp
- cat points.lp | lpstream write --bucket-id 0123456789abcdef -
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

import lpstream
from lpstream.config import DEFAULT_MAX_BYTES, DEFAULT_MAX_RECORDS, Config
from lpstream.errors import ConfigurationError, LpstreamError
from lpstream.retry import RetryPolicy
from lpstream.source import Source

if TYPE_CHECKING:
    from collections.abc import Sequence

log = logging.getLogger(__name__)

_LOG_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    """Return the top-level parser with its ``write`` subcommand."""
    parser = argparse.ArgumentParser(
        prog="lpstream",
        description="Stream line protocol into a time-series store.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {lpstream.__version__}"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    write = sub.add_parser(
        "write",
        help="Write points",
        description=(
            "Write a single line of line protocol, an entire file given with an "
            "@ prefix, or standard input with -."
        ),
    )
    write.add_argument(
        "data",
        metavar="LINE_PROTOCOL|@FILE|-",
        help="Literal line protocol, @path/to/points.txt, or - for stdin",
    )
    write.add_argument("-b", "--bucket", help="The name of destination bucket")
    write.add_argument("--bucket-id", help="The ID of destination bucket")
    write.add_argument("-o", "--org", help="The name of the organization")
    write.add_argument("--org-id", help="The ID of the organization")
    write.add_argument(
        "-p",
        "--precision",
        help="Precision of the timestamps of the lines (ns, us, ms, s); default ns",
    )
    write.add_argument("--host", help="HTTP address of the store (INFLUX_HOST)")
    write.add_argument("-t", "--token", help="API token (INFLUX_TOKEN)")
    write.add_argument(
        "--skip-verify",
        action="store_true",
        help="Skip TLS certificate verification",
    )
    write.add_argument(
        "--max-records",
        type=int,
        default=DEFAULT_MAX_RECORDS,
        help="Maximum records per write request (default: %(default)s)",
    )
    write.add_argument(
        "--max-bytes",
        type=int,
        default=DEFAULT_MAX_BYTES,
        help="Maximum body size of a write request (default: %(default)s)",
    )
    write.add_argument(
        "--max-attempts",
        type=int,
        default=1,
        help="Attempts per batch on transient failures (default: %(default)s)",
    )
    write.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress to stderr (-vv for debug output)",
    )
    write.set_defaults(handler=write_command, command_parser=write)
    return parser


def _configure_logging(verbosity: int) -> None:
    level = _LOG_LEVELS[min(verbosity, len(_LOG_LEVELS) - 1)]
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _print_error(err: LpstreamError) -> None:
    print(f"Error: {err}", file=sys.stderr)
    if err.hint:
        print(f"Hint: {err.hint}", file=sys.stderr)


def _config_from_args(args: argparse.Namespace) -> Config:
    try:
        retry = RetryPolicy(max_attempts=args.max_attempts)
    except ValueError as e:
        raise ConfigurationError(str(e), hint="Pass --max-attempts 1 or more.") from e
    return Config(
        host=args.host,
        token=args.token,
        skip_verify=args.skip_verify,
        bucket=args.bucket,
        bucket_id=args.bucket_id,
        org=args.org,
        org_id=args.org_id,
        precision=args.precision,
        max_records=args.max_records,
        max_bytes=args.max_bytes,
        retry=retry,
    )


def write_command(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    """Run ``lpstream write``; return the process exit code."""
    try:
        config = _config_from_args(args)
    except ConfigurationError as e:
        parser.print_usage(sys.stderr)
        _print_error(e)
        return 1

    log.debug("Running with %s", config)
    try:
        source = Source.from_argument(args.data)
        with source.open() as stream:
            report = asyncio.run(
                lpstream.write(stream, config=config, handle_signals=True)
            )
    except ConfigurationError as e:
        parser.print_usage(sys.stderr)
        _print_error(e)
        return 1
    except LpstreamError as e:
        _print_error(e)
        return 1

    if report.cancelled:
        log.info("Stopped by signal after %d batch(es)", report.batches_accepted)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Console entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        return args.handler(args, args.command_parser)
    except KeyboardInterrupt:
        # Interrupted outside the pipeline's own signal handling.
        return 0
