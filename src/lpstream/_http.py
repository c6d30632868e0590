"""Small HTTP-related constants shared across lpstream.

Kept tiny so the transport, resolver and retry modules agree on one boundary.
"""

from __future__ import annotations

# Client-side statuses that signal a transient condition. Every 5xx is
# retryable as well; all other 4xx responses are fatal.
RETRYABLE_CLIENT_STATUS_CODES: frozenset[int] = frozenset({408, 429})

WRITE_PATH = "/api/v2/write"
BUCKETS_PATH = "/api/v2/buckets"
LINE_PROTOCOL_CONTENT_TYPE = "text/plain; charset=utf-8"


def is_retryable_status(status_code: int) -> bool:
    """Return True when *status_code* marks a transient failure."""
    return status_code >= 500 or status_code in RETRYABLE_CLIENT_STATUS_CODES


def auth_header(token: str) -> dict[str, str]:
    """Return the authorization header for *token*."""
    return {"Authorization": f"Token {token}"}
