"""Destination resolution: bucket/org name or id to canonical ids."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, Self, runtime_checkable

import httpx
from pydantic import ValidationError

from lpstream._http import BUCKETS_PATH
from lpstream.errors import ConfigurationError, ResolutionError
from lpstream.models import BucketList, Destination
from lpstream.transport import build_client, extract_error_message

if TYPE_CHECKING:
    from types import TracebackType

    from lpstream.config import Config
    from lpstream.models import Bucket, BucketFilter

log = logging.getLogger(__name__)


@runtime_checkable
class BucketFinder(Protocol):
    """Lookup seam used by :func:`resolve_destination`."""

    async def find_buckets(self, flt: BucketFilter) -> tuple[list[Bucket], int]:
        """Return matching buckets and their count."""
        ...


def validate_filter(flt: BucketFilter) -> None:
    """Reject filters that name the same concept twice, or no bucket at all."""
    if flt.id is not None and flt.name is not None:
        raise ConfigurationError(
            "please specify one of bucket or bucket-id",
            hint="Pass --bucket NAME or --bucket-id ID, not both.",
        )
    if flt.org_id is not None and flt.org is not None:
        raise ConfigurationError(
            "please specify one of org or org-id",
            hint="Pass --org NAME or --org-id ID, not both.",
        )
    if flt.id is None and flt.name is None:
        raise ConfigurationError(
            "a destination bucket is required",
            hint="Pass --bucket/--bucket-id or set BUCKET_NAME/BUCKET_ID.",
        )


class BucketService:
    """Reads bucket metadata over ``GET /api/v2/buckets``."""

    def __init__(self, client: httpx.AsyncClient, *, owns_client: bool = True) -> None:
        self._client = client
        self._owns_client = owns_client

    @classmethod
    def from_config(
        cls, config: Config, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> Self:
        return cls(build_client(config, transport=transport))

    async def find_buckets(self, flt: BucketFilter) -> tuple[list[Bucket], int]:
        """Return the buckets matching *flt* and how many there are."""
        params: dict[str, str] = {}
        if flt.id is not None:
            params["id"] = flt.id
        if flt.name is not None:
            params["name"] = flt.name
        if flt.org_id is not None:
            params["orgID"] = flt.org_id
        if flt.org is not None:
            params["org"] = flt.org

        try:
            response = await self._client.get(BUCKETS_PATH, params=params)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            raise ResolutionError(
                f"failed to retrieve buckets: {type(e).__name__}: {e}",
                hint="Check --host and that the store is reachable.",
            ) from e

        if response.status_code == 404:
            # Lookups by id answer 404 for unknown buckets.
            return [], 0
        if not response.is_success:
            detail = extract_error_message(response)
            raise ResolutionError(
                f"failed to retrieve buckets (status={response.status_code})"
                + (f": {detail}" if detail else ""),
                hint="Check the token's read permission on buckets (INFLUX_TOKEN).",
            )

        try:
            listing = BucketList.model_validate_json(response.content)
        except ValidationError as e:
            raise ResolutionError(
                f"failed to decode buckets response: {e.error_count()} error(s)",
                hint=str(e),
            ) from e
        return listing.buckets, len(listing.buckets)

    async def aclose(self) -> None:
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


async def resolve_destination(finder: BucketFinder, flt: BucketFilter) -> Destination:
    """Resolve *flt* to exactly one destination.

    Raises:
        ConfigurationError: The filter names a concept twice or no bucket.
        ResolutionError: Zero or several buckets match, or the lookup failed.
    """
    validate_filter(flt)
    buckets, n = await finder.find_buckets(flt)

    if n == 0 or not buckets:
        if flt.name is not None:
            raise ResolutionError(f"bucket {flt.name!r} was not found")
        raise ResolutionError(f"bucket with id {flt.id!r} does not exist")
    if n > 1:
        raise ResolutionError(
            f"{flt.describe()} is ambiguous: {n} buckets match",
            hint="Pass --org or --org-id to narrow the lookup, or use --bucket-id.",
        )

    bucket = buckets[0]
    log.debug(
        "Resolved %s to org=%s bucket=%s", flt.describe(), bucket.org_id, bucket.id
    )
    return Destination(
        org_id=bucket.org_id, bucket_id=bucket.id, bucket_name=bucket.name
    )
