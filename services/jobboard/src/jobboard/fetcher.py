from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from listings.models import Listing, Opportunity

from jobboard.errors import ListingFetchError, ListingNotFoundError

DEFAULT_TIMEOUT_SECONDS = 15
LOGGER = logging.getLogger("jobboard.fetcher")

RecordT = TypeVar("RecordT", Listing, Opportunity)


def extract_body(payload: Any) -> list[dict[str, Any]]:
    """Return the ``body`` list of a listing response; anything else reads as empty."""
    if not isinstance(payload, dict):
        return []
    body = payload.get("body")
    if not isinstance(body, list):
        return []
    return [item for item in body if isinstance(item, dict)]


def normalize_records(
    items: list[dict[str, Any]],
    factory: Callable[[dict[str, Any]], RecordT],
) -> tuple[RecordT, ...]:
    records: list[RecordT] = []
    for item in items:
        record = factory(item)
        if not record.id:
            LOGGER.warning(json.dumps({"event": "listing_skipped", "reason": "missing id"}))
            continue
        records.append(record)
    return tuple(records)


class ListingFetcher:
    def __init__(
        self,
        jobs_endpoint: str,
        opportunities_endpoint: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.jobs_endpoint = jobs_endpoint
        self.opportunities_endpoint = opportunities_endpoint
        self.timeout = timeout

    async def _read_body(
        self,
        url: str,
        *,
        record_id: str | None,
        failure_message: str,
    ) -> list[dict[str, Any]]:
        params = {"id": record_id} if record_id is not None else None
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method="GET", url=url, params=params)
        except httpx.RequestError as exc:
            LOGGER.error(
                json.dumps({"event": "listing_fetch_failed", "url": url, "error": str(exc)})
            )
            raise ListingFetchError(failure_message) from exc

        if response.status_code >= 400:
            LOGGER.error(
                json.dumps(
                    {
                        "event": "listing_fetch_failed",
                        "url": url,
                        "status_code": response.status_code,
                    }
                )
            )
            raise ListingFetchError(failure_message)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ListingFetchError(failure_message) from exc
        return extract_body(payload)

    async def fetch_jobs(self) -> tuple[Listing, ...]:
        items = await self._read_body(
            self.jobs_endpoint,
            record_id=None,
            failure_message="Failed to fetch jobs",
        )
        return normalize_records(items, Listing.from_source)

    async def fetch_job(self, job_id: str) -> Listing:
        items = await self._read_body(
            self.jobs_endpoint,
            record_id=job_id,
            failure_message="Failed to fetch job details",
        )
        records = normalize_records(items, Listing.from_source)
        if not records:
            raise ListingNotFoundError("Job not found")
        return records[0]

    async def fetch_opportunities(self) -> tuple[Opportunity, ...]:
        items = await self._read_body(
            self.opportunities_endpoint,
            record_id=None,
            failure_message="Failed to fetch opportunities",
        )
        return normalize_records(items, Opportunity.from_source)

    async def fetch_opportunity(self, opportunity_id: str) -> Opportunity:
        items = await self._read_body(
            self.opportunities_endpoint,
            record_id=opportunity_id,
            failure_message="Failed to fetch opportunity details",
        )
        records = normalize_records(items, Opportunity.from_source)
        if not records:
            raise ListingNotFoundError("Opportunity not found")
        return records[0]
