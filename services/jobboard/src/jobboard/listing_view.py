from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Literal

from listings.filtering import FilterSet, JobFilters, OpportunityFilters, filter_records
from listings.models import Listing, Opportunity
from listings.pagination import DEFAULT_PAGE_SIZE, Page, paginate

from jobboard.errors import ListingFetchError
from jobboard.fetcher import ListingFetcher

ListingKind = Literal["jobs", "opportunities"]
InterestCheck = Callable[[], Awaitable[bool]]
LOGGER = logging.getLogger("jobboard.api")

FILTER_TYPES: dict[str, type[FilterSet]] = {
    "jobs": JobFilters,
    "opportunities": OpportunityFilters,
}


class ListingView:
    """State of one listing screen: the loaded collection plus search, filters and page.

    Results that arrive after the view was closed, or once the requester has
    stopped listening, are dropped instead of applied.
    """

    def __init__(
        self,
        fetcher: ListingFetcher,
        kind: ListingKind,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        if kind not in FILTER_TYPES:
            raise ValueError(f"Unknown listing kind: {kind}")
        self.fetcher = fetcher
        self.kind = kind
        self.page_size = page_size
        self.loading = False
        self.error: str | None = None
        self.records: tuple[Listing, ...] | tuple[Opportunity, ...] = ()
        self.query = ""
        self.filters: FilterSet = FILTER_TYPES[kind]()
        self.current_page = 1
        self.closed = False

    async def _still_interested(self, is_interested: InterestCheck | None) -> bool:
        if self.closed:
            return False
        if is_interested is None:
            return True
        return await is_interested()

    async def load(self, is_interested: InterestCheck | None = None) -> bool:
        self.loading = True
        try:
            if self.kind == "jobs":
                records = await self.fetcher.fetch_jobs()
            else:
                records = await self.fetcher.fetch_opportunities()
        except ListingFetchError as exc:
            if await self._still_interested(is_interested):
                self.error = str(exc)
                self.loading = False
            return False

        if not await self._still_interested(is_interested):
            LOGGER.info(json.dumps({"event": "listing_result_dropped", "kind": self.kind}))
            return False

        self.records = records
        self.error = None
        self.loading = False
        return True

    def close(self) -> None:
        self.closed = True

    def search(self, query: str) -> None:
        self.query = query

    def apply_filters(self, filters: FilterSet) -> None:
        if not isinstance(filters, FILTER_TYPES[self.kind]):
            raise TypeError(f"{type(filters).__name__} does not apply to {self.kind}")
        self.filters = filters

    def reset_filters(self) -> None:
        self.filters = self.filters.reset()

    def go_to_page(self, page: int) -> None:
        self.current_page = page

    def filtered(self) -> tuple[Listing, ...] | tuple[Opportunity, ...]:
        return filter_records(self.records, self.query, self.filters)

    def visible_page(self) -> Page:
        return paginate(self.filtered(), self.current_page, self.page_size)
