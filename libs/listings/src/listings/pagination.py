from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_PAGE_SIZE = 10
DEFAULT_WINDOW_SIZE = 10


class PageWindow(BaseModel):
    start: int
    end: int
    total: int

    @property
    def pages(self) -> list[int]:
        return list(range(self.start, self.end + 1))

    @property
    def previous_window_page(self) -> int | None:
        return self.start - 1 if self.start > 1 else None

    @property
    def next_window_page(self) -> int | None:
        return self.end + 1 if self.end < self.total else None


class Page(BaseModel):
    page: int
    page_size: int
    total_items: int
    items: list[Any] = Field(default_factory=list)
    window: PageWindow


def paginate(
    filtered: Sequence[Any],
    page: int,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> Page:
    """Slice one page out of ``filtered`` and locate its page-number window.

    Pages outside ``[1, total_pages]`` produce an empty slice; the caller is
    expected to dispatch only pages it was offered.
    """
    if page < 1:
        raise ValueError("page must be a positive integer.")
    if page_size < 1:
        raise ValueError("page_size must be a positive integer.")
    if window_size < 1:
        raise ValueError("window_size must be a positive integer.")

    total_pages = math.ceil(len(filtered) / page_size)
    window_index = (page - 1) // window_size
    start = window_index * window_size + 1
    end = min(start + window_size - 1, total_pages)

    first_index = (page - 1) * page_size
    items = list(filtered[first_index : first_index + page_size])
    return Page(
        page=page,
        page_size=page_size,
        total_items=len(filtered),
        items=items,
        window=PageWindow(start=start, end=end, total=total_pages),
    )
