from __future__ import annotations

import pytest
from listings.pagination import paginate

pytestmark = pytest.mark.unit


def test_first_page_of_twenty_five_items() -> None:
    page = paginate(list(range(25)), page=1, page_size=10)
    assert page.window.total == 3
    assert page.items == list(range(10))
    assert page.total_items == 25


def test_last_page_is_partial() -> None:
    page = paginate(list(range(25)), page=3, page_size=10)
    assert page.items == [20, 21, 22, 23, 24]


@pytest.mark.parametrize(("count", "page_size"), [(0, 10), (1, 1), (25, 10), (30, 10), (47, 7)])
def test_pages_partition_the_collection(count: int, page_size: int) -> None:
    collection = list(range(count))
    total_pages = paginate(collection, page=1, page_size=page_size).window.total

    seen: list[int] = []
    for number in range(1, total_pages + 1):
        seen.extend(paginate(collection, page=number, page_size=page_size).items)

    assert seen == collection


def test_empty_collection_has_no_pages() -> None:
    page = paginate([], page=1, page_size=10)
    assert page.window.total == 0
    assert page.items == []
    assert page.window.pages == []


def test_out_of_range_page_yields_empty_slice() -> None:
    page = paginate(list(range(5)), page=4, page_size=10)
    assert page.items == []
    assert page.window.total == 1


def test_window_groups_ten_pages() -> None:
    collection = list(range(250))

    first = paginate(collection, page=3, page_size=10).window
    assert (first.start, first.end) == (1, 10)
    assert first.previous_window_page is None
    assert first.next_window_page == 11

    second = paginate(collection, page=11, page_size=10).window
    assert (second.start, second.end) == (11, 20)
    assert second.previous_window_page == 10

    last = paginate(collection, page=21, page_size=10).window
    assert (last.start, last.end) == (21, 25)
    assert last.next_window_page is None
    assert last.pages == [21, 22, 23, 24, 25]


def test_paginate_is_idempotent() -> None:
    collection = list(range(42))
    assert paginate(collection, page=2, page_size=10) == paginate(collection, page=2, page_size=10)


@pytest.mark.parametrize(("page", "page_size"), [(0, 10), (-1, 10), (1, 0)])
def test_non_positive_arguments_are_rejected(page: int, page_size: int) -> None:
    with pytest.raises(ValueError):
        paginate(list(range(5)), page=page, page_size=page_size)
