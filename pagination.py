"""
Offset based pagination helper for the Keycloak admin API
"""

import logging
from typing import Callable, List, Sequence, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 100


def collect_pages(fetch_page: Callable[[int, int], Sequence[T]],
                  page_size: int = DEFAULT_PAGE_SIZE) -> List[T]:
    """
    Fetch every page of a collection and return the concatenated result.

    ``fetch_page(first, max)`` is called with a growing offset until it returns
    fewer than ``page_size`` items. Errors raised by ``fetch_page`` propagate to
    the caller, so a failed enumeration never yields a partial list.
    """
    if page_size <= 0:
        raise ValueError(f"page_size must be positive, got {page_size}")

    items: List[T] = []
    first = 0

    while True:
        page = list(fetch_page(first, page_size))
        items.extend(page)

        # When we receive fewer than max, there are no more pages
        if len(page) < page_size:
            break

        first += page_size
        logger.debug(f"Fetching next page at offset {first} (collected {len(items)} so far)")

    return items
