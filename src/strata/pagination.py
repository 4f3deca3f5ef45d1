"""Continuation-token pagination.

``list_all`` is all-or-nothing: the first failing page aborts the listing and
nothing gathered so far is returned. Callers who want partial progress use
``iter_items`` instead, which yields items as each page arrives.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from strata.errors import APIError, MalformedResponseError, Reason

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 10_000


@dataclass(frozen=True)
class Page:
    """One page of a listing."""

    items: list[Any] = field(default_factory=list)
    next_token: str | None = None
    total: int | None = None


def page_from_response(payload: Any, items_key: str) -> Page:
    """Build a Page from a ``{items_key: [...], nextPageToken?}`` payload.

    A missing items key means an empty page (the service omits it).
    """
    if payload is None:
        return Page()
    if not isinstance(payload, dict):
        raise MalformedResponseError(
            f"expected a listing object, got {type(payload).__name__}"
        )
    items = payload.get(items_key, [])
    if items is None:
        items = []
    if not isinstance(items, list):
        raise MalformedResponseError(f"listing field {items_key!r} is not a list")
    token = payload.get("nextPageToken") or payload.get("pageToken") or None
    total = payload.get("totalRows", payload.get("totalItems"))
    try:
        total = int(total) if total is not None else None
    except (TypeError, ValueError):
        total = None
    return Page(items=list(items), next_token=token, total=total)


def _page_limit_error(max_pages: int) -> APIError:
    return APIError(
        f"listing did not terminate after {max_pages} pages",
        reason=Reason.INTERNAL.value,
        hint="The service kept returning continuation tokens; check the request factory.",
    )


async def iter_pages(
    fetch_page: Callable[[str | None], Awaitable[Page]],
    *,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> AsyncIterator[Page]:
    """Yield pages until one arrives without a continuation token."""
    if max_pages < 1:
        raise ValueError("max_pages must be >= 1")
    token: str | None = None
    for count in range(1, max_pages + 1):
        page = await fetch_page(token)
        logger.debug(
            "page %d: %d items, more=%s", count, len(page.items), bool(page.next_token)
        )
        yield page
        if not page.next_token:
            return
        token = page.next_token
    raise _page_limit_error(max_pages)


async def iter_items(
    fetch_page: Callable[[str | None], Awaitable[Page]],
    *,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> AsyncIterator[Any]:
    """Yield items incrementally; earlier items stay delivered if a later page fails."""
    async for page in iter_pages(fetch_page, max_pages=max_pages):
        for item in page.items:
            yield item


async def list_all(
    fetch_page: Callable[[str | None], Awaitable[Page]],
    *,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> list[Any]:
    """Concatenate every page's items in page order.

    Raises whatever error the failing page raised; no partial result.
    """
    items: list[Any] = []
    async for page in iter_pages(fetch_page, max_pages=max_pages):
        items.extend(page.items)
    return items
