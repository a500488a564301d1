"""Pagination Walker: follows RFC 5988 Link headers across pages.

Each page goes through the full RetryOrchestrator. Pages are fetched
strictly in sequence because the next cursor is only known once the
previous response has arrived. The provider's next URL is followed
verbatim, which tolerates cursor-based as well as page-number schemes.
"""

import logging
import re
from collections.abc import AsyncIterator
from typing import Any

from . import metrics
from .errors import PaginationOverflow, UnsafeLinkError
from .executor import is_under_root
from .models import ApiResponse, PageCursor, RequestDescriptor
from .retry import RetryOrchestrator

logger = logging.getLogger("github_gateway.pagination")

__all__ = ["PaginationWalker", "extract_items", "parse_link_header"]

_LINK_RE = re.compile(r"<([^>]*)>\s*((?:;\s*[^;,]+)*)")
_REL_RE = re.compile(r"""rel\s*=\s*(?:"([^"]*)"|([^\s;,"]+))""", re.IGNORECASE)


def parse_link_header(header: str | None) -> dict[str, str]:
    """Parse a Link header into relation -> URL pairs.

    Format: <https://api.github.com/...?page=2>; rel="next", <...>; rel="last"

    A rel attribute may hold several space-separated relation names. The
    first URL seen for a relation wins.

    Args:
        header: Raw Link header value

    Returns:
        Mapping of relation name (lower-case) to URL
    """
    links: dict[str, str] = {}
    if not header:
        return links

    for match in _LINK_RE.finditer(header):
        url = match.group(1).strip()
        rel_match = _REL_RE.search(match.group(2) or "")
        if not url or not rel_match:
            continue
        rel_value = rel_match.group(1) if rel_match.group(1) is not None else rel_match.group(2)
        for rel in rel_value.split():
            links.setdefault(rel.lower(), url)
    return links


def extract_items(data: Any) -> tuple[list[Any], bool]:
    """Items on one page, and whether the payload is a collection.

    Lists are collections. Search-style envelopes ({"total_count": ..,
    "items": [..]}) are collections of their items. Any other payload is a
    single object: one item, no continuation.
    """
    if isinstance(data, list):
        return data, True
    if isinstance(data, dict) and isinstance(data.get("items"), list) and "total_count" in data:
        return data["items"], True
    if data is None:
        return [], False
    return [data], False


class PaginationWalker:
    """Lazily walks every page of a collection endpoint.

    Attributes:
        max_pages: Safety cap; a chain longer than this raises PaginationOverflow
        per_page: Page-size hint sent on the first request
    """

    def __init__(
        self,
        orchestrator: RetryOrchestrator,
        base_url: str,
        max_pages: int = 100,
        per_page: int = 100,
    ):
        """Initialize the walker.

        Args:
            orchestrator: Runs each page request with retries
            base_url: API root; next links must stay under it
            max_pages: Page cap
            per_page: Default page-size hint
        """
        self.orchestrator = orchestrator
        self.base_url = base_url.rstrip("/")
        self.max_pages = max_pages
        self.per_page = per_page

    def next_cursor(self, response: ApiResponse) -> PageCursor:
        """Cursor for the page after response.

        Raises:
            UnsafeLinkError: next link points outside the API root
        """
        next_url = parse_link_header(response.link_header).get("next")
        if not next_url:
            return PageCursor(None)
        if not is_under_root(next_url, self.base_url):
            logger.warning(
                "rejected_foreign_next_link",
                extra={"next_url": next_url[:100], "base_url": self.base_url},
            )
            raise UnsafeLinkError(
                "Pagination link points outside the configured API root",
                endpoint=response.url,
            )
        return PageCursor(next_url)

    async def pages(
        self, descriptor: RequestDescriptor, per_page: int | None = None
    ) -> AsyncIterator[list[Any]]:
        """Yield the items of each page, in provider order.

        Args:
            descriptor: First-page request (GET)
            per_page: Page-size hint, overriding the default

        Raises:
            PaginationOverflow: A next link is still present after max_pages pages
            GatewayError: Any terminal or exhausted page request
        """
        size = per_page or self.per_page
        current: RequestDescriptor | None = descriptor.with_params(per_page=size)
        pages_fetched = 0
        items_seen = 0

        while current is not None:
            if pages_fetched >= self.max_pages:
                metrics.pagination_overflows_total.inc()
                logger.error(
                    "pagination_overflow",
                    extra={
                        "endpoint": descriptor.path,
                        "max_pages": self.max_pages,
                        "items_seen": items_seen,
                    },
                )
                raise PaginationOverflow(
                    self.max_pages, endpoint=descriptor.path, items_seen=items_seen
                )

            response, _ = await self.orchestrator.run(current)
            pages_fetched += 1
            metrics.pages_fetched_total.inc()

            items, is_collection = extract_items(response.data)
            items_seen += len(items)

            cursor = self.next_cursor(response) if is_collection else PageCursor(None)
            logger.debug(
                "page_fetched",
                extra={
                    "endpoint": descriptor.path,
                    "page": pages_fetched,
                    "items": len(items),
                    "has_next": not cursor.exhausted,
                },
            )

            yield items

            current = None if cursor.exhausted else descriptor.follow(cursor.next_url)

    async def walk(
        self, descriptor: RequestDescriptor, per_page: int | None = None
    ) -> AsyncIterator[Any]:
        """Yield every item across every page.

        Restartable from scratch by calling again; not resumable mid-stream.
        """
        async for items in self.pages(descriptor, per_page=per_page):
            for item in items:
                yield item

    async def collect(
        self, descriptor: RequestDescriptor, per_page: int | None = None
    ) -> list[Any]:
        """All items as one ordered list."""
        return [item async for item in self.walk(descriptor, per_page=per_page)]
