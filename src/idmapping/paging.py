"""
Paged queries over mapping records.

Responsibilities:
- PageRequest / Page value types (caller-supplied paging, derived totals)
- PagedMigrationQuery: page of records for one run label, built from a
  content read and a count read launched concurrently

Ordering of every label page is label descending, then target id
ascending, then source key ascending. Within one run all labels are equal,
so the target id is what keeps consecutive pages stable.

Usage:
    >>> from idmapping.paging import PagedMigrationQuery, PageRequest
    >>>
    >>> query = PagedMigrationQuery(database.store(CorporateMapping))
    >>> page = await query.page_by_run_label("2023-01-01T12:45:12", PageRequest(size=2))
    >>> page.total_elements, page.number_of_elements, page.total_pages
    (6, 2, 3)
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pydantic import BaseModel

from idmapping.observability import (
    ATTR_MAPPING_KIND,
    ATTR_PAGE_NUMBER,
    ATTR_PAGE_SIZE,
    ATTR_RUN_LABEL,
    Tracer,
    create_tracer,
)

if TYPE_CHECKING:
    from idmapping.records import MigrationMarker
    from idmapping.stores.interface import MappingStore, MigrationMarkerStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class PageRequest:
    """
    Caller-supplied pagination request.

    Attributes:
        page: Zero-based page number
        size: Maximum number of items per page
        sort: Sort expressions supplied by the caller. Passed through to the
            resulting page untouched; label pages always use the fixed order.
    """

    page: int = 0
    size: int = 20
    sort: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.page < 0:
            raise ValueError(f"page must be non-negative, got {self.page}")
        if self.size < 1:
            raise ValueError(f"size must be positive, got {self.size}")

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass(frozen=True)
class Page(Generic[T]):
    """
    One page of results plus the totals needed to navigate the rest.

    Example:
        >>> page = Page(content=["a", "b"], request=PageRequest(size=2), total_elements=6)
        >>> page.total_pages, page.number_of_elements, page.last
        (3, 2, False)
    """

    content: list[T]
    request: PageRequest
    total_elements: int

    @property
    def number(self) -> int:
        return self.request.page

    @property
    def size(self) -> int:
        return self.request.size

    @property
    def number_of_elements(self) -> int:
        return len(self.content)

    @property
    def total_pages(self) -> int:
        if self.total_elements == 0:
            return 0
        return math.ceil(self.total_elements / self.request.size)

    @property
    def first(self) -> bool:
        return self.request.page == 0

    @property
    def last(self) -> bool:
        return self.request.page + 1 >= self.total_pages

    def map(self, func: Callable[[T], U]) -> Page[U]:
        """Return a page with each item transformed, keeping the totals."""
        return Page(
            content=[func(item) for item in self.content],
            request=self.request,
            total_elements=self.total_elements,
        )

    def to_dict(self) -> dict[str, Any]:
        """Render the page the way the façade serialises it."""
        return {
            "content": [
                item.model_dump(mode="json") if isinstance(item, BaseModel) else item
                for item in self.content
            ],
            "number": self.number,
            "size": self.size,
            "numberOfElements": self.number_of_elements,
            "totalElements": self.total_elements,
            "totalPages": self.total_pages,
            "first": self.first,
            "last": self.last,
            "sort": list(self.request.sort),
        }


async def gather_page(
    content: Awaitable[list[T]],
    count: Awaitable[int],
    request: PageRequest,
) -> Page[T]:
    """
    Run a content read and a count read concurrently and join them into a page.

    Neither read depends on the other; both must complete before the page
    is produced. A failure in either propagates.
    """
    items, total = await asyncio.gather(content, count)
    return Page(content=list(items), request=request, total_elements=total)


class PagedMigrationQuery:
    """
    Pages of mapping records for one entity kind.

    Args:
        store: Store of the entity kind to read from
        tracer: Optional tracer (created from ``enable_tracing`` otherwise)
        enable_tracing: Whether to enable OpenTelemetry tracing (default True)
    """

    def __init__(
        self,
        store: MappingStore[Any],
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._store = store

    async def page_by_run_label(self, label: str, page_request: PageRequest) -> Page[Any]:
        """
        Get one page of the records written by a migration run.

        Args:
            label: Run label shared by the records
            page_request: Page number and size

        Returns:
            Page of records ordered by label descending, target id ascending
        """
        with self._tracer.span(
            "idmapping.paging.page_by_run_label",
            {
                ATTR_MAPPING_KIND: self._store.record_class.kind(),
                ATTR_RUN_LABEL: label,
                ATTR_PAGE_NUMBER: page_request.page,
                ATTR_PAGE_SIZE: page_request.size,
            },
        ):
            page = await gather_page(
                self._store.find_by_label(label, page_request),
                self._store.count_by_label(label),
                page_request,
            )
            logger.debug(
                "Paged %s mappings for label %s: page %d, %d of %d",
                self._store.record_class.kind(),
                label,
                page.number,
                page.number_of_elements,
                page.total_elements,
            )
            return page

    async def page_all(self, page_request: PageRequest) -> Page[Any]:
        """Get one page over every record of the kind, labelled or not."""
        with self._tracer.span(
            "idmapping.paging.page_all",
            {
                ATTR_MAPPING_KIND: self._store.record_class.kind(),
                ATTR_PAGE_NUMBER: page_request.page,
                ATTR_PAGE_SIZE: page_request.size,
            },
        ):
            return await gather_page(
                self._store.find_all(page_request),
                self._store.count_all(),
                page_request,
            )


async def page_markers_by_label(
    markers: MigrationMarkerStore,
    label: str,
    page_request: PageRequest,
    family: str | None = None,
) -> Page[MigrationMarker]:
    """
    Get one page of migration markers recorded by a run.

    Args:
        markers: Marker store to read from
        label: Run label
        page_request: Page number and size
        family: Restrict to one family (all families when None)
    """
    return await gather_page(
        markers.find_by_label(label, page_request, family=family),
        markers.count_by_label(label, family=family),
        page_request,
    )


__all__ = [
    "Page",
    "PageRequest",
    "PagedMigrationQuery",
    "gather_page",
    "page_markers_by_label",
]
