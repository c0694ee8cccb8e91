"""
One table view: its filters, the page on screen and the cursors behind it.

``TableSession`` wires a filter dataclass and a data-access ``get_by_filter``
function to a :class:`~campaign_desk.pagination.CursorPaginator`.  Changing
the filters always resets pagination; results that arrive for a navigation
that has since been superseded are dropped.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence

from . import csv_export
from .pagination import CursorPaginator
from .querying import Page

logger = logging.getLogger(__name__)

FetchPage = Callable[[Any], Page]


class TableSession:
    def __init__(self, fetch_page: FetchPage, filters, page_size: Optional[int] = None) -> None:
        self._fetch_page = fetch_page
        self.filters = filters
        self.records: List[Any] = []
        self.paginator = CursorPaginator(page_size or filters.page_size, on_reset=self._clear)

    @property
    def page_index(self) -> int:
        return self.paginator.page_index

    @property
    def page_size(self) -> int:
        return self.paginator.page_size

    @property
    def has_next_page(self) -> bool:
        # a short page is the last one
        return (
            self.paginator.last_observed_cursor is not None
            and len(self.records) >= self.paginator.page_size
        )

    def _clear(self) -> None:
        self.records = []

    def current_filters(self):
        """The filters for the page on screen, pagination fields included."""
        p = self.paginator
        return self.filters.with_page(p.page_index, p.page_size, p.cursor)

    def load(self) -> List[Any]:
        ticket = self.paginator.begin_request()
        page = self._fetch_page(self.current_filters())
        if self.paginator.record_page_result(page.next_cursor, ticket):
            self.records = list(page.records)
        return self.records

    def set_filters(self, filters) -> List[Any]:
        self.filters = filters
        self.paginator.reset(page_size=filters.page_size)
        return self.load()

    def next_page(self) -> List[Any]:
        before = self.paginator.page_index
        self.paginator.advance_to(before + 1, self.paginator.page_size)
        if self.paginator.page_index == before:
            return self.records
        return self.load()

    def previous_page(self) -> List[Any]:
        if self.paginator.page_index == 0:
            return self.records
        self.paginator.advance_to(self.paginator.page_index - 1, self.paginator.page_size)
        return self.load()

    def first_page(self) -> List[Any]:
        self.paginator.advance_to(0, self.paginator.page_size)
        return self.load()

    def set_page_size(self, page_size: int) -> List[Any]:
        self.paginator.advance_to(self.paginator.page_index, page_size)
        return self.load()

    def go_to(self, page_index: int) -> List[Any]:
        """Show ``page_index``, walking forward page by page when it is a jump.

        Stops early on the last page when there are fewer pages than asked.
        """
        current = self.paginator.page_index
        if page_index == current + 1:
            return self.next_page()
        if page_index <= current:
            self.paginator.advance_to(page_index, self.paginator.page_size)
            return self.load()
        logger.debug("Walking forward from page 0 to page %s", page_index)
        self.paginator.advance_to(page_index, self.paginator.page_size)
        self.load()
        while self.paginator.page_index < page_index:
            before = self.paginator.page_index
            self.next_page()
            if self.paginator.page_index == before or not self.records:
                break
        return self.records

    def export_csv(
        self,
        filename: str,
        columns: Optional[Sequence[csv_export.Column]] = None,
        sink=None,
    ) -> None:
        """Export the page on screen."""
        csv_export.export_to_csv(self.records, filename, columns=columns, sink=sink)

    def __repr__(self) -> str:
        return f"<TableSession {type(self.filters).__name__} page={self.page_index} rows={len(self.records)}>"
