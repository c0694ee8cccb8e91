"""
Cursor pagination controller.

Translates page-navigation intents (next, previous, first page, page size
change) into the opaque cursor the next query needs.  Cursors are cached per
page index so moving backwards reuses the cursor a page was first fetched
with instead of re-scanning from page 0.

A controller belongs to a single filter set: whoever changes the filters must
call :meth:`CursorPaginator.reset` before querying again.

Typical use::

    paginator = CursorPaginator(page_size=25)
    ticket = paginator.begin_request()
    page = fetch(filters, paginator.page_size, paginator.cursor)
    paginator.record_page_result(page.next_cursor, ticket)
    cursor = paginator.advance_to(paginator.page_index + 1, paginator.page_size)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Cursor = Optional[Any]


class CursorPaginator:
    def __init__(self, page_size: int = 10, on_reset: Optional[Callable[[], None]] = None) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.page_index = 0
        self.page_size = page_size
        self.cursor: Cursor = None
        self.last_observed_cursor: Cursor = None
        self.generation = 0
        self._cursors: Dict[int, Any] = {}
        self._on_reset = on_reset

    def cached_cursor(self, page_index: int) -> Cursor:
        return self._cursors.get(page_index)

    def begin_request(self) -> int:
        """Ticket for the query about to be issued for the current page."""
        return self.generation

    def record_page_result(self, cursor: Cursor, ticket: Optional[int] = None) -> bool:
        """Store the cursor marking the end of the page just fetched.

        Must be called after every successful query, with ``None`` when the
        page came back empty.  Returns False (and changes nothing) when the
        ticket belongs to a navigation that has since been superseded.
        """
        if ticket is not None and ticket != self.generation:
            logger.debug("Dropping stale page result (ticket %s, generation %s)", ticket, self.generation)
            return False
        self.last_observed_cursor = cursor
        return True

    def advance_to(self, page_index: int, page_size: int) -> Cursor:
        """Move to ``(page_index, page_size)`` and return the cursor to query with."""
        if page_index < 0:
            raise ValueError("page_index cannot be negative")
        if page_size < 1:
            raise ValueError("page_size must be at least 1")

        if page_size != self.page_size:
            self._restart(page_size)
        elif page_index == self.page_index + 1:
            if self.last_observed_cursor is None:
                # nothing observed past the current page, so there is no next page to move to
                logger.debug("No cursor observed for page %s; staying on page %s", page_index, self.page_index)
                return self.cursor
            self._cursors[page_index] = self.last_observed_cursor
            self._move(page_index, self.last_observed_cursor)
        elif page_index < self.page_index:
            if page_index == 0:
                self._move(0, None)
            elif page_index in self._cursors:
                self._move(page_index, self._cursors[page_index])
            else:
                logger.warning("No cached cursor for page %s; restarting from the first page", page_index)
                self._restart(page_size)
        elif page_index == 0:
            self._restart(page_size)
        elif page_index > self.page_index + 1:
            # no token lets us jump straight to a later page
            logger.info("Jump from page %s to %s; restarting from the first page", self.page_index, page_index)
            self._restart(page_size)
        return self.cursor

    def reset(self, page_size: Optional[int] = None) -> None:
        """Back to page 0 with an empty cursor cache, e.g. after a filter change."""
        if page_size is not None and page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._restart(page_size or self.page_size)
        if self._on_reset is not None:
            self._on_reset()

    def _move(self, page_index: int, cursor: Cursor) -> None:
        self.page_index = page_index
        self.cursor = cursor
        self.last_observed_cursor = None
        self.generation += 1

    def _restart(self, page_size: int) -> None:
        self._cursors.clear()
        self.page_size = page_size
        self._move(0, None)

    def __repr__(self) -> str:
        return (
            f"<CursorPaginator page={self.page_index} size={self.page_size} "
            f"cached={sorted(self._cursors)}>"
        )
