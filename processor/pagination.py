"""Keyset (cursor) pagination over events sorted by start date."""
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple

from processor.models import EventRecord, epoch_millis, from_epoch_millis

logger = logging.getLogger(__name__)

DESCENDING = -1

EVENT_ID_PATTERN = re.compile(r'[0-9a-f]{32}')
MILLIS_PATTERN = re.compile(r'[0-9]{1,13}')
SORT_KEY_MILLIS_WIDTH = 13


class InvalidCursorError(ValueError):
    """Raised when a pagination cursor cannot be parsed."""


def build_sort_key(start_millis: int, event_id: str) -> str:
    """
    Composite key whose lexicographic order equals (start date, id) order.

    Millis are zero padded to a fixed width and ids are fixed width hex, so
    comparing two keys as strings compares the date first and the id second.
    """
    if start_millis < 0 or start_millis >= 10 ** SORT_KEY_MILLIS_WIDTH:
        raise ValueError(f"Start date out of sortable range: {start_millis}")
    return f"{start_millis:0{SORT_KEY_MILLIS_WIDTH}d}_{event_id}"


@dataclass(frozen=True)
class KeysetFilter:
    """Selects records positioned strictly after a cursor in descending order."""
    start_date: datetime
    event_id: str

    @property
    def start_millis(self) -> int:
        return epoch_millis(self.start_date)

    @property
    def sort_key(self) -> str:
        return build_sort_key(self.start_millis, self.event_id)

    def matches(self, start_millis: int, event_id: str) -> bool:
        """startDate < cursorDate OR (startDate == cursorDate AND id < cursorId)."""
        if start_millis < self.start_millis:
            return True
        return start_millis == self.start_millis and event_id < self.event_id


@dataclass(frozen=True)
class PageQuery:
    """Filter, sort and limit for one page of events."""
    filter: Optional[KeysetFilter]
    sort: Tuple[Tuple[str, int], ...]
    limit: int


class CursorPaginator:
    """Builds page queries from opaque cursors and derives the next cursor."""

    DEFAULT_LIMIT = 20
    MIN_LIMIT = 1
    MAX_LIMIT = 100
    SORT_ORDER = (('start_date', DESCENDING), ('event_id', DESCENDING))

    def build_query(self, cursor: Optional[str] = None, limit: Optional[str] = None) -> PageQuery:
        """
        Build the query for the page following a cursor.

        Args:
            cursor: Cursor from a previous page, or None for the first page
            limit: Requested page size as received from the caller

        Returns:
            PageQuery with the keyset filter, fixed sort order and clamped limit

        Raises:
            InvalidCursorError: If the cursor is malformed
        """
        keyset_filter = self.parse_cursor(cursor) if cursor else None
        logger.debug(f"Building page query (cursor={cursor!r}, limit={limit!r})")
        return PageQuery(
            filter=keyset_filter,
            sort=self.SORT_ORDER,
            limit=self.effective_limit(limit)
        )

    def effective_limit(self, limit) -> int:
        """
        Clamp a requested page size into [MIN_LIMIT, MAX_LIMIT].

        Missing or non-numeric input yields DEFAULT_LIMIT.
        """
        if limit is None:
            return self.DEFAULT_LIMIT

        try:
            value = float(str(limit).strip())
        except ValueError:
            return self.DEFAULT_LIMIT

        if not math.isfinite(value):
            return self.DEFAULT_LIMIT

        return min(max(self.MIN_LIMIT, int(value)), self.MAX_LIMIT)

    def parse_cursor(self, cursor: str) -> KeysetFilter:
        """
        Parse a cursor of the form <epoch millis>_<event id>.

        Raises:
            InvalidCursorError: If either half is missing or unparsable
        """
        parts = cursor.split('_')
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise InvalidCursorError(f"Malformed cursor: {cursor!r}")

        millis_text, event_id = parts
        if not MILLIS_PATTERN.fullmatch(millis_text):
            raise InvalidCursorError(f"Bad start date in cursor: {millis_text!r}")
        if not EVENT_ID_PATTERN.fullmatch(event_id):
            raise InvalidCursorError(f"Bad id in cursor: {event_id!r}")

        return KeysetFilter(start_date=from_epoch_millis(int(millis_text)), event_id=event_id)

    def next_cursor(self, page: Sequence[EventRecord]) -> Optional[str]:
        """
        Cursor pointing after the last record of a page.

        Returns:
            Cursor string, or None when the page is empty
        """
        if not page:
            return None

        last_item = page[-1]
        if last_item.event_id is None:
            raise ValueError("Cannot build a cursor from an unsaved event")
        return f"{last_item.start_millis}_{last_item.event_id}"

