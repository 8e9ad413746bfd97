"""Crawler for the Mercer County Parks (NJ) events calendar."""
import asyncio
import calendar
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from processor.models import EventImage, EventRecord, parse_datetime
from scraper.base import Crawler, InvalidItemPolicy, InvalidSourceItemError

logger = logging.getLogger(__name__)


class MercerCountyParkCrawler(Crawler):
    """Crawler for the Mercer County Parks events-by-date API."""

    name = 'mercer_county_parks'

    BASE_URL = 'https://mercercountyparks.org'
    EVENTS_URL = BASE_URL + '/api/events-by-date/list/'
    LOCATION = 'Mercer County Park, NJ'

    MAX_RETRIES = 3
    RETRY_BASE_DELAY = 1  # seconds

    def __init__(
        self,
        months_ahead: int = 12,
        timeout: int = 30,
        invalid_item_policy: InvalidItemPolicy = InvalidItemPolicy.SKIP,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        now: Optional[datetime] = None
    ):
        """
        Initialize the crawler.

        Args:
            months_ahead: Number of calendar months to fetch, starting with the current one
            timeout: HTTP request timeout in seconds (default: 30)
            invalid_item_policy: Skip or raise on source items that cannot be mapped
            transport: Optional httpx transport, used to stub the source in tests
            now: Reference time for the window, defaults to the current UTC time
        """
        self.months_ahead = months_ahead
        self.timeout = timeout
        self.invalid_item_policy = invalid_item_policy
        self.transport = transport
        self.now = now

    async def crawl(self) -> List[EventRecord]:
        """
        Fetch every event in the configured window.

        One request is issued per calendar month and the months are fetched
        concurrently.

        Returns:
            List of EventRecord objects

        Raises:
            httpx.HTTPError: If a month cannot be fetched after retries
        """
        windows = self.month_windows(self.now or datetime.now(timezone.utc))
        logger.info(f"Fetching events for {len(windows)} months from {self.EVENTS_URL}")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            batches = await asyncio.gather(
                *(self._fetch_window(client, start, end) for start, end in windows)
            )

        records = [record for batch in batches for record in batch]
        logger.info(f"Successfully fetched {len(records)} events")
        return records

    def month_windows(self, reference: datetime) -> List[Tuple[date, date]]:
        """
        First and last day of each month in the window.

        Args:
            reference: Any time within the first month

        Returns:
            List of (start, end) date tuples
        """
        windows = []
        year, month = reference.year, reference.month

        for _ in range(self.months_ahead):
            last_day = calendar.monthrange(year, month)[1]
            windows.append((date(year, month, 1), date(year, month, last_day)))
            month += 1
            if month > 12:
                year, month = year + 1, 1

        return windows

    async def _fetch_window(
        self,
        client: httpx.AsyncClient,
        start_date: date,
        end_date: date
    ) -> List[EventRecord]:
        payload = await self._post_with_retry(client, {
            'start_date': start_date.strftime('%Y-%m-%d'),
            'end_date': end_date.strftime('%Y-%m-%d')
        })

        try:
            events_by_date = payload['results']['events_by_date']
        except (KeyError, TypeError) as e:
            raise ValueError(
                f"Unexpected response for {start_date:%Y-%m}: missing {e}"
            ) from e

        if not isinstance(events_by_date, dict):
            raise ValueError(f"Unexpected response for {start_date:%Y-%m}: events_by_date is not an object")

        items = []
        for day, day_items in events_by_date.items():
            if not isinstance(day_items, list):
                self._reject_item(InvalidSourceItemError(f"Events for {day} are not a list"))
                continue
            items.extend(day_items)
        logger.info(f"Fetched {len(items)} items for {start_date:%Y-%m}")
        return self._map_items(items)

    async def _post_with_retry(self, client: httpx.AsyncClient, body: Dict[str, str]) -> Any:
        """
        POST a window request with exponential backoff.

        Raises:
            httpx.HTTPError: If all retry attempts fail
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                response = await client.post(self.EVENTS_URL, json=body)
                response.raise_for_status()
                return response.json()

            except httpx.HTTPError as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise

    def _map_items(self, items: List[Dict[str, Any]]) -> List[EventRecord]:
        records = []

        for item in items:
            try:
                records.append(self.map_item(item))
            except InvalidSourceItemError as e:
                self._reject_item(e)
            except (KeyError, TypeError, AttributeError, ValueError) as e:
                self._reject_item(InvalidSourceItemError(f"Item could not be mapped: {e!r}"))

        return records

    def _reject_item(self, error: InvalidSourceItemError) -> None:
        if self.invalid_item_policy is InvalidItemPolicy.RAISE:
            raise error
        logger.warning(f"Skipping source item: {error}")

    def map_item(self, obj: Dict[str, Any]) -> EventRecord:
        """
        Map one source item into an EventRecord.

        Missing optional fields get placeholders; a missing title or start
        time makes the item invalid.

        Raises:
            InvalidSourceItemError: If the item cannot be mapped
        """
        if not isinstance(obj, dict):
            raise InvalidSourceItemError(f"Expected an object, got {type(obj).__name__}")

        title = obj.get('title')
        if not isinstance(title, str) or not title.strip():
            raise InvalidSourceItemError("Item missing required field: title")
        title = title.strip()

        start_date = self._parse_required_datetime(obj, 'start_datetime', title)
        end_date = start_date
        if obj.get('end_datetime'):
            end_date = self._parse_required_datetime(obj, 'end_datetime', title)

        note = obj.get('note')
        return EventRecord(
            start_date=start_date,
            end_date=end_date,
            title=title,
            description=obj.get('description') or '',
            event_schedule=self._map_schedule(obj),
            extra={'note': note} if note is not None else {},
            image=self._map_image(obj.get('detail_image')),
            location=self.LOCATION,
            location_coord=self._map_coordinate(obj.get('location_coordinate'))
        )

    def _parse_required_datetime(self, obj: Dict[str, Any], field: str, title: str) -> datetime:
        value = obj.get(field)
        if not isinstance(value, str) or not value.strip():
            raise InvalidSourceItemError(f"Item '{title}' missing required field: {field}")
        try:
            return parse_datetime(value)
        except ValueError as e:
            raise InvalidSourceItemError(f"Item '{title}' has invalid datetime {value!r}") from e

    def _map_schedule(self, obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not obj.get('recurring'):
            return None

        days = obj.get('recurring_days_of_week') or []
        if not isinstance(days, list):
            raise InvalidSourceItemError(
                f"Item '{obj.get('title')}' has invalid recurring_days_of_week {days!r}"
            )
        return {
            'recurring': True,
            'daysOfWeek': sorted(
                day['day_of_week'] for day in days
                if isinstance(day, dict) and isinstance(day.get('day_of_week'), int)
            )
        }

    def _map_image(self, image: Any) -> Optional[EventImage]:
        if not isinstance(image, dict) or not image.get('url'):
            return None
        if not isinstance(image['url'], str):
            raise InvalidSourceItemError(f"Image url must be a string, got {image['url']!r}")

        width, height = image.get('width'), image.get('height')
        return EventImage(
            url=self.BASE_URL + image['url'],
            width=width if isinstance(width, int) else None,
            height=height if isinstance(height, int) else None
        )

    def _map_coordinate(self, coordinate: Any) -> Optional[List[float]]:
        # [longitude, latitude]
        if (
            isinstance(coordinate, list)
            and len(coordinate) == 2
            and all(isinstance(c, (int, float)) and not isinstance(c, bool) for c in coordinate)
        ):
            return [float(c) for c in coordinate]
        return None
