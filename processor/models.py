"""Data models for event ingestion and listing."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence

from processor.fingerprint import compute_fingerprint

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def normalize_datetime(value: datetime) -> datetime:
    """Convert to UTC (naive values are taken as UTC) at millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def format_datetime(value: datetime) -> str:
    """Render a datetime as ISO 8601 UTC with milliseconds, e.g. 2021-03-01T00:00:00.000Z."""
    value = normalize_datetime(value)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f"{value.microsecond // 1000:03d}Z"


def parse_datetime(value: str) -> datetime:
    """Parse an ISO 8601 timestamp into a normalized UTC datetime."""
    return normalize_datetime(datetime.fromisoformat(value.strip()))


def epoch_millis(value: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    delta = normalize_datetime(value) - EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_millis(millis: int) -> datetime:
    """Inverse of epoch_millis."""
    return EPOCH + timedelta(milliseconds=millis)


def freeze(value: Any) -> Any:
    """Read-only copy of nested JSON-like data: mappings become proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(val) for key, val in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(val) for val in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze, giving plain dicts and lists for serialization."""
    if isinstance(value, Mapping):
        return {key: thaw(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(val) for val in value]
    return value


@dataclass(frozen=True)
class EventImage:
    """Image attached to an event listing."""
    url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'url': self.url, 'width': self.width, 'height': self.height}


@dataclass(frozen=True)
class EventRecord:
    """
    Canonical event produced by a crawler.

    The fingerprint is derived from every content field when the record is
    created. event_id is assigned by the store and is not part of the content.
    """
    start_date: datetime
    end_date: datetime
    title: str
    description: str = ''
    event_schedule: Optional[Mapping[str, Any]] = None
    extra: Mapping[str, Any] = field(default_factory=dict)
    image: Optional[EventImage] = None
    location: str = ''
    location_coord: Optional[Sequence[float]] = None
    event_id: Optional[str] = field(default=None, compare=False)
    fingerprint: str = field(init=False, compare=False)

    def __post_init__(self):
        if not self.title or not self.title.strip():
            raise ValueError("Event title must not be empty")
        object.__setattr__(self, 'start_date', normalize_datetime(self.start_date))
        object.__setattr__(self, 'end_date', normalize_datetime(self.end_date))
        # Nested content is copied read-only so the fingerprint stays valid
        object.__setattr__(self, 'event_schedule', freeze(self.event_schedule))
        object.__setattr__(self, 'extra', freeze(self.extra))
        object.__setattr__(self, 'location_coord', freeze(self.location_coord))
        object.__setattr__(self, 'fingerprint', compute_fingerprint(self.to_api_dict()))

    def to_api_dict(self) -> Dict[str, Any]:
        """
        Serialize the record's content in API shape.

        Identity and fingerprint are internal and never included.

        Returns:
            JSON-compatible dictionary with camelCase keys
        """
        return {
            'startDate': format_datetime(self.start_date),
            'endDate': format_datetime(self.end_date),
            'title': self.title,
            'description': self.description,
            'eventSchedule': thaw(self.event_schedule),
            'extra': thaw(self.extra),
            'image': self.image.to_dict() if self.image else None,
            'location': self.location,
            'locationCoord': thaw(self.location_coord)
        }

    @property
    def start_millis(self) -> int:
        return epoch_millis(self.start_date)
