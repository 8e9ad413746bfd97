"""Crawler contract shared by all event sources."""
from abc import ABC, abstractmethod
from enum import Enum
from typing import List

from processor.models import EventRecord


class InvalidItemPolicy(Enum):
    """What a crawler does with a source item it cannot map."""
    SKIP = 'skip'
    RAISE = 'raise'


class InvalidSourceItemError(ValueError):
    """Raised for an unmappable source item under InvalidItemPolicy.RAISE."""


class Crawler(ABC):
    """
    Source of event listings.

    Implementations fetch from one external source and return every event
    found for their configured time window, already mapped to EventRecord.
    Fetch errors propagate to the caller.
    """

    name = 'base'

    @abstractmethod
    async def crawl(self) -> List[EventRecord]:
        raise NotImplementedError
