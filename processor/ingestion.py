"""Ingestion of crawled events into the deduplicating store."""
import asyncio
import logging
from typing import Sequence

from scraper.base import Crawler
from storage.dynamodb_manager import BulkInsertError, DynamoDBManager

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Runs crawlers and stores their events, absorbing duplicate content."""

    def __init__(self, store: DynamoDBManager):
        """
        Args:
            store: Event store with a unique fingerprint index
        """
        self.store = store

    async def run(self, crawlers: Sequence[Crawler]) -> int:
        """
        Crawl every source concurrently and insert the merged batch.

        A failing crawler aborts the whole run. Records whose fingerprint is
        already stored are skipped without failing the run.

        Args:
            crawlers: Crawler instances to run

        Returns:
            Count of newly stored events

        Raises:
            BulkInsertError: If any write failed for a reason other than a duplicate
        """
        logger.info(f"Running crawlers: {', '.join(crawler.name for crawler in crawlers)}")
        batches = await asyncio.gather(*(crawler.crawl() for crawler in crawlers))

        records = [record for batch in batches for record in batch]
        if not records:
            logger.info("No events to save")
            return 0

        logger.info(f"Saving {len(records)} events")
        try:
            accepted = self.store.insert_many(records, ordered=False)
        except BulkInsertError as e:
            if not e.only_duplicates:
                raise
            accepted = e.inserted_count
            logger.info(f"Skipped {len(e.write_errors)} duplicate events")

        logger.info(f"Stored {accepted} new events")
        return accepted

