"""AWS Lambda handlers for the event listings service."""
import asyncio
import json
import logging
import os
import time
from typing import Dict, Any

from processor.ingestion import IngestionPipeline
from processor.list_query import CORS_HEADERS, ListQueryHandler
from scraper.base import InvalidItemPolicy
from scraper.mercer_county_parks import MercerCountyParkCrawler
from storage.dynamodb_manager import get_event_store

# Attributes every LogRecord carries; anything else came in through extra=
RESERVED_LOG_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including fields passed via extra."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create new handler with JSON formatter
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    # Set log level
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def list_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    API Gateway handler returning one page of events.

    Args:
        event: API Gateway proxy event
        context: Lambda context object

    Returns:
        Proxy response with the page as JSON and the next cursor header
    """
    table_name = os.environ.get('TABLE_NAME', 'events')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    query_params = (event or {}).get('queryStringParameters')
    logger.info("List request received", extra={'query': query_params})

    try:
        store = get_event_store(table_name)
    except Exception as e:
        logger.error(
            f"Failed to connect to event store: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return {
            'statusCode': 500,
            'headers': dict(CORS_HEADERS),
            'body': json.dumps({'message': 'unhandled error', 'error': 'internal_error'})
        }

    return ListQueryHandler(store).handle(query_params)


def crawl_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Scheduled handler that crawls sources and stores new events.

    Args:
        event: EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    table_name = os.environ.get('TABLE_NAME', 'events')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')

    # Initialize logging
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        # Read crawl configuration from environment variables
        months_ahead = int(os.environ.get('MONTHS_AHEAD', '12'))
        timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
        invalid_item_policy = InvalidItemPolicy(
            os.environ.get('INVALID_ITEM_POLICY', 'skip').lower()
        )
        logger.info(
            "Crawl started",
            extra={
                'table_name': table_name,
                'months_ahead': months_ahead,
                'timeout_seconds': timeout_seconds,
                'invalid_item_policy': invalid_item_policy.value
            }
        )

        crawlers = [
            MercerCountyParkCrawler(
                months_ahead=months_ahead,
                timeout=timeout_seconds,
                invalid_item_policy=invalid_item_policy
            )
        ]
        pipeline = IngestionPipeline(get_event_store(table_name))
        accepted = asyncio.run(pipeline.run(crawlers))

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Crawl failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Crawl failed',
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    duration = time.time() - start_time
    logger.info(
        "Crawl completed successfully",
        extra={
            'duration_seconds': round(duration, 2),
            'events_accepted': accepted
        }
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Crawl completed successfully',
            'statistics': {
                'events_accepted': accepted,
                'duration_seconds': round(duration, 2)
            }
        })
    }
