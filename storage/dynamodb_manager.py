"""DynamoDB manager for event storage operations."""
import json
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.models import EventImage, EventRecord, format_datetime, parse_datetime, thaw
from processor.pagination import PageQuery, build_sort_key

logger = logging.getLogger(__name__)

DUPLICATE_KEY = 'DuplicateKey'
LISTING_PARTITION = 'events'
START_DATE_INDEX = 'start-date-index'


@dataclass
class WriteError:
    """Failure to write a single record of a bulk insert."""
    index: int
    code: str
    message: str

    @property
    def is_duplicate(self) -> bool:
        return self.code == DUPLICATE_KEY


class BulkInsertError(Exception):
    """Raised when one or more records of a bulk insert were not written."""

    def __init__(self, inserted_count: int, write_errors: List[WriteError]):
        self.inserted_count = inserted_count
        self.write_errors = write_errors
        super().__init__(
            f"{len(write_errors)} of {inserted_count + len(write_errors)} "
            f"records failed to insert"
        )

    @property
    def only_duplicates(self) -> bool:
        return all(error.is_duplicate for error in self.write_errors)


class DynamoDBManager:
    """
    Event store backed by a DynamoDB table.

    The table's partition key is the event fingerprint, which makes it the
    uniqueness constraint for ingestion. Listing goes through a global
    secondary index whose sort key orders events by start date then id.
    """

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region, defaults to the boto3 environment
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    def create_table(self):
        """Create the events table and its listing index."""
        logger.info(f"Creating DynamoDB table: {self.table_name}")
        table = self.dynamodb.create_table(
            TableName=self.table_name,
            KeySchema=[
                {'AttributeName': 'fingerprint', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'fingerprint', 'AttributeType': 'S'},
                {'AttributeName': 'listing', 'AttributeType': 'S'},
                {'AttributeName': 'sort_key', 'AttributeType': 'S'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': START_DATE_INDEX,
                    'KeySchema': [
                        {'AttributeName': 'listing', 'KeyType': 'HASH'},
                        {'AttributeName': 'sort_key', 'KeyType': 'RANGE'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        table.wait_until_exists()
        self.table = table
        return table

    def insert_many(self, records: Sequence[EventRecord], ordered: bool = True) -> int:
        """
        Insert events, refusing any whose fingerprint is already stored.

        Each record gets a new event id. With ordered=False every record is
        attempted regardless of earlier failures; with ordered=True the first
        failure stops the batch.

        Args:
            records: EventRecord objects to insert
            ordered: Stop at the first failed write

        Returns:
            Count of inserted events

        Raises:
            BulkInsertError: If any record was not written
        """
        if not records:
            return 0

        logger.info(f"Inserting {len(records)} events into DynamoDB")
        inserted_count = 0
        write_errors = []

        for index, record in enumerate(records):
            try:
                item = self._record_to_item(record, event_id=uuid.uuid4().hex)
                self.table.put_item(
                    Item=item,
                    ConditionExpression='attribute_not_exists(fingerprint)'
                )
                inserted_count += 1

            except ClientError as e:
                code = e.response['Error']['Code']
                if code == 'ConditionalCheckFailedException':
                    write_errors.append(WriteError(
                        index=index,
                        code=DUPLICATE_KEY,
                        message=f"Duplicate fingerprint {record.fingerprint}"
                    ))
                else:
                    logger.error(f"Error writing event {index}: {e}")
                    write_errors.append(WriteError(index=index, code=code, message=str(e)))

            except ValueError as e:
                logger.error(f"Event {index} cannot be stored: {e}")
                write_errors.append(WriteError(index=index, code='InvalidRecord', message=str(e)))

            if write_errors and ordered:
                break

        logger.info(
            f"Insert complete: {inserted_count} inserted, {len(write_errors)} failed"
        )
        if write_errors:
            raise BulkInsertError(inserted_count, write_errors)
        return inserted_count

    def find(self, query: PageQuery) -> List[EventRecord]:
        """
        Read one page of events in start date / id descending order.

        Args:
            query: PageQuery from CursorPaginator

        Returns:
            Up to query.limit EventRecord objects
        """
        key_condition = Key('listing').eq(LISTING_PARTITION)
        if query.filter is not None:
            key_condition = key_condition & Key('sort_key').lt(query.filter.sort_key)

        params = {
            'IndexName': START_DATE_INDEX,
            'KeyConditionExpression': key_condition,
            'ScanIndexForward': False,
            'Limit': query.limit
        }

        try:
            response = self.table.query(**params)
            items = response.get('Items', [])

            # A response is capped at 1MB, keep reading until the page is full
            while 'LastEvaluatedKey' in response and len(items) < query.limit:
                response = self.table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **dict(params, Limit=query.limit - len(items))
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error querying DynamoDB table: {e}")
            raise

        return [self._item_to_record(item) for item in items[:query.limit]]

    def count(self) -> int:
        """Count stored events."""
        response = self.table.scan(Select='COUNT')
        total = response['Count']

        while 'LastEvaluatedKey' in response:
            response = self.table.scan(
                Select='COUNT',
                ExclusiveStartKey=response['LastEvaluatedKey']
            )
            total += response['Count']

        return total

    def _record_to_item(self, record: EventRecord, event_id: str) -> dict:
        """
        Convert EventRecord object to DynamoDB item.

        Args:
            record: EventRecord object
            event_id: Identity assigned to the stored event

        Returns:
            DynamoDB item dictionary
        """
        item = {
            'fingerprint': record.fingerprint,
            'event_id': event_id,
            'listing': LISTING_PARTITION,
            'sort_key': build_sort_key(record.start_millis, event_id),
            'start_date': format_datetime(record.start_date),
            'end_date': format_datetime(record.end_date),
            'title': record.title,
            'description': record.description,
            'location': record.location
        }

        # Add optional fields if present
        if record.event_schedule is not None:
            item['event_schedule'] = _to_dynamodb(thaw(record.event_schedule))
        if record.extra:
            item['extra'] = _to_dynamodb(thaw(record.extra))
        if record.image is not None:
            item['image'] = _to_dynamodb(record.image.to_dict())
        if record.location_coord is not None:
            item['location_coord'] = _to_dynamodb(thaw(record.location_coord))

        return item

    def _item_to_record(self, item: dict) -> EventRecord:
        """
        Convert DynamoDB item to EventRecord object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            EventRecord carrying its stored event_id
        """
        image = _from_dynamodb(item.get('image'))
        coord = item.get('location_coord')
        return EventRecord(
            event_id=item['event_id'],
            start_date=parse_datetime(item['start_date']),
            end_date=parse_datetime(item['end_date']),
            title=item['title'],
            description=item.get('description', ''),
            event_schedule=_from_dynamodb(item.get('event_schedule')),
            extra=_from_dynamodb(item.get('extra', {})),
            image=EventImage(**image) if image is not None else None,
            location=item.get('location', ''),
            location_coord=[float(value) for value in coord] if coord is not None else None
        )


def _to_dynamodb(value: Any) -> Any:
    """DynamoDB rejects floats, so numbers are stored as Decimal."""
    return json.loads(json.dumps(value), parse_float=Decimal)


def _from_dynamodb(value: Any) -> Any:
    """
    Convert stored values back to plain Python.

    DynamoDB numbers carry no int/float distinction: integral values come back
    as int and the rest as float. Coordinates are always floats, so callers
    convert those explicitly.
    """
    if isinstance(value, Decimal):
        return int(value) if value.as_tuple().exponent >= 0 else float(value)
    if isinstance(value, dict):
        return {key: _from_dynamodb(val) for key, val in value.items()}
    if isinstance(value, list):
        return [_from_dynamodb(val) for val in value]
    return value


_store_cache: Dict[str, DynamoDBManager] = {}


def get_event_store(table_name: str) -> DynamoDBManager:
    """
    Return the process-wide store for a table, creating it on first use.

    Warm Lambda invocations reuse the same DynamoDB resource.
    """
    store = _store_cache.get(table_name)
    if store is None:
        logger.info(f"Connecting to DynamoDB table: {table_name}")
        store = DynamoDBManager(table_name=table_name)
        _store_cache[table_name] = store
    else:
        logger.debug(f"Using cached DynamoDB table: {table_name}")
    return store


def clear_store_cache() -> None:
    """Drop cached stores; the next get_event_store call reconnects."""
    _store_cache.clear()
