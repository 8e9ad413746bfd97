"""Shared fixtures for the test suite."""
from datetime import datetime, timezone

import pytest
from moto import mock_aws

from processor.models import EventImage, EventRecord
from storage.dynamodb_manager import DynamoDBManager, clear_store_cache


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    """Fake AWS credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    clear_store_cache()
    yield
    clear_store_cache()


@pytest.fixture
def event_store():
    """DynamoDBManager backed by a mock events table."""
    with mock_aws():
        store = DynamoDBManager('test-events')
        store.create_table()
        yield store


def make_record(day: int = 1, hour: int = 0, title: str = 'Test Event', **kwargs) -> EventRecord:
    """Build an EventRecord starting on the given day of March 2021."""
    start = datetime(2021, 3, day, hour, tzinfo=timezone.utc)
    fields = {
        'start_date': start,
        'end_date': start.replace(hour=hour + 1) if hour < 23 else start,
        'title': title,
        'description': 'A test event',
        'extra': {'note': 'bring water'},
        'image': EventImage(url='https://example.com/a.jpg', width=640, height=480),
        'location': 'Mercer County Park, NJ',
        'location_coord': [-74.6, 40.26]
    }
    fields.update(kwargs)
    return EventRecord(**fields)


@pytest.fixture
def record_factory():
    return make_record
