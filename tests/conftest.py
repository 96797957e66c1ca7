"""
Test configuration and fixtures for search sync tests.

This module provides:
- Test configuration overrides
- Fake SQS clients built from unittest.mock
- In-memory index writer, processor and metrics fixtures
- Sample raw events in every supported shape
"""

import asyncio
import json
import time
import pytest
from typing import Dict, Any, List, Optional
from unittest.mock import Mock

from search_sync.config import (
    AppConfig,
    QueueConfig,
    ProcessorConfig,
    PollingConfig,
    LoggingConfig,
    MonitoringConfig,
    Environment,
)
from search_sync.consumer import EventTransformer
from search_sync.monitoring import MetricsCollector
from search_sync.sync import ChangeProcessor, InMemoryIndexWriter

TEST_QUEUE_URL = "https://sqs.us-west-2.amazonaws.com/123456789012/search-sync-test"


def build_config(queue_url: Optional[str] = TEST_QUEUE_URL, **polling_overrides) -> AppConfig:
    """Build an AppConfig without reading the environment."""
    polling = {"interval_ms": 10, "wait_time_seconds": 0}
    polling.update(polling_overrides)

    return AppConfig(
        environment=Environment.DEVELOPMENT,
        debug=True,
        aws=QueueConfig(region="us-west-2", queue_url=queue_url),
        processor=ProcessorConfig(),
        polling=PollingConfig(**polling),
        logging=LoggingConfig(level="WARNING"),
        monitoring=MonitoringConfig(enabled=False),
    )


@pytest.fixture
def test_config() -> AppConfig:
    """Configuration with a queue URL and fast polling."""
    return build_config()


@pytest.fixture
def no_queue_config() -> AppConfig:
    """Configuration without a queue: manual processing only."""
    return build_config(queue_url=None)


@pytest.fixture
def index_writer() -> InMemoryIndexWriter:
    return InMemoryIndexWriter()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def transformer() -> EventTransformer:
    return EventTransformer()


@pytest.fixture
def processor(index_writer) -> ChangeProcessor:
    return ChangeProcessor(index_writer)


def _delete_all(QueueUrl, Entries):
    return {"Successful": [{"Id": entry["Id"]} for entry in Entries], "Failed": []}


@pytest.fixture
def mock_sqs_client() -> Mock:
    """Fake boto3 SQS client; every delete succeeds and the queue is empty."""
    client = Mock()
    client.receive_message.return_value = {"Messages": []}
    client.delete_message_batch.side_effect = _delete_all
    client.get_queue_attributes.return_value = {
        "Attributes": {
            "ApproximateNumberOfMessages": "4",
            "ApproximateNumberOfMessagesNotVisible": "2",
            "ApproximateNumberOfMessagesDelayed": "0",
        }
    }
    return client


def make_sqs_message(
    body: Any,
    message_id: str = "msg-1",
    retry_count: Optional[int] = None,
    receive_count: int = 1,
) -> Dict[str, Any]:
    """Build a queue message as returned by receive_message."""
    message = {
        "MessageId": message_id,
        "ReceiptHandle": f"receipt-{message_id}",
        "Body": body if isinstance(body, str) else json.dumps(body),
        "Attributes": {"ApproximateReceiveCount": str(receive_count)},
        "MessageAttributes": {},
    }
    if retry_count is not None:
        message["MessageAttributes"]["retryCount"] = {
            "DataType": "Number",
            "StringValue": str(retry_count),
        }
    return message


def deleted_receipts(client: Mock) -> List[str]:
    """Receipt handles passed to delete_message_batch across all calls."""
    return [
        entry["ReceiptHandle"]
        for call in client.delete_message_batch.call_args_list
        for entry in call.kwargs["Entries"]
    ]


def now_ms() -> int:
    return int(time.time() * 1000)


@pytest.fixture
def sample_claim_event() -> Dict[str, Any]:
    """Canonical envelope for a claim insert."""
    return {
        "eventType": "INSERT",
        "documentType": "claims",
        "timestamp": now_ms(),
        "data": {"claimId": "c-1", "claimStatus": "pending"},
        "metadata": {"source": "claims-service", "correlationId": "corr-1"},
    }


@pytest.fixture
def sample_stream_record() -> Dict[str, Any]:
    """Key-value change-stream record for a software component update."""
    return {
        "eventID": "stream-evt-1",
        "eventName": "MODIFY",
        "eventSourceARN": "arn:aws:dynamodb:us-west-2:123456789012:table/software_components/stream/2024-01-01",
        "dynamodb": {
            "ApproximateCreationDateTime": int(time.time()),
            "Keys": {"id": {"S": "1"}},
            "NewImage": {
                "id": {"S": "1"},
                "count": {"N": "5"},
                "name": {"S": "Redis"},
            },
            "OldImage": {
                "id": {"S": "1"},
                "count": {"N": "4"},
                "name": {"S": "Redis"},
            },
        },
    }


@pytest.fixture
def sample_webhook() -> Dict[str, Any]:
    """Generic webhook carrying a location."""
    return {
        "action": "create",
        "ts": time.time(),
        "payload": {
            "id": "loc-1",
            "postalCode": "94107",
            "postalCodeCenterPoint": "37.77,-122.39",
        },
    }


@pytest.fixture
def sample_trigger_delete() -> Dict[str, Any]:
    """Database trigger payload for a claim delete."""
    return {
        "operation": "DELETE",
        "table": "public.warranty_claims",
        "old": {"claimId": "c-9", "claimStatus": "closed"},
        "new": None,
        "timestamp": now_ms(),
    }


@pytest.fixture
def sample_document_stream() -> Dict[str, Any]:
    """Document-store change-stream insert."""
    return {
        "_id": {"_data": "resume-token-1"},
        "operationType": "insert",
        "ns": {"db": "catalog", "coll": "locations"},
        "documentKey": {"_id": "loc-7"},
        "fullDocument": {"_id": "loc-7", "postalCode": "10001"},
    }


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


@pytest.fixture
def sqs_message():
    """Factory for queue messages."""
    return make_sqs_message


@pytest.fixture
def deleted():
    """Receipt handles deleted through a mock SQS client."""
    return deleted_receipts


async def _wait_for_condition(condition, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Wait until ``condition()`` is truthy or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if condition():
            return True
        await asyncio.sleep(interval)
    return bool(condition())


@pytest.fixture
def wait_for_condition():
    return _wait_for_condition
