"""
Unit tests for the change processor.

Tests cover:
- Grouped writes per document kind and event kind
- Partial failure isolation between groups
- Deletes, bulk upserts and bulk deletes
- Document shaping per collection
- Health tracking
"""

import asyncio
import time

import pytest

from search_sync.sync import (
    ChangeEvent,
    ChangeProcessor,
    DocumentKind,
    EventKind,
    EventOrigin,
    IndexWriteError,
    IndexWriter,
    InMemoryIndexWriter,
)
from search_sync.sync.processor import content_hash_id, parse_coordinates, slugify


def make_event(event_kind, document_kind, payload, event_id="evt-1"):
    return ChangeEvent(
        id=event_id,
        event_kind=event_kind,
        document_kind=document_kind,
        occurred_at_ms=int(time.time() * 1000),
        payload=payload,
        origin=EventOrigin(source="test"),
    )


class FailingIndexWriter(InMemoryIndexWriter):
    """In-memory writer that rejects every write to one collection."""

    def __init__(self, failing_collection):
        super().__init__()
        self.failing_collection = failing_collection
        self.index_calls = []

    async def index_documents(self, collection, documents):
        self.index_calls.append((collection, len(documents)))
        if collection == self.failing_collection:
            raise IndexWriteError(f"{collection} is read-only")
        await super().index_documents(collection, documents)

    async def create_collection(self, schema):
        if schema["name"] == self.failing_collection:
            raise IndexWriteError("cannot create")
        await super().create_collection(schema)


class UpsertOnlyIndexWriter(IndexWriter):
    """Writer without any delete capability."""

    def __init__(self):
        self.documents = []

    async def create_collection(self, schema):
        pass

    async def index_documents(self, collection, documents):
        self.documents.extend(documents)


class TestHelpers:
    """Test cases for document shaping helpers."""

    def test_slugify(self):
        assert slugify("Apache  Kafka") == "apache_kafka"
        assert slugify("  Redis ") == "redis"
        assert slugify("") is None
        assert slugify(None) is None

    def test_parse_coordinates(self):
        assert parse_coordinates("37.77, -122.39") == [37.77, -122.39]
        assert parse_coordinates("not,coords") is None
        assert parse_coordinates("1,2,3") is None
        assert parse_coordinates(None) is None

    def test_content_hash_id_is_deterministic(self):
        first = content_hash_id(DocumentKind.CLAIMS, {"b": 2, "a": 1})
        second = content_hash_id(DocumentKind.CLAIMS, {"a": 1, "b": 2})
        assert first == second
        assert first.startswith("claims_")
        assert len(first) == len("claims_") + 16


class TestTransformDocument:
    """Test cases for per-collection document shaping."""

    def test_software_stack_document(self, processor):
        document = processor.transform_document({"name": "Apache Kafka"}, DocumentKind.SOFTWARE_STACK)

        assert document["id"] == "apache_kafka"
        assert document["popularity_score"] == 0
        assert document["document_type"] == "software_stack"

    def test_software_stack_keeps_explicit_id(self, processor):
        document = processor.transform_document(
            {"id": "kafka", "name": "Apache Kafka", "popularity_score": 90},
            DocumentKind.SOFTWARE_STACK,
        )
        assert document["id"] == "kafka"
        assert document["popularity_score"] == 90

    def test_claims_document(self, processor):
        document = processor.transform_document(
            {"claimId": "c-1", "id": "other", "lastModifiedDate": "2024-01-01T00:00:00Z"},
            DocumentKind.CLAIMS,
        )

        assert document["id"] == "c-1"
        assert document["created_at"] == 1704067200000

    def test_locations_document(self, processor):
        document = processor.transform_document(
            {"id": "94107", "postalCodeCenterPoint": "37.77,-122.39"},
            DocumentKind.LOCATIONS,
        )

        assert document["id"] == "94107"
        assert document["location"] == [37.77, -122.39]
        assert isinstance(document["created_at"], int)

    def test_fallback_id_is_content_hash(self, processor):
        data = {"claimStatus": "pending"}
        first = processor.transform_document(data, DocumentKind.CLAIMS)
        second = processor.transform_document(dict(data), DocumentKind.CLAIMS)

        assert first["id"].startswith("claims_")
        assert first["id"] == second["id"]

    def test_non_mapping_rejected(self, processor):
        with pytest.raises(ValueError):
            processor.transform_document("text", DocumentKind.CLAIMS)


class TestApplyBatch:
    """Test cases for ChangeProcessor.apply_batch."""

    async def test_claim_insert(self, processor, index_writer):
        event = make_event(EventKind.INSERT, DocumentKind.CLAIMS, {"claimId": "c-1", "claimStatus": "pending"})

        result = await processor.apply_batch([event])

        assert result.success
        assert result.processed == 1
        document = index_writer.get_document("claims", "c-1")
        assert document["claimStatus"] == "pending"

    @pytest.mark.parametrize("document_kind,payload,collection,document_id", [
        (DocumentKind.CLAIMS, {"claimId": "c-1", "claimStatus": "pending"}, "claims", "c-1"),
        (DocumentKind.LOCATIONS, {"id": "94107", "postalCode": "94107"}, "locations", "94107"),
    ])
    async def test_replayed_upsert_is_idempotent(
        self, processor, index_writer, document_kind, payload, collection, document_id
    ):
        event = make_event(EventKind.UPDATE, document_kind, payload)

        await processor.apply_one(event)
        first = dict(index_writer.get_document(collection, document_id))
        await asyncio.sleep(0.01)
        await processor.apply_one(event)

        assert index_writer.get_document(collection, document_id) == first
        assert first["created_at"] == event.occurred_at_ms
        assert index_writer.count(collection) == 1

    def test_created_at_prefers_last_modified(self, processor):
        document = processor.transform_document(
            {"claimId": "c-1", "lastModifiedDate": "2024-01-01T00:00:00Z"},
            DocumentKind.CLAIMS,
            occurred_at_ms=1,
        )
        assert document["created_at"] == 1704067200000

    async def test_empty_batch(self, processor):
        result = await processor.apply_batch([])
        assert result.processed == 0
        assert result.failed == 0

    async def test_groups_share_one_write(self):
        writer = FailingIndexWriter(failing_collection=None)
        processor = ChangeProcessor(writer)
        events = [
            make_event(EventKind.INSERT, DocumentKind.CLAIMS, {"claimId": f"c-{i}"}, event_id=f"evt-{i}")
            for i in range(3)
        ]
        events.append(make_event(EventKind.UPDATE, DocumentKind.LOCATIONS, {"id": "94107"}, event_id="evt-loc"))

        result = await processor.apply_batch(events)

        assert result.processed == 4
        assert sorted(writer.index_calls) == [("claims", 3), ("locations", 1)]

    async def test_failed_group_does_not_abort_batch(self):
        writer = FailingIndexWriter(failing_collection="claims")
        processor = ChangeProcessor(writer)
        events = [
            make_event(EventKind.INSERT, DocumentKind.CLAIMS, {"claimId": "c-1"}, event_id="evt-1"),
            make_event(EventKind.INSERT, DocumentKind.CLAIMS, {"claimId": "c-2"}, event_id="evt-2"),
            make_event(EventKind.INSERT, DocumentKind.LOCATIONS, {"id": "94107"}, event_id="evt-3"),
        ]

        result = await processor.apply_batch(events)

        assert result.processed == 1
        assert result.failed == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Batch processing failed for group claims:INSERT")
        assert writer.get_document("locations", "94107") is not None

    async def test_unresolved_kind_counts_as_failed(self, processor):
        event = make_event(EventKind.INSERT, None, {"id": "x"})

        result = await processor.apply_batch([event])

        assert result.failed == 1
        assert result.processed == 0

    async def test_delete(self, processor, index_writer):
        await processor.apply_one(make_event(EventKind.INSERT, DocumentKind.CLAIMS, {"claimId": "c-1"}))
        assert index_writer.count("claims") == 1

        result = await processor.apply_batch([make_event(EventKind.DELETE, DocumentKind.CLAIMS, "c-1")])

        assert result.processed == 1
        assert index_writer.count("claims") == 0

    async def test_delete_without_id_fails_group(self, processor):
        result = await processor.apply_batch([make_event(EventKind.DELETE, DocumentKind.CLAIMS, {"claimStatus": "x"})])

        assert result.failed == 1
        assert "missing document ID" in result.errors[0]

    async def test_bulk_update_and_bulk_delete(self, processor, index_writer):
        documents = [{"name": "Redis"}, {"name": "Apache Kafka"}, {"id": "pg", "name": "Postgres"}]
        result = await processor.apply_batch([
            make_event(EventKind.BULK_UPDATE, DocumentKind.SOFTWARE_STACK, {"documents": documents})
        ])

        assert result.processed == 1
        assert index_writer.count("software_stack_components") == 3
        assert index_writer.get_document("software_stack_components", "apache_kafka") is not None

        result = await processor.apply_batch([
            make_event(EventKind.BULK_DELETE, DocumentKind.SOFTWARE_STACK, {"documentIds": ["redis", {"id": "pg"}]})
        ])

        assert result.processed == 1
        assert index_writer.count("software_stack_components") == 1

    async def test_delete_unsupported_by_writer(self):
        processor = ChangeProcessor(UpsertOnlyIndexWriter())

        result = await processor.apply_batch([make_event(EventKind.DELETE, DocumentKind.CLAIMS, "c-1")])

        assert result.success
        assert result.processed == 1

    async def test_custom_collection_names(self, index_writer):
        processor = ChangeProcessor(index_writer, collection_names={"claims": "claims_v2"})

        await processor.apply_one(make_event(EventKind.INSERT, DocumentKind.CLAIMS, {"claimId": "c-1"}))

        assert index_writer.get_document("claims_v2", "c-1") is not None
        assert processor.get_collection_name(DocumentKind.LOCATIONS) == "locations"


class TestProcessorHealth:
    """Test cases for processor health tracking."""

    async def test_status_after_success(self, processor):
        await processor.apply_one(make_event(EventKind.INSERT, DocumentKind.CLAIMS, {"claimId": "c-1"}))

        status = processor.get_status()

        assert status["isHealthy"]
        assert status["totalProcessed"] == 1
        assert status["errorRate"] == 0.0
        assert status["lastProcessed"] is not None

    async def test_unhealthy_after_threshold(self):
        processor = ChangeProcessor(FailingIndexWriter(failing_collection="claims"), failure_threshold=2)

        await processor.apply_batch([
            make_event(EventKind.INSERT, DocumentKind.CLAIMS, {"claimId": "c-1"}, event_id="evt-1"),
            make_event(EventKind.INSERT, DocumentKind.CLAIMS, {"claimId": "c-2"}, event_id="evt-2"),
        ])

        assert not processor.is_healthy
        assert processor.get_status()["errorCount"] == 2

        processor.reset_health()
        assert processor.is_healthy


class TestEnsureCollections:
    """Test cases for collection creation."""

    async def test_creates_all_collections(self, processor, index_writer):
        created = await processor.ensure_collections()

        assert sorted(created) == ["claims", "locations", "software_stack_components"]
        assert index_writer.schemas["claims"]["default_sorting_field"] == "created_at"

    async def test_idempotent(self, processor, index_writer):
        await processor.ensure_collections()
        await processor.ensure_collections()
        assert len(index_writer.collections) == 3

    async def test_failures_are_skipped(self):
        writer = FailingIndexWriter(failing_collection="locations")
        processor = ChangeProcessor(writer)

        created = await processor.ensure_collections()

        assert "locations" not in created
        assert len(created) == 2
