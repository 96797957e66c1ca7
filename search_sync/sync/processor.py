"""
Change processor for the search sync service.

This module provides:
- Grouping of canonical events by document kind and event kind
- One combined index write per group
- Document shaping for each search collection
- Processor health tracking

A group that fails to write is counted as failed as a whole and never
aborts the remaining groups of the batch.
"""

import hashlib
import json
import logging
import re
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..core.logging import LogContextManager, performance_logger
from .events import (
    ChangeEvent,
    DocumentKind,
    EventKind,
    SyncResult,
    now_ms,
    parse_timestamp_ms,
    resolve_document_id,
)
from .index import IndexWriter
from .schemas import COLLECTION_SCHEMAS

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION_NAMES = {
    DocumentKind.SOFTWARE_STACK: "software_stack_components",
    DocumentKind.CLAIMS: "claims",
    DocumentKind.LOCATIONS: "locations",
}


def slugify(name: Any) -> Optional[str]:
    """Lowercase a name and collapse whitespace runs into underscores."""
    if not isinstance(name, str) or not name.strip():
        return None
    return re.sub(r"\s+", "_", name.strip().lower())


def parse_coordinates(center_point: Any) -> Optional[List[float]]:
    """Parse a ``"lat,lng"`` string into ``[lat, lng]``."""
    if not isinstance(center_point, str):
        return None

    parts = [part.strip() for part in center_point.split(",")]
    if len(parts) != 2:
        return None

    try:
        return [float(parts[0]), float(parts[1])]
    except ValueError:
        return None


def content_hash_id(kind: DocumentKind, data: Mapping) -> str:
    """Deterministic id derived from document content."""
    content = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return f"{kind.value}_{hashlib.sha256(content).hexdigest()[:16]}"


class ChangeProcessor:
    """
    Applies canonical change events to the search index.

    The index writer is injected so the processor never depends on a
    concrete search engine client.
    """

    def __init__(
        self,
        index_writer: IndexWriter,
        collection_names: Optional[Mapping[Union[str, DocumentKind], str]] = None,
        failure_threshold: int = 10,
    ):
        self.index_writer = index_writer
        self.failure_threshold = failure_threshold

        self.collection_names: Dict[DocumentKind, str] = dict(DEFAULT_COLLECTION_NAMES)
        for kind, name in (collection_names or {}).items():
            self.collection_names[DocumentKind(kind)] = name

        # Health state
        self.error_count = 0
        self.total_processed = 0
        self.total_failed = 0
        self.last_processed_at: Optional[int] = None

    @property
    def is_healthy(self) -> bool:
        return self.error_count < self.failure_threshold

    def get_collection_name(self, kind: DocumentKind) -> str:
        return self.collection_names[kind]

    async def apply_one(self, event: ChangeEvent) -> bool:
        """Apply a single event; True when it was written."""
        result = await self.apply_batch([event])
        return result.processed == 1 and result.failed == 0

    async def apply_batch(self, events: List[ChangeEvent]) -> SyncResult:
        """
        Apply a batch of events.

        Args:
            events: Canonical, already validated change events

        Returns:
            SyncResult with processed/failed counts and group errors
        """
        start_time = time.perf_counter()
        result = SyncResult()

        if not events:
            return result

        groups: Dict[Tuple[DocumentKind, EventKind], List[ChangeEvent]] = {}
        for event in events:
            if not isinstance(event.document_kind, DocumentKind) or not isinstance(event.event_kind, EventKind):
                result.failed += 1
                result.add_error(f"Event {event.id} has no resolvable document or event type")
                continue
            groups.setdefault((event.document_kind, event.event_kind), []).append(event)

        for (document_kind, event_kind), group in groups.items():
            key = f"{document_kind.value}:{event_kind.value}"
            first = group[0]

            try:
                with LogContextManager(corr_id=first.origin.correlation_id, evt_id=first.id):
                    await self._apply_group(document_kind, event_kind, group)
                result.processed += len(group)

            except Exception as e:
                result.failed += len(group)
                error_msg = f"Batch processing failed for group {key}: {e}"
                result.add_error(error_msg)
                logger.error(error_msg)

        result.duration_ms = (time.perf_counter() - start_time) * 1000
        self._record(result)

        performance_logger.log_batch(
            len(events),
            result.duration_ms,
            success=result.success,
            extra={"perf_groups": len(groups), "perf_failed": result.failed},
        )
        logger.info(
            f"Batch processing completed: {result.processed}/{len(events)} processed, "
            f"{result.failed} failed, duration: {result.duration_ms:.2f}ms"
        )

        return result

    async def _apply_group(
        self,
        document_kind: DocumentKind,
        event_kind: EventKind,
        events: List[ChangeEvent],
    ) -> None:
        collection = self.get_collection_name(document_kind)

        if event_kind in (EventKind.INSERT, EventKind.UPDATE):
            documents = [
                self.transform_document(event.payload, document_kind, event.occurred_at_ms)
                for event in events
            ]
            await self._upsert(collection, documents)

        elif event_kind == EventKind.BULK_UPDATE:
            documents = [
                self.transform_document(document, document_kind, event.occurred_at_ms)
                for event in events
                for document in self._bulk_field(event, "documents")
            ]
            await self._upsert(collection, documents)

        elif event_kind == EventKind.DELETE:
            document_ids = [self._require_id(event.payload, event) for event in events]
            await self._delete(collection, document_ids)

        elif event_kind == EventKind.BULK_DELETE:
            document_ids = [
                self._require_id(document_id, event)
                for event in events
                for document_id in self._bulk_field(event, "documentIds")
            ]
            await self._delete(collection, document_ids)

    async def _upsert(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        if not documents:
            return

        start_time = time.perf_counter()
        success = False
        try:
            await self.index_writer.index_documents(collection, documents)
            success = True
        finally:
            performance_logger.log_index_write(
                "upsert",
                collection,
                len(documents),
                (time.perf_counter() - start_time) * 1000,
                success=success,
            )

    async def _delete(self, collection: str, document_ids: List[str]) -> None:
        if not document_ids:
            return

        delete_many = getattr(self.index_writer, "delete_documents", None)
        delete_one = getattr(self.index_writer, "delete_document", None)

        if not callable(delete_many) and not callable(delete_one):
            logger.warning(
                f"Document deletion not supported by index writer, skipped "
                f"{len(document_ids)} documents in {collection}"
            )
            return

        start_time = time.perf_counter()
        success = False
        try:
            if callable(delete_many):
                await delete_many(collection, document_ids)
            else:
                for document_id in document_ids:
                    await delete_one(collection, document_id)
            success = True
        finally:
            performance_logger.log_index_write(
                "delete",
                collection,
                len(document_ids),
                (time.perf_counter() - start_time) * 1000,
                success=success,
            )

    @staticmethod
    def _bulk_field(event: ChangeEvent, field_name: str) -> List[Any]:
        payload = event.payload
        values = payload.get(field_name) if isinstance(payload, Mapping) else None
        if not isinstance(values, list):
            raise ValueError(f"{event.event_kind.value} event {event.id} missing {field_name} array")
        return values

    @staticmethod
    def _require_id(value: Any, event: ChangeEvent) -> str:
        document_id = resolve_document_id(value)
        if document_id is None:
            raise ValueError(f"Delete event {event.id} missing document ID")
        return document_id

    def transform_document(
        self,
        data: Any,
        kind: DocumentKind,
        occurred_at_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Shape a payload into an index document for ``kind``.

        ``created_at`` falls back to ``occurred_at_ms`` when the payload has
        no ``lastModifiedDate``, so applying the same event twice stores the
        same document.

        Raises:
            ValueError: If the payload is not a mapping
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"{kind.value} document must be an object, got {type(data).__name__}")

        document = {**data, "document_type": kind.value}
        # Computed before defaults are filled so replays hash identically
        fallback_id = content_hash_id(kind, document)

        if kind == DocumentKind.SOFTWARE_STACK:
            document["id"] = resolve_document_id(data.get("id")) or slugify(data.get("name"))
            if document.get("popularity_score") is None:
                document["popularity_score"] = 0

        elif kind == DocumentKind.CLAIMS:
            document["id"] = resolve_document_id(data.get("claimId")) or resolve_document_id(data.get("id"))
            if not document.get("created_at"):
                document["created_at"] = parse_timestamp_ms(data.get("lastModifiedDate"), occurred_at_ms)

        elif kind == DocumentKind.LOCATIONS:
            document["id"] = resolve_document_id(data.get("id"))
            location = data.get("location") or parse_coordinates(data.get("postalCodeCenterPoint"))
            if location is not None:
                document["location"] = location
            if not document.get("created_at"):
                document["created_at"] = parse_timestamp_ms(data.get("lastModifiedDate"), occurred_at_ms)

        if not document.get("id"):
            document["id"] = fallback_id

        return document

    async def ensure_collections(self) -> List[str]:
        """Create every known collection; failures are logged and skipped."""
        created = []
        for kind, schema in COLLECTION_SCHEMAS.items():
            name = self.get_collection_name(kind)
            try:
                await self.index_writer.create_collection(schema.to_dict(name))
                created.append(name)
            except Exception as e:
                logger.error(f"Failed to create collection {name}: {e}")
        return created

    def _record(self, result: SyncResult) -> None:
        self.total_processed += result.processed
        self.total_failed += result.failed
        self.error_count += result.failed
        if result.processed:
            self.last_processed_at = now_ms()

    def get_status(self) -> Dict[str, Any]:
        """Get processor health status."""
        total = self.total_processed + self.total_failed
        return {
            "isHealthy": self.is_healthy,
            "lastProcessed": self.last_processed_at,
            "errorRate": self.total_failed / total if total else 0.0,
            "totalProcessed": self.total_processed,
            "errorCount": self.error_count,
        }

    def reset_health(self) -> None:
        """Clear the failure count used for the health verdict."""
        self.error_count = 0
