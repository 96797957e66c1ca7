"""
Sync package for the search sync service.

This package provides:
- The canonical change event model
- The change processor that writes events into search collections
- The index writer contract and an in-memory implementation
- Search collection schemas
"""

from .events import (
    EventKind,
    DocumentKind,
    EventOrigin,
    ChangeEvent,
    SyncResult,
    now_ms,
    parse_timestamp_ms,
    resolve_document_id,
)

from .index import (
    IndexWriter,
    IndexWriteError,
    InMemoryIndexWriter,
)

from .processor import ChangeProcessor

from .schemas import (
    FieldSpec,
    CollectionSchema,
    COLLECTION_SCHEMAS,
)

__all__ = [
    # Event model
    "EventKind",
    "DocumentKind",
    "EventOrigin",
    "ChangeEvent",
    "SyncResult",
    "now_ms",
    "parse_timestamp_ms",
    "resolve_document_id",

    # Index writers
    "IndexWriter",
    "IndexWriteError",
    "InMemoryIndexWriter",

    # Processing
    "ChangeProcessor",

    # Schemas
    "FieldSpec",
    "CollectionSchema",
    "COLLECTION_SCHEMAS",
]
