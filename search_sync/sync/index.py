"""
Index-write collaborator contract.

Concrete search-engine clients live outside this service. The processor
only needs collection creation and batch upserts; deletion is optional and
detected at runtime.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class IndexWriteError(Exception):
    """Raised by index writers when a write is rejected."""
    pass


class IndexWriter(ABC):
    """Abstract search index writer."""

    @abstractmethod
    async def create_collection(self, schema: Dict[str, Any]) -> None:
        """Create a collection from a schema body; existing collections are left as is."""

    @abstractmethod
    async def index_documents(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        """Upsert documents by id into ``collection``."""


class InMemoryIndexWriter(IndexWriter):
    """Dict-backed index writer for local runs and tests."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.schemas: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def create_collection(self, schema: Dict[str, Any]) -> None:
        name = schema["name"]
        async with self._lock:
            if name in self.collections:
                logger.debug(f"Collection {name} already exists")
                return
            self.collections[name] = {}
            self.schemas[name] = schema
        logger.info(f"Created collection {name}")

    async def index_documents(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        async with self._lock:
            store = self.collections.setdefault(collection, {})
            for document in documents:
                if not document.get("id"):
                    raise IndexWriteError(f"Document without id rejected by {collection}")
                store[str(document["id"])] = dict(document)

    async def delete_document(self, collection: str, document_id: str) -> None:
        async with self._lock:
            self.collections.get(collection, {}).pop(document_id, None)

    async def delete_documents(self, collection: str, document_ids: List[str]) -> None:
        async with self._lock:
            store = self.collections.get(collection, {})
            for document_id in document_ids:
                store.pop(document_id, None)

    def get_document(self, collection: str, document_id: str):
        return self.collections.get(collection, {}).get(document_id)

    def count(self, collection: str) -> int:
        return len(self.collections.get(collection, {}))
