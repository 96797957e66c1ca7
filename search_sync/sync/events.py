"""
Canonical change-event model shared by the normalizer, processor and consumer.

Every raw notification shape is converted into a ChangeEvent before any
processing happens, so the rest of the pipeline only deals with one shape.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

MAX_EVENT_AGE_MS = 24 * 60 * 60 * 1000
MAX_CLOCK_SKEW_MS = 60 * 1000
MAX_RESULT_ERRORS = 50

DOCUMENT_ID_FIELDS = ("id", "documentId", "document_id", "claimId", "_id", "$oid")

# Epoch values above this are already milliseconds (year 2001 in ms).
_MILLIS_THRESHOLD = 1e12


class EventKind(str, Enum):
    """Change event types."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    BULK_UPDATE = "BULK_UPDATE"
    BULK_DELETE = "BULK_DELETE"

    @property
    def is_bulk(self) -> bool:
        return self in (EventKind.BULK_UPDATE, EventKind.BULK_DELETE)


class DocumentKind(str, Enum):
    """Search collections a change event can target."""
    SOFTWARE_STACK = "software_stack"
    CLAIMS = "claims"
    LOCATIONS = "locations"


@dataclass
class EventOrigin:
    """Where an event came from."""
    source: str
    user: Optional[str] = None
    correlation_id: Optional[str] = None
    batch_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "source": self.source,
            "user": self.user,
            "correlationId": self.correlation_id,
            "batchId": self.batch_id,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class ChangeEvent:
    """A normalized database change event."""
    id: str
    event_kind: EventKind
    document_kind: Optional[DocumentKind]
    occurred_at_ms: int
    payload: Any = None
    previous_payload: Any = None
    origin: EventOrigin = field(default_factory=lambda: EventOrigin(source="unknown"))

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation, matching the canonical envelope format."""
        return {
            "id": self.id,
            "eventType": self.event_kind.value,
            "documentType": self.document_kind.value if self.document_kind else None,
            "timestamp": self.occurred_at_ms,
            "data": self.payload,
            "oldData": self.previous_payload,
            "metadata": self.origin.to_dict(),
        }


@dataclass
class SyncResult:
    """Outcome of applying a batch of events."""
    processed: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def success_ratio(self) -> float:
        total = self.processed + self.failed
        return self.processed / total if total else 1.0

    def add_error(self, message: str) -> None:
        """Record an error string, keeping the list bounded."""
        if len(self.errors) < MAX_RESULT_ERRORS:
            self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "processed": self.processed,
            "failed": self.failed,
            "errors": list(self.errors),
            "durationMs": self.duration_ms,
        }


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_timestamp_ms(value: Any, default: Optional[int] = None) -> int:
    """
    Parse a timestamp into epoch milliseconds.

    Accepts epoch seconds, epoch milliseconds, numeric strings, ISO-8601
    strings and datetime objects. Anything else falls back to ``default``
    (or now).
    """
    fallback = default if default is not None else now_ms()

    if value is None or isinstance(value, bool):
        return fallback

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return fallback
        return int(value) if value > _MILLIS_THRESHOLD else int(value * 1000)

    if isinstance(value, str):
        text = value.strip()
        try:
            return parse_timestamp_ms(float(text), fallback)
        except ValueError:
            pass

        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparsable timestamp {value!r}, using current time")
            return fallback
        return parse_timestamp_ms(parsed, fallback)

    logger.warning(f"Unsupported timestamp type {type(value).__name__}, using current time")
    return fallback


def resolve_document_id(value: Any) -> Optional[str]:
    """Resolve a document identifier from a bare id or an id-bearing mapping."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        return value.strip() or None

    if isinstance(value, int):
        return str(value)

    if isinstance(value, float) and value.is_integer():
        return str(int(value))

    if isinstance(value, Mapping):
        for key in DOCUMENT_ID_FIELDS:
            if key in value:
                resolved = resolve_document_id(value[key])
                if resolved:
                    return resolved

    return None
