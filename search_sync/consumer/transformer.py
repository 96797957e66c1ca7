"""
Event transformer for the search sync service.

This module provides:
- Shape detection for the raw notification formats we receive
- Change-stream typed attribute unmarshalling
- Event kind and document kind normalization
- Structural and temporal validation of canonical events

Each detector looks at a raw mapping and either returns a ChangeEvent or
None; detectors are tried in order and the first match wins. The last
detector accepts any mapping, so input only fails transformation when it is
not a mapping at all or carries malformed typed attributes.
"""

import hashlib
import json
import logging
import re
import uuid
from json import JSONDecodeError
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..sync.events import (
    MAX_CLOCK_SKEW_MS,
    MAX_EVENT_AGE_MS,
    ChangeEvent,
    DocumentKind,
    EventKind,
    EventOrigin,
    now_ms,
    parse_timestamp_ms,
    resolve_document_id,
)

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 10 * 1024 * 1024  # 10MB

EVENT_KIND_ALIASES: Dict[str, EventKind] = {
    "INSERT": EventKind.INSERT,
    "INSERTED": EventKind.INSERT,
    "CREATE": EventKind.INSERT,
    "CREATED": EventKind.INSERT,
    "ADD": EventKind.INSERT,
    "UPDATE": EventKind.UPDATE,
    "UPDATED": EventKind.UPDATE,
    "MODIFY": EventKind.UPDATE,
    "CHANGE": EventKind.UPDATE,
    "UPSERT": EventKind.UPDATE,
    "REPLACE": EventKind.UPDATE,
    "DELETE": EventKind.DELETE,
    "DELETED": EventKind.DELETE,
    "REMOVE": EventKind.DELETE,
    "BULK_INSERT": EventKind.BULK_UPDATE,
    "BULK_UPDATE": EventKind.BULK_UPDATE,
    "BULK_UPSERT": EventKind.BULK_UPDATE,
    "BULK_DELETE": EventKind.BULK_DELETE,
    "BULK_REMOVE": EventKind.BULK_DELETE,
}

TABLE_DOCUMENT_KINDS: Dict[str, DocumentKind] = {
    "software_stack": DocumentKind.SOFTWARE_STACK,
    "software_components": DocumentKind.SOFTWARE_STACK,
    "software_stack_components": DocumentKind.SOFTWARE_STACK,
    "software": DocumentKind.SOFTWARE_STACK,
    "catalog": DocumentKind.SOFTWARE_STACK,
    "claims": DocumentKind.CLAIMS,
    "warranty_claims": DocumentKind.CLAIMS,
    "insurance_claims": DocumentKind.CLAIMS,
    "locations": DocumentKind.LOCATIONS,
    "postal_codes": DocumentKind.LOCATIONS,
    "addresses": DocumentKind.LOCATIONS,
}

# Keys that describe the envelope rather than the document itself
ENVELOPE_KEYS = {
    "eventType", "eventKind", "type", "operation", "action",
    "documentType", "documentKind", "document_type",
    "tableName", "table", "collection",
    "timestamp", "ts", "time", "occurredAtMs",
    "metadata", "source", "user", "userId", "correlationId", "traceId", "batchId",
}


class TransformationError(Exception):
    """Raised when a raw event cannot be transformed."""
    pass


class ValidationError(TransformationError):
    """Raised when a raw event is structurally malformed."""
    pass


def _parse_number(text: Any) -> Any:
    try:
        return int(text)
    except (TypeError, ValueError):
        pass
    try:
        return float(text)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid numeric attribute value: {text!r}") from e


def unmarshal_value(attribute: Any) -> Any:
    """Unwrap one typed attribute value such as ``{"N": "5"}``."""
    if not isinstance(attribute, Mapping) or len(attribute) != 1:
        raise ValidationError(f"Malformed typed attribute: {attribute!r}")

    (tag, value), = attribute.items()

    if tag == "S":
        return value
    if tag == "N":
        return _parse_number(value)
    if tag == "BOOL":
        return bool(value)
    if tag == "NULL":
        return None
    if tag in ("SS", "NS", "L") and not isinstance(value, list):
        raise ValidationError(f"Attribute type {tag} requires a list, got {type(value).__name__}")
    if tag == "SS":
        return list(value)
    if tag == "NS":
        return [_parse_number(item) for item in value]
    if tag == "L":
        return [unmarshal_value(item) for item in value]
    if tag == "M":
        return unmarshal_item(value)

    raise ValidationError(f"Unknown attribute type tag: {tag}")


def unmarshal_item(item: Any) -> Dict[str, Any]:
    """Unwrap a typed attribute map into plain values."""
    if not isinstance(item, Mapping):
        raise ValidationError(f"Typed item must be a mapping, got {type(item).__name__}")
    return {key: unmarshal_value(value) for key, value in item.items()}


def map_event_kind(value: Any) -> EventKind:
    """
    Map an upstream operation name to an EventKind.

    Matching ignores case and treats camelCase, dashes, dots and spaces as
    underscores. Unrecognized names map to UPDATE.
    """
    if isinstance(value, EventKind):
        return value
    if not isinstance(value, str) or not value.strip():
        return EventKind.UPDATE

    key = re.sub(r"(?<=[a-z])(?=[A-Z])", "_", value.strip())
    key = re.sub(r"[\s.\-]+", "_", key).upper()
    return EVENT_KIND_ALIASES.get(key, EventKind.UPDATE)


def lookup_document_kind(name: Any) -> Optional[DocumentKind]:
    """Resolve a document kind from a kind, table or resource name."""
    if isinstance(name, DocumentKind):
        return name
    if not isinstance(name, str) or not name.strip():
        return None

    candidate = name.strip().lower()
    if candidate in TABLE_DOCUMENT_KINDS:
        return TABLE_DOCUMENT_KINDS[candidate]

    # Fully-qualified names: ARNs, schema.table, db/collection
    for segment in reversed(re.split(r"[/:.]", candidate)):
        if segment in TABLE_DOCUMENT_KINDS:
            return TABLE_DOCUMENT_KINDS[segment]

    return None


def infer_document_kind_from_data(data: Any) -> Optional[DocumentKind]:
    """Guess the document kind from characteristic payload fields."""
    if isinstance(data, Mapping) and isinstance(data.get("documents"), list):
        data = next((doc for doc in data["documents"] if isinstance(doc, Mapping)), None)

    if not isinstance(data, Mapping):
        return None

    if any(data.get(key) for key in ("claimId", "claimNumber", "claimType")):
        return DocumentKind.CLAIMS

    if any(data.get(key) for key in ("postalCode", "location", "coordinates", "postalCodeCenterPoint")):
        return DocumentKind.LOCATIONS
    if "latitude" in data and "longitude" in data:
        return DocumentKind.LOCATIONS

    if any(key in data for key in ("category", "tags", "popularity_score")):
        return DocumentKind.SOFTWARE_STACK

    return None


def _first_present(raw: Mapping, *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class EventTransformer:
    """
    Normalizer for raw change notifications.

    Converts queue envelopes, change-stream records, webhooks, trigger
    payloads and API-submitted objects into canonical ChangeEvents.
    """

    def __init__(
        self,
        max_age_ms: int = MAX_EVENT_AGE_MS,
        max_clock_skew_ms: int = MAX_CLOCK_SKEW_MS,
        max_payload_bytes: int = MAX_PAYLOAD_BYTES,
    ):
        self.max_age_ms = max_age_ms
        self.max_clock_skew_ms = max_clock_skew_ms
        self.max_payload_bytes = max_payload_bytes

        self.detectors: List[Callable[[Mapping, str], Optional[ChangeEvent]]] = [
            self._from_key_value_stream,
            self._from_document_stream,
            self._from_canonical_envelope,
            self._from_webhook,
            self._from_database_trigger,
            self._from_api_object,
        ]

    def transform(self, raw: Any, source: str) -> ChangeEvent:
        """
        Transform a raw event into a canonical ChangeEvent.

        Args:
            raw: Decoded event mapping, or a JSON string/bytes
            source: Name of the channel the event arrived on

        Returns:
            ChangeEvent instance

        Raises:
            TransformationError: If the event cannot be transformed
        """
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ValidationError(f"Event body is not valid UTF-8: {e}") from e

        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except JSONDecodeError as e:
                raise ValidationError(f"Failed to parse event body: {e}") from e

        if not isinstance(raw, Mapping):
            raise ValidationError(f"Event must be a JSON object, got {type(raw).__name__}")

        try:
            for detector in self.detectors:
                event = detector(raw, source)
                if event is not None:
                    return event
        except TransformationError as e:
            logger.error(f"Failed to transform event from source {source}: {e}")
            raise
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to transform event from source {source}: {e}")
            raise TransformationError(f"Event transformation failed: {e}") from e

        raise TransformationError("Unrecognized event shape")

    def validate(self, event: ChangeEvent, now: Optional[int] = None) -> bool:
        """
        Validate a canonical event.

        Returns:
            True when the event may be applied, False otherwise. The
            rejection reason is logged.
        """
        reason = self.rejection_reason(event, now)
        if reason:
            logger.warning(f"Rejected event {getattr(event, 'id', None)}: {reason}")
            return False
        return True

    def infer_document_kind(self, raw: Any) -> Optional[DocumentKind]:
        """
        Resolve the document kind of a raw event.

        Order: explicit field, then table/collection name, then payload
        structure. An explicit but unknown kind resolves to None.
        """
        if not isinstance(raw, Mapping):
            return None

        explicit = _first_present(raw, "documentType", "documentKind", "document_type")
        if explicit is not None:
            return lookup_document_kind(explicit)

        for key in ("tableName", "table", "collection", "eventSourceARN"):
            kind = lookup_document_kind(raw.get(key))
            if kind:
                return kind

        namespace = raw.get("ns")
        if isinstance(namespace, Mapping):
            kind = lookup_document_kind(namespace.get("coll"))
            if kind:
                return kind

        for key in ("data", "payload", "document", "new", "fullDocument"):
            kind = infer_document_kind_from_data(raw.get(key))
            if kind:
                return kind

        return None

    # Shape detectors

    def _from_key_value_stream(self, raw: Mapping, source: str) -> Optional[ChangeEvent]:
        """Key-value change-stream record with typed NewImage/OldImage maps."""
        record = raw.get("dynamodb")
        if "eventName" not in raw or not isinstance(record, Mapping):
            return None

        new_image = unmarshal_item(record["NewImage"]) if record.get("NewImage") else None
        old_image = unmarshal_item(record["OldImage"]) if record.get("OldImage") else None
        keys = unmarshal_item(record["Keys"]) if record.get("Keys") else None

        event_kind = map_event_kind(raw["eventName"])
        document_kind = (
            self.infer_document_kind(raw)
            or infer_document_kind_from_data(new_image)
            or infer_document_kind_from_data(old_image)
        )

        if event_kind == EventKind.DELETE:
            payload = resolve_document_id(keys) or resolve_document_id(old_image) or keys or old_image
        else:
            payload = new_image

        return self._build(
            raw,
            source,
            event_id=raw.get("eventID"),
            event_kind=event_kind,
            document_kind=document_kind,
            timestamp=record.get("ApproximateCreationDateTime"),
            payload=payload,
            previous=old_image,
        )

    def _from_document_stream(self, raw: Mapping, source: str) -> Optional[ChangeEvent]:
        """Document-store change-stream record (operationType/fullDocument)."""
        if "operationType" not in raw or not ("fullDocument" in raw or "documentKey" in raw):
            return None

        event_kind = map_event_kind(raw["operationType"])
        document = raw.get("fullDocument")
        if isinstance(document, Mapping) and "id" not in document and "_id" in document:
            document = {k: v for k, v in document.items() if k != "_id"}
            document["id"] = resolve_document_id(raw["fullDocument"]["_id"])

        if event_kind == EventKind.DELETE:
            payload = resolve_document_id(raw.get("documentKey"))
        else:
            payload = document

        token = raw.get("_id")
        event_id = token.get("_data") if isinstance(token, Mapping) else token

        return self._build(
            raw,
            source,
            event_id=event_id,
            event_kind=event_kind,
            document_kind=self.infer_document_kind(raw),
            timestamp=_first_present(raw, "wallTime", "timestamp"),
            payload=payload,
            previous=raw.get("fullDocumentBeforeChange"),
        )

    def _from_canonical_envelope(self, raw: Mapping, source: str) -> Optional[ChangeEvent]:
        """Already-canonical envelope as published by our own producers."""
        if "eventType" not in raw and "eventKind" not in raw:
            return None

        return self._build(
            raw,
            source,
            event_id=raw.get("id"),
            event_kind=map_event_kind(_first_present(raw, "eventType", "eventKind")),
            document_kind=self.infer_document_kind(raw),
            timestamp=_first_present(raw, "timestamp", "occurredAtMs", "ts"),
            payload=_first_present(raw, "data", "payload"),
            previous=_first_present(raw, "oldData", "previousPayload"),
        )

    def _from_webhook(self, raw: Mapping, source: str) -> Optional[ChangeEvent]:
        """Generic ``{action, payload, ts}`` webhook."""
        if "action" not in raw:
            return None

        return self._build(
            raw,
            source,
            event_id=raw.get("id"),
            event_kind=map_event_kind(raw["action"]),
            document_kind=self.infer_document_kind(raw),
            timestamp=_first_present(raw, "ts", "timestamp", "time"),
            payload=_first_present(raw, "payload", "data", "document"),
            previous=_first_present(raw, "previousData", "oldData"),
        )

    def _from_database_trigger(self, raw: Mapping, source: str) -> Optional[ChangeEvent]:
        """Row-level trigger payload with new/old row images."""
        if "operation" not in raw or not ("new" in raw or "old" in raw):
            return None

        event_kind = map_event_kind(raw["operation"])
        old_row = raw.get("old")
        if event_kind == EventKind.DELETE:
            payload = resolve_document_id(old_row) or old_row
        else:
            payload = raw.get("new")

        document_kind = self.infer_document_kind(raw) or infer_document_kind_from_data(old_row)

        return self._build(
            raw,
            source,
            event_id=raw.get("id"),
            event_kind=event_kind,
            document_kind=document_kind,
            timestamp=_first_present(raw, "timestamp", "ts"),
            payload=payload,
            previous=old_row,
        )

    def _from_api_object(self, raw: Mapping, source: str) -> Optional[ChangeEvent]:
        """Ad-hoc object submitted through the API; accepts any mapping."""
        payload = _first_present(raw, "data", "document", "payload")
        event_id = raw.get("id")

        if payload is None:
            # The object is the document itself; its id is not an event id.
            payload = {k: v for k, v in raw.items() if k not in ENVELOPE_KEYS}
            event_id = None

        document_kind = self.infer_document_kind(raw) or infer_document_kind_from_data(payload)

        return self._build(
            raw,
            source,
            event_id=event_id,
            event_kind=map_event_kind(_first_present(raw, "type", "operation")),
            document_kind=document_kind,
            timestamp=_first_present(raw, "timestamp", "ts", "time"),
            payload=payload,
            previous=_first_present(raw, "oldData", "previousData"),
        )

    def _build(
        self,
        raw: Mapping,
        source: str,
        *,
        event_id: Any,
        event_kind: EventKind,
        document_kind: Optional[DocumentKind],
        timestamp: Any,
        payload: Any,
        previous: Any,
    ) -> ChangeEvent:
        """Assemble the canonical event shared by all detectors."""
        if event_kind == EventKind.BULK_UPDATE and isinstance(payload, list):
            payload = {"documents": payload}
        elif event_kind == EventKind.BULK_DELETE and isinstance(payload, list):
            payload = {"documentIds": payload}

        if (
            event_kind in (EventKind.INSERT, EventKind.UPDATE)
            and isinstance(payload, Mapping)
            and document_kind is not None
        ):
            payload = {**payload, "document_type": document_kind.value}

        metadata = raw.get("metadata") if isinstance(raw.get("metadata"), Mapping) else {}
        origin = EventOrigin(
            source=source,
            user=_optional_str(_first_present(metadata, "user") or _first_present(raw, "user", "userId")),
            correlation_id=_optional_str(
                _first_present(metadata, "correlationId") or _first_present(raw, "correlationId", "traceId")
            ),
            batch_id=_optional_str(_first_present(metadata, "batchId") or raw.get("batchId")),
        )

        return ChangeEvent(
            id=str(event_id) if event_id else self.generate_event_id(raw),
            event_kind=event_kind,
            document_kind=document_kind,
            occurred_at_ms=parse_timestamp_ms(timestamp),
            payload=payload,
            previous_payload=previous,
            origin=origin,
        )

    def generate_event_id(self, raw: Any) -> str:
        """Generate a unique event id seeded with a hash of the raw content."""
        content = json.dumps(raw, sort_keys=True, default=str).encode("utf-8")
        digest = hashlib.sha1(content).hexdigest()[:10]
        return f"evt_{now_ms()}_{digest}_{uuid.uuid4().hex[:9]}"

    def rejection_reason(self, event: ChangeEvent, now: Optional[int] = None) -> Optional[str]:
        """Return why an event is invalid, or None when it is valid."""
        if now is None:
            now = now_ms()

        if not isinstance(event, ChangeEvent):
            return f"not a change event: {type(event).__name__}"

        if not event.id:
            return "missing event id"

        if not isinstance(event.event_kind, EventKind):
            return f"invalid event type: {event.event_kind!r}"

        if not isinstance(event.document_kind, DocumentKind):
            return f"invalid or unresolved document type: {event.document_kind!r}"

        kind = event.event_kind
        payload = event.payload

        if kind in (EventKind.INSERT, EventKind.UPDATE):
            if payload is None:
                return f"{kind.value} event missing data"
            if not isinstance(payload, Mapping):
                return f"{kind.value} event data must be an object"

        if kind == EventKind.DELETE:
            if payload is None:
                return "DELETE event missing data"
            if resolve_document_id(payload) is None:
                return "DELETE event missing document ID"

        if kind == EventKind.BULK_UPDATE:
            documents = payload.get("documents") if isinstance(payload, Mapping) else None
            if not isinstance(documents, list) or not documents:
                return "BULK_UPDATE event missing documents array"
            if not all(isinstance(doc, Mapping) for doc in documents):
                return "BULK_UPDATE documents must be objects"

        if kind == EventKind.BULK_DELETE:
            document_ids = payload.get("documentIds") if isinstance(payload, Mapping) else None
            if not isinstance(document_ids, list) or not document_ids:
                return "BULK_DELETE event missing documentIds array"
            if any(resolve_document_id(doc_id) is None for doc_id in document_ids):
                return "BULK_DELETE documentIds contain an unresolvable identifier"

        age = now - event.occurred_at_ms
        if age > self.max_age_ms:
            return f"event is too old: {age}ms"

        if event.occurred_at_ms > now + self.max_clock_skew_ms:
            return f"event timestamp is in the future: {event.occurred_at_ms}"

        try:
            size = len(json.dumps(payload, default=str).encode("utf-8"))
        except (TypeError, ValueError) as e:
            return f"payload is not serializable: {e}"
        if size > self.max_payload_bytes:
            return f"payload size exceeds maximum allowed size ({self.max_payload_bytes} bytes)"

        return None
