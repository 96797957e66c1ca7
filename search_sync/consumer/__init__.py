"""
Consumer package for the search sync service.

This package provides:
- SQS queue consumer with batch processing
- Event normalization and validation
- Retry-limit tracking for messages left on the queue
- Graceful start/stop handling
"""

from .transformer import (
    TransformationError,
    ValidationError,
    EventTransformer,
    map_event_kind,
    lookup_document_kind,
    infer_document_kind_from_data,
    unmarshal_item,
    unmarshal_value,
)

from .consumer import (
    SQSQueueConsumer,
)

__all__ = [
    # Transformer classes
    "EventTransformer",

    # Transformer exceptions
    "TransformationError",
    "ValidationError",

    # Transformer functions
    "map_event_kind",
    "lookup_document_kind",
    "infer_document_kind_from_data",
    "unmarshal_item",
    "unmarshal_value",

    # Consumer classes
    "SQSQueueConsumer",
]
