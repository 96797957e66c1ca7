"""
Sync manager for the search sync service.

The manager owns the normalizer, processor, metrics collector and, when a
queue is configured, the queue consumer. It is the only entry point the
surrounding service calls: lifecycle, status, metrics, manual processing
and the aggregated health verdict.

Manual events go through exactly the same normalize, validate and apply
path as queue messages.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from .config import AppConfig
from .consumer import EventTransformer, SQSQueueConsumer, TransformationError
from .monitoring import MetricsCollector, monitor_performance
from .sync import ChangeProcessor, InMemoryIndexWriter, IndexWriter, SyncResult, now_ms

logger = logging.getLogger(__name__)


class SyncManager:
    """Lifecycle owner for the sync pipeline."""

    def __init__(
        self,
        config: AppConfig,
        index_writer: IndexWriter,
        metrics: Optional[MetricsCollector] = None,
        transformer: Optional[EventTransformer] = None,
        processor: Optional[ChangeProcessor] = None,
        sqs_client: Optional[Any] = None,
    ):
        self.config = config
        self.metrics = metrics or MetricsCollector()
        self.transformer = transformer or EventTransformer()
        self.processor = processor or ChangeProcessor(
            index_writer,
            collection_names=config.processor.collection_names,
            failure_threshold=config.processor.failure_threshold,
        )
        self.sqs_client = sqs_client

        self.consumer: Optional[SQSQueueConsumer] = None
        self.is_running = False
        self.started_at: Optional[int] = None
        self._lifecycle_lock = asyncio.Lock()

    @monitor_performance("sync_manager_start")
    async def start(self) -> None:
        """
        Start the sync pipeline.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        async with self._lifecycle_lock:
            if self.is_running:
                logger.debug("Sync manager already running")
                return

            logger.info("Starting sync manager...")
            self.config.validate()
            logger.info(
                f"Sync configuration: batch size {self.config.processor.batch_size}, "
                f"polling interval {self.config.polling.interval_ms}ms, "
                f"max messages {self.config.polling.max_messages}"
            )

            if self.config.processor.create_collections:
                created = await self.processor.ensure_collections()
                logger.info(f"Ensured search collections: {created}")

            if self.config.queue_enabled and self.config.polling.enabled:
                if self.consumer is None:
                    self.consumer = SQSQueueConsumer(
                        self.config.aws.queue_url,
                        self.processor,
                        self.transformer,
                        self.config,
                        metrics=self.metrics,
                        sqs_client=self.sqs_client,
                    )
                await self.consumer.start()
            else:
                logger.info("SQS queue not configured or polling disabled, consumer disabled")

            self.is_running = True
            self.started_at = now_ms()
            logger.info("Sync manager started")

    async def stop(self, drain: bool = False) -> None:
        """Stop the sync pipeline; a no-op when already stopped."""
        async with self._lifecycle_lock:
            if not self.is_running:
                return

            logger.info("Stopping sync manager...")
            if self.consumer:
                await self.consumer.stop(drain=drain)

            self.is_running = False
            logger.info("Sync manager stopped")

    async def get_status(self) -> Dict[str, Any]:
        """Aggregated status of every sub-component."""
        return {
            "isRunning": self.is_running,
            "startedAt": self.started_at,
            "uptimeMs": now_ms() - self.started_at if self.is_running and self.started_at else 0,
            "consumerEnabled": self.consumer is not None,
            "consumer": self.consumer.get_status() if self.consumer else None,
            "processor": self.processor.get_status(),
            "metrics": self.metrics.get_metrics(),
            "performance": self.metrics.get_performance_stats(),
            "throughput": self.metrics.get_throughput_stats(),
        }

    def get_metrics(self) -> Dict[str, Any]:
        return self.metrics.get_metrics()

    def reset_metrics(self) -> None:
        """Reset metrics and the processor's failure count."""
        self.metrics.reset()
        self.processor.reset_health()

    def export_metrics(self) -> str:
        """Metrics in the Prometheus text exposition format."""
        return self.metrics.export_prometheus()

    async def get_queue_stats(self) -> Optional[Dict[str, int]]:
        if self.consumer is None:
            return None
        return await self.consumer.get_queue_stats()

    async def process_event(self, raw: Any, source: str = "api") -> Dict[str, Any]:
        """
        Process one manually submitted event.

        Returns:
            Structured result; failures are reported, never raised
        """
        start_time = time.perf_counter()
        self.metrics.record_message_received()

        try:
            event = self.transformer.transform(raw, source)
        except TransformationError as e:
            logger.error(f"Manual event processing failed from source {source}: {e}")
            return self._failed_result(str(e), start_time)

        reason = self.transformer.rejection_reason(event)
        if reason:
            logger.warning(f"Rejected event {event.id}: {reason}")
            return self._failed_result(f"Event {event.id} rejected: {reason}", start_time)

        try:
            result = await self.processor.apply_batch([event])
        except Exception as e:
            logger.error(f"Manual event processing failed from source {source}: {e}")
            return self._failed_result(str(e), start_time)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if result.success:
            self.metrics.record_message_processed(duration_ms)
        else:
            self.metrics.record_message_failed("; ".join(result.errors), duration_ms)

        response = self._result_dict(result, duration_ms)
        response["eventId"] = event.id
        return response

    async def process_batch(self, raws: Iterable[Any], source: str = "api") -> Dict[str, Any]:
        """
        Process a manually submitted batch of events.

        Invalid events are counted as failed; the valid ones are applied
        together.
        """
        start_time = time.perf_counter()
        try:
            if isinstance(raws, (str, bytes, Mapping)):
                raise TypeError(type(raws).__name__)
            raws = list(raws)
        except TypeError:
            logger.error(f"Manual batch from source {source} is not a list of events")
            self.metrics.record_message_received()
            return self._failed_result("Batch must be a list of events", start_time)

        self.metrics.record_message_received(len(raws))

        combined = SyncResult()
        events = []

        for index, raw in enumerate(raws):
            try:
                event = self.transformer.transform(raw, source)
            except TransformationError as e:
                combined.failed += 1
                combined.add_error(f"Event {index}: {e}")
                continue

            reason = self.transformer.rejection_reason(event)
            if reason:
                logger.warning(f"Rejected event {event.id}: {reason}")
                combined.failed += 1
                combined.add_error(f"Event {index} ({event.id}) rejected: {reason}")
                continue

            events.append(event)

        if combined.failed:
            self.metrics.record_message_failed(f"{combined.failed} invalid events in manual batch", count=combined.failed)

        if events:
            try:
                result = await self.processor.apply_batch(events)
            except Exception as e:
                logger.error(f"Manual batch processing failed from source {source} ({len(events)} events): {e}")
                result = SyncResult(failed=len(events), errors=[str(e)])

            combined.processed += result.processed
            combined.failed += result.failed
            for error in result.errors:
                combined.add_error(error)
            self.metrics.record_batch(result.processed, result.failed, result.duration_ms)

        duration_ms = (time.perf_counter() - start_time) * 1000
        response = self._result_dict(combined, duration_ms)
        response["total"] = len(raws)
        return response

    def _failed_result(self, error: str, start_time: float) -> Dict[str, Any]:
        duration_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.record_message_failed(error, duration_ms)
        return {
            "success": False,
            "processed": 0,
            "failed": 1,
            "errors": [error],
            "durationMs": duration_ms,
            "error": error,
        }

    @staticmethod
    def _result_dict(result: SyncResult, duration_ms: float) -> Dict[str, Any]:
        return {
            "success": result.success,
            "processed": result.processed,
            "failed": result.failed,
            "errors": list(result.errors),
            "durationMs": duration_ms,
            "error": result.errors[0] if result.errors else None,
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Aggregated health verdict.

        Healthy only while the manager is running, the processor is healthy
        and the error rate is below the configured threshold.
        """
        timestamp = datetime.now(timezone.utc).isoformat()

        try:
            threshold = self.config.monitoring.error_rate_threshold
            processor_status = self.processor.get_status()
            metrics = self.metrics.get_metrics()

            reasons = []
            if not self.is_running:
                reasons.append("Sync manager is not running")
            if not processor_status["isHealthy"]:
                reasons.append(f"Processor unhealthy: {processor_status['errorCount']} recent failures")
            if metrics["errorRate"] >= threshold:
                reasons.append(f"Error rate {metrics['errorRate']:.2%} is at or above {threshold:.0%}")

            return {
                "healthy": not reasons,
                "reason": "; ".join(reasons) or None,
                "status": {
                    "isRunning": self.is_running,
                    "consumer": self.consumer.get_status() if self.consumer else None,
                    "processor": processor_status,
                    "metrics": metrics,
                },
                "timestamp": timestamp,
            }

        except Exception as e:
            logger.error(f"Sync system health check failed: {e}")
            return {
                "healthy": False,
                "reason": f"Health check failed: {e}",
                "timestamp": timestamp,
            }


def create_sync_manager(
    config: Optional[AppConfig] = None,
    index_writer: Optional[IndexWriter] = None,
    **kwargs: Any,
) -> SyncManager:
    """
    Build a sync manager from configuration.

    Without an index writer the manager writes to an in-memory index,
    which is only suitable for local runs.
    """
    config = config or AppConfig.from_env()
    if index_writer is None:
        logger.warning("No index writer supplied, using in-memory index")
        index_writer = InMemoryIndexWriter()
    return SyncManager(config, index_writer, **kwargs)
