"""
SQS queue consumer for the search sync service.

This module provides:
- An asyncio poll loop over an SQS queue with long polling
- Batch processing of received messages through the change processor
- Ratio-based message deletion and retry-limit tracking
- Graceful start/stop handling
- Consumer status and queue statistics

Delivery is at-least-once: a batch whose success ratio falls below the
configured threshold is left on the queue in full and becomes visible again
after the visibility timeout.
"""

import asyncio
import json
import logging
import time
from json import JSONDecodeError
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import AppConfig
from ..monitoring import MetricsCollector, consumer_operation_timer, time_queue_operation
from ..sync.events import ChangeEvent, SyncResult, now_ms
from ..sync.processor import ChangeProcessor
from .transformer import EventTransformer, TransformationError, ValidationError

logger = logging.getLogger(__name__)

SQS_DELETE_BATCH_LIMIT = 10


class SQSQueueConsumer:
    """
    Queue consumer for change notifications.

    Handles receiving, normalizing, applying and acknowledging messages
    with error handling that never stops the poll loop.
    """

    def __init__(
        self,
        queue_url: str,
        processor: ChangeProcessor,
        transformer: EventTransformer,
        config: AppConfig,
        metrics: Optional[MetricsCollector] = None,
        sqs_client: Optional[Any] = None,
    ):
        self.queue_url = queue_url
        self.processor = processor
        self.transformer = transformer
        self.polling = config.polling
        self.retry_attempts = config.processor.retry_attempts
        self.metrics = metrics
        self.sqs_client = sqs_client or boto3.client("sqs", **config.aws.client_kwargs())

        # Consumer state
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

        # Counters
        self.messages_processed = 0
        self.errors = 0
        self.dead_lettered = 0
        self.last_activity: Optional[int] = None

        logger.info(f"SQS consumer initialized for queue {queue_url}")

    async def start(self) -> None:
        """Start polling; a no-op when already running."""
        if self.running:
            logger.debug("SQS consumer already running")
            return

        if self._task is not None and not self._task.done():
            # A cycle from before the last stop is still finishing
            await asyncio.gather(self._task, return_exceptions=True)

        self.running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("SQS consumer started")

    async def stop(self, drain: bool = False) -> None:
        """
        Stop polling; a no-op when already stopped.

        Args:
            drain: Wait for an in-flight poll cycle to finish before returning
        """
        if not self.running:
            return

        logger.info("Stopping SQS consumer...")
        self.running = False
        self._stop_event.set()

        if drain and self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

        logger.info("SQS consumer stopped")

    async def _poll_loop(self) -> None:
        """Main polling loop."""
        interval = self.polling.interval_ms / 1000

        while self.running:
            try:
                await self.poll_once()
            except Exception as e:
                self.errors += 1
                logger.error(f"Error in polling cycle: {e}")

            if not self.running:
                break

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.debug("SQS poll loop exited")

    @consumer_operation_timer("poll")
    async def poll_once(self) -> Dict[str, Any]:
        """Receive one batch of messages and process it."""
        async with time_queue_operation("receive", self.queue_url):
            response = await asyncio.to_thread(
                self.sqs_client.receive_message,
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=self.polling.max_messages,
                VisibilityTimeout=self.polling.visibility_timeout_seconds,
                WaitTimeSeconds=self.polling.wait_time_seconds,
                AttributeNames=["All"],
                MessageAttributeNames=["All"],
            )

        messages = response.get("Messages", [])
        if not messages:
            return self._empty_summary()

        self.last_activity = now_ms()
        logger.debug(f"Received {len(messages)} messages from SQS")
        return await self.process_messages(messages)

    @staticmethod
    def _empty_summary() -> Dict[str, Any]:
        return {
            "received": 0,
            "processed": 0,
            "failed": 0,
            "invalid": 0,
            "deleted": 0,
            "retained": 0,
            "deadLettered": 0,
        }

    async def process_messages(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Normalize, validate, apply and acknowledge a batch of queue messages.

        Returns:
            Summary counts for the batch
        """
        summary = self._empty_summary()
        summary["received"] = len(messages)

        if self.metrics:
            self.metrics.record_message_received(len(messages))

        valid: List[Tuple[Dict[str, Any], ChangeEvent]] = []
        invalid: List[Dict[str, Any]] = []

        for message in messages:
            message_id = message.get("MessageId")
            try:
                event = self.parse_message(message)
            except TransformationError as e:
                logger.warning(f"Unprocessable message {message_id}: {e}")
                invalid.append(message)
                self._record_failure(f"Unprocessable message {message_id}: {e}")
                continue

            if not self.transformer.validate(event):
                logger.warning(f"Invalid message format, skipping message ID: {message_id}")
                invalid.append(message)
                self._record_failure(f"Invalid event in message {message_id}")
                continue

            valid.append((message, event))

        summary["invalid"] = len(invalid)
        summary["failed"] = len(invalid)
        if invalid:
            summary["deleted"] += await self.delete_messages(invalid)

        if not valid:
            return summary

        start_time = time.perf_counter()
        try:
            result = await self.processor.apply_batch([event for _, event in valid])
        except Exception as e:
            logger.error(f"Batch processing failed completely: {e}")
            result = SyncResult(failed=len(valid), errors=[str(e)])
        result.duration_ms = (time.perf_counter() - start_time) * 1000

        self.messages_processed += result.processed
        self.errors += result.failed
        summary["processed"] = result.processed
        summary["failed"] += result.failed

        if self.metrics:
            self.metrics.record_batch(result.processed, result.failed, result.duration_ms)

        if result.failed:
            logger.warning(f"{result.failed} messages failed processing: {', '.join(result.errors) or 'unknown errors'}")

        valid_messages = [message for message, _ in valid]
        if result.success_ratio >= self.polling.delete_success_ratio:
            summary["deleted"] += await self.delete_messages(valid_messages)
        else:
            logger.warning(
                f"Batch success ratio {result.success_ratio:.2f} below "
                f"{self.polling.delete_success_ratio:.2f}, leaving {len(valid_messages)} messages for redelivery"
            )
            summary["retained"] = len(valid_messages)
            for message in valid_messages:
                if self.handle_failed_message(message):
                    summary["deadLettered"] += 1

        return summary

    def parse_message(self, message: Dict[str, Any]) -> ChangeEvent:
        """
        Decode a queue message body into a canonical event.

        Bodies published through an SNS topic are unwrapped first.

        Raises:
            TransformationError: If the body cannot be decoded or normalized
        """
        body = message.get("Body")
        try:
            parsed = json.loads(body)
            if isinstance(parsed, dict) and parsed.get("Type") == "Notification" and parsed.get("Message"):
                parsed = json.loads(parsed["Message"])
        except (JSONDecodeError, TypeError) as e:
            raise ValidationError(f"Failed to parse message body: {e}") from e

        return self.transformer.transform(parsed, "sqs")

    def get_retry_count(self, message: Dict[str, Any]) -> int:
        """Retry count from the ``retryCount`` attribute, else from the receive count."""
        attribute = message.get("MessageAttributes", {}).get("retryCount", {})
        value = attribute.get("StringValue")
        if value is None:
            receive_count = message.get("Attributes", {}).get("ApproximateReceiveCount")
            if receive_count is None:
                return 0
            try:
                return max(int(receive_count) - 1, 0)
            except ValueError:
                return 0

        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring malformed retryCount {value!r} on message {message.get('MessageId')}")
            return 0

    def handle_failed_message(self, message: Dict[str, Any]) -> bool:
        """
        Decide what happens to a message left on the queue.

        Returns:
            True when the message has exhausted its retries
        """
        message_id = message.get("MessageId")
        retry_count = self.get_retry_count(message)

        if retry_count < self.retry_attempts:
            logger.info(f"Message {message_id} will be retried (attempt {retry_count + 1})")
            return False

        self.dead_lettered += 1
        logger.error(
            f"Message {message_id} exceeded retry limit ({retry_count}/{self.retry_attempts}), "
            f"requires dead-letter handling"
        )
        return True

    async def delete_messages(self, messages: List[Dict[str, Any]]) -> int:
        """Delete messages from the queue; returns how many were deleted."""
        deleted = 0

        for offset in range(0, len(messages), SQS_DELETE_BATCH_LIMIT):
            chunk = messages[offset:offset + SQS_DELETE_BATCH_LIMIT]
            entries = [
                {"Id": str(index), "ReceiptHandle": message["ReceiptHandle"]}
                for index, message in enumerate(chunk)
            ]

            try:
                async with time_queue_operation("delete", self.queue_url):
                    response = await asyncio.to_thread(
                        self.sqs_client.delete_message_batch,
                        QueueUrl=self.queue_url,
                        Entries=entries,
                    )
            except (BotoCoreError, ClientError) as e:
                self.errors += 1
                logger.error(f"Failed to delete {len(chunk)} messages: {e}")
                continue

            for failure in response.get("Failed", []):
                logger.error(f"Failed to delete message entry {failure.get('Id')}: {failure.get('Message')}")
            deleted += len(response.get("Successful", []))

        return deleted

    def _record_failure(self, reason: str) -> None:
        self.errors += 1
        if self.metrics:
            self.metrics.record_message_failed(reason)

    def get_status(self) -> Dict[str, Any]:
        """Get consumer status."""
        return {
            "isRunning": self.running,
            "messagesProcessed": self.messages_processed,
            "errors": self.errors,
            "deadLettered": self.dead_lettered,
            "lastActivity": self.last_activity,
        }

    async def get_queue_stats(self) -> Optional[Dict[str, int]]:
        """Approximate queue depth, or None when the queue cannot be reached."""
        try:
            response = await asyncio.to_thread(
                self.sqs_client.get_queue_attributes,
                QueueUrl=self.queue_url,
                AttributeNames=[
                    "ApproximateNumberOfMessages",
                    "ApproximateNumberOfMessagesNotVisible",
                    "ApproximateNumberOfMessagesDelayed",
                ],
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get queue statistics: {e}")
            return None

        attributes = response.get("Attributes", {})
        return {
            "messagesAvailable": int(attributes.get("ApproximateNumberOfMessages", 0)),
            "messagesInFlight": int(attributes.get("ApproximateNumberOfMessagesNotVisible", 0)),
            "messagesDelayed": int(attributes.get("ApproximateNumberOfMessagesDelayed", 0)),
        }
