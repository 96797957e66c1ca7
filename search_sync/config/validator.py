"""
Configuration validation utilities.

Provides validation functions for the configuration components
so problems surface before the sync manager starts polling.
"""

import asyncio
import logging
from typing import Dict, Any, Optional
from contextlib import asynccontextmanager

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .settings import AppConfig, ConfigurationError

logger = logging.getLogger(__name__)


class ConfigValidator:
    """Configuration validator for the search sync service."""

    def __init__(self, config: AppConfig, sqs_client: Optional[Any] = None):
        self.config = config
        self._sqs_client = sqs_client

    async def validate_all(self) -> Dict[str, Any]:
        """
        Validate all configuration components.

        Returns:
            Dict containing validation results for each component
        """
        results = {
            "config": self.validate_settings(),
            "queue": await self.validate_queue(),
            "overall_status": "healthy"
        }

        failed_components = [
            component for component, status in results.items()
            if isinstance(status, dict) and status.get("status") == "failed"
        ]

        if failed_components:
            results["overall_status"] = "unhealthy"
            results["failed_components"] = failed_components

        return results

    def validate_settings(self) -> Dict[str, Any]:
        """Check value ranges and required combinations."""
        try:
            self.config.validate()
        except ConfigurationError as e:
            return {"status": "failed", "error": str(e)}
        return {"status": "healthy", "message": "Configuration values are valid"}

    async def validate_queue(self) -> Dict[str, Any]:
        """
        Validate SQS queue accessibility.

        A missing queue URL is reported as disabled rather than failed.
        """
        queue_url = self.config.aws.queue_url
        if not queue_url:
            return {
                "status": "disabled",
                "message": "No SQS queue URL configured, consumer will not start",
            }

        try:
            client = self._sqs_client or boto3.client("sqs", **self.config.aws.client_kwargs())
            response = await asyncio.to_thread(
                client.get_queue_attributes,
                QueueUrl=queue_url,
                AttributeNames=["ApproximateNumberOfMessages", "VisibilityTimeout"],
            )
            attributes = response.get("Attributes", {})
            return {
                "status": "healthy",
                "message": "SQS queue is reachable",
                "queue_url": queue_url,
                "approximate_messages": int(attributes.get("ApproximateNumberOfMessages", 0)),
                "queue_visibility_timeout": attributes.get("VisibilityTimeout"),
            }

        except (BotoCoreError, ClientError) as e:
            logger.error(f"SQS queue validation failed: {e}")
            return {
                "status": "failed",
                "error": str(e),
                "queue_url": queue_url,
            }


async def validate_configuration(config: AppConfig, sqs_client: Optional[Any] = None) -> Dict[str, Any]:
    """
    Convenience function to validate configuration.

    Args:
        config: Application configuration to validate
        sqs_client: Optional pre-built boto3 SQS client

    Returns:
        Validation results dictionary
    """
    validator = ConfigValidator(config, sqs_client)
    return await validator.validate_all()


@asynccontextmanager
async def get_validation_session(config: Optional[AppConfig] = None):
    """
    Context manager for configuration validation sessions.

    Usage:
        async with get_validation_session() as validator:
            results = await validator.validate_all()
    """
    from .settings import config as app_config
    yield ConfigValidator(config or app_config)
