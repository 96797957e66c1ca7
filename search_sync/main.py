"""
Main entry point for the search sync service.

This module provides:
- Application initialization and configuration
- Service orchestration
- Health checks and monitoring endpoints
- Graceful shutdown handling
"""

import asyncio
import os
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from .config import AppConfig, ConfigurationError, app_config, load_configuration, validate_configuration
from .core.logging import setup_logging
from .manager import SyncManager, create_sync_manager
from .monitoring import MonitoringService
from .sync import IndexWriter

logger = logging.getLogger(__name__)


class SearchSyncApplication:
    """
    Main search sync application.

    Orchestrates the sync manager and the monitoring server and manages
    the application lifecycle.
    """

    def __init__(self, config: Optional[AppConfig] = None, index_writer: Optional[IndexWriter] = None):
        self.config = config or app_config
        self.index_writer = index_writer
        self.sync_manager: Optional[SyncManager] = None
        self.monitoring_service: Optional[MonitoringService] = None
        self.shutdown_event = asyncio.Event()

    async def initialize(self) -> None:
        """Initialize all application services."""
        logger.info("Initializing search sync application...")

        validation_result = await validate_configuration(self.config)
        if validation_result.get("overall_status") != "healthy":
            raise ConfigurationError(f"Configuration validation failed: {validation_result}")

        logger.info("Configuration validation successful")

        self.sync_manager = create_sync_manager(self.config, self.index_writer)
        await self.sync_manager.start()

        if self.config.monitoring.enabled:
            self.monitoring_service = MonitoringService(self.config.monitoring, self.sync_manager)
            await self.monitoring_service.start()

        logger.info("Search sync application initialized successfully")

    def install_signal_handlers(self) -> None:
        """Trigger a graceful shutdown on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except NotImplementedError:
                # Signal handlers are unavailable on some platforms (Windows)
                logger.debug(f"Signal handler for {sig.name} not installed")

    def request_shutdown(self, sig: Optional[signal.Signals] = None) -> None:
        if sig is not None:
            logger.info(f"Received signal {sig.name}, initiating shutdown...")
        self.shutdown_event.set()

    async def run(self) -> None:
        """Run the application until a shutdown is requested."""
        self.install_signal_handlers()

        try:
            await self.initialize()
            await self.shutdown_event.wait()
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        """Clean up all resources."""
        logger.info("Cleaning up application resources...")

        if self.sync_manager:
            await self.sync_manager.stop(drain=True)

        if self.monitoring_service:
            await self.monitoring_service.stop()

        logger.info("Application cleanup completed")


async def main() -> None:
    """Main application entry point."""
    config_path = os.getenv("SEARCH_SYNC_CONFIG")
    config = load_configuration(Path(config_path) if config_path else None)

    setup_logging(config.logging, config.environment)

    logger.info(f"Starting {config.app_name} v{config.version}")
    logger.info(f"Environment: {config.environment.value}")
    logger.info(f"Debug mode: {config.debug}")

    app = SearchSyncApplication(config)

    try:
        await app.run()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"Application failed: {e}")
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
