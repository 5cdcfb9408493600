#!/usr/bin/env python3
"""
PanelFlow Billing Service.

Main entry point that runs the billing API:
- PayFast payment initiation
- PayFast ITN (notification) verification
- Plan lookup for signed-in users

Usage:
    python main.py

Environment variables:
    See config.py for all configuration options.
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from aiohttp import web

from config import Config, config as default_config
from database.db import Database
from services.auth_client import AuthClient
from api.billing_api import create_app


# Configure logging
def setup_logging(config: Config = default_config):
    """Configure logging based on config."""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_level = getattr(logging, config.logging.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if config.logging.file:
        # Ensure log directory exists
        log_dir = os.path.dirname(config.logging.file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(config.logging.file))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )

    # Reduce noise from third-party libraries
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


class BillingService:
    """
    Main service orchestrator.

    Coordinates the components of the billing service:
    - Database connection
    - Identity provider client
    - REST API server
    """

    def __init__(self, config: Config = default_config):
        self.config = config
        self.db: Optional[Database] = None
        self.auth_client: Optional[AuthClient] = None
        self.api_app: Optional[web.Application] = None
        self.api_runner: Optional[web.AppRunner] = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start all services."""
        logger.info("=" * 60)
        logger.info(f"Starting {self.config.service.name}")
        logger.info("=" * 60)

        # Validate configuration; PayFast gaps are reported per request
        errors = self.config.validate()
        for error in errors:
            logger.error(f"Configuration error: {error}")
        if not self.config.database.url:
            raise ValueError("Invalid configuration")

        # Initialize database
        logger.info("Initializing database...")
        self.db = Database(self.config.database.url)
        await self.db.connect()
        await self.db.init_schema()

        # Identity provider client
        self.auth_client = AuthClient(
            url=self.config.auth.url,
            service_key=self.config.auth.service_key,
            timeout=self.config.auth.timeout
        )
        await self.auth_client.start()

        # Start API server
        logger.info("Starting API server...")
        self.api_app = create_app(
            config=self.config,
            db=self.db,
            auth_client=self.auth_client
        )

        self.api_runner = web.AppRunner(self.api_app)
        await self.api_runner.setup()

        site = web.TCPSite(
            self.api_runner,
            self.config.api.host,
            self.config.api.port
        )
        await site.start()

        logger.info("=" * 60)
        logger.info("Service started successfully!")
        logger.info(f"API server running at http://{self.config.api.host}:{self.config.api.port}")
        logger.info(f"PayFast process URL: {self.config.payfast.process_url}")
        logger.info("=" * 60)

    async def stop(self) -> None:
        """Stop all services gracefully."""
        logger.info("Initiating graceful shutdown...")

        # Stop accepting new requests
        if self.api_runner:
            await self.api_runner.cleanup()

        if self.auth_client:
            await self.auth_client.stop()

        # Close database
        if self.db:
            await self.db.disconnect()

        logger.info("Shutdown complete")
        self._shutdown_event.set()

    async def run(self) -> None:
        """Run the service until shutdown signal."""
        await self.start()

        # Wait for shutdown signal
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request service shutdown."""
        asyncio.create_task(self.stop())


def handle_signal(service: BillingService, sig: signal.Signals) -> None:
    """Handle shutdown signals."""
    logger.info(f"Received signal {sig.name}, initiating shutdown...")
    service.request_shutdown()


async def main() -> None:
    """Main entry point."""
    setup_logging()

    service = BillingService()

    # Set up signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda s=sig: handle_signal(service, s)
        )

    try:
        await service.run()
    except Exception as e:
        logger.error(f"Service error: {e}", exc_info=True)
        await service.stop()
        sys.exit(1)


if __name__ == '__main__':
    asyncio.run(main())
