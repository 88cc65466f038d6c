#!/usr/bin/env python3
"""
M-Pesa Callback Service.

Serves the STK push callback endpoint and reconciles each delivered
notification against pending orders in the configured database.

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
from typing import List, Optional

from aiohttp import web

from config import config
from database.db import Database
from services.reconciler import PaymentReconciler
from api.callback_api import create_app

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Log to stdout and, when LOG_FILE is set, to that file as well."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_file = config.logging.file
    if log_file:
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers
    )

    for noisy in ('aiohttp.access', 'asyncio', 'aiosqlite', 'asyncpg'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class CallbackService:
    """
    Owns the order store connection and the HTTP server.

    The store is opened once in start() and shared by every request
    through the reconciler.
    """

    def __init__(self):
        self.db: Optional[Database] = None
        self.reconciler: Optional[PaymentReconciler] = None
        self.runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        errors = config.validate()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError("Invalid configuration")

        logger.info(f"Starting {config.service.name}")

        self.db = Database()
        await self.db.connect()
        if config.database.init_schema:
            await self.db.init_schema()

        self.reconciler = PaymentReconciler(self.db)
        app = create_app(self.reconciler, callback_path=config.api.callback_path)

        self.runner = web.AppRunner(app, shutdown_timeout=config.service.shutdown_timeout)
        await self.runner.setup()
        await web.TCPSite(self.runner, config.api.host, config.api.port).start()

        logger.info(
            f"Listening for callbacks on http://{config.api.host}:{config.api.port}"
            f"{config.api.callback_path}"
        )

    async def stop(self) -> None:
        """Stop accepting requests, then release the store."""
        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        if self.db:
            await self.db.disconnect()
            self.db = None

        if self.reconciler:
            logger.info(f"Reconciliation stats: {self.reconciler.get_stats()}")

        logger.info("Shutdown complete")


async def main() -> None:
    setup_logging()

    service = CallbackService()
    stop_requested = asyncio.Event()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, shutting down")
        stop_requested.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        await service.start()
        await stop_requested.wait()
    except Exception as e:
        logger.error(f"Service error: {e}", exc_info=True)
        await service.stop()
        sys.exit(1)

    await service.stop()


if __name__ == '__main__':
    asyncio.run(main())
