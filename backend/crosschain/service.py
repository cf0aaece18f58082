"""
Service lifecycle: startup, run until signalled, graceful shutdown.
"""
from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

from .chains.registry import ChainRegistry
from .core.logging import cleanup_logging, setup_logging
from .core.settings import Settings, get_settings
from .services.engine import SyncEngine
from .storage.database import DatabaseManager

logger = logging.getLogger(__name__)


async def run(settings: Optional[Settings] = None, stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Run the synchronization engine until SIGINT/SIGTERM or `stop_event`.

    Startup order: logging, database, chain registry, engine, scheduler.
    Shutdown runs in reverse.
    """
    settings = settings or get_settings()
    setup_logging(
        log_level=settings.log_level,
        debug=settings.debug,
        environment=settings.environment,
        log_dir=settings.logs_dir,
        retention_days=settings.log_retention_days,
    )
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still ends asyncio.run
            pass

    db = DatabaseManager(settings.database_url)
    registry: Optional[ChainRegistry] = None
    engine: Optional[SyncEngine] = None
    try:
        await db.initialize(create_tables=True)
        registry = ChainRegistry.from_settings(settings)
        engine = SyncEngine(db, registry, settings=settings)
        await engine.start()

        logger.info(
            f"{settings.app_name} v{settings.version} running",
            extra={"extra_data": {"environment": settings.environment}},
        )
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        if engine is not None:
            await engine.stop()
        if registry is not None:
            await registry.close()
        await db.close()
        cleanup_logging()


__all__ = ["run"]
