"""
Application Startup Module

Warm-up run once before the server starts accepting connections.

Initialization Order:
    1. Structured logger (acquired through its cache)
    2. Database handle (pool or stateless client, per runtime capability)

Usage:
    from plaid_api.lifecycle.startup import startup_handler

    await startup_handler(lifecycle)
"""

import logging

from .cache import Conflict
from .manager import LifecycleManager


logger = logging.getLogger(__name__)


async def startup_handler(lifecycle: LifecycleManager) -> None:
    """
    Warm up cached resources.

    Initialization failures propagate to the caller; resources built so
    far are released first.
    """
    config = lifecycle.config

    try:
        logger.info("Warming up structured logger")
        await lifecycle.acquire_logger()

        logger.info("Warming up database handle")
        outcome = await lifecycle.acquire_database()
        if isinstance(outcome, Conflict):
            raise outcome.to_error()

        lifecycle.logger.info(
            "Startup complete",
            {
                "environment": config.runtime.environment,
                "database": outcome.handle.transport,
                "drift_policy": lifecycle.database_cache.drift_policy.value,
            }
        )

    except Exception as e:
        logger.exception(f"FATAL: Startup warm-up failed: {e}")
        await _emergency_cleanup(lifecycle)
        raise


async def _emergency_cleanup(lifecycle: LifecycleManager) -> None:
    """Release whatever was built before the failure."""
    try:
        await lifecycle.release_resources()
    except Exception as e:
        logger.warning(f"Error releasing resources during emergency cleanup: {e}")
