"""
Main Application Module

This module defines the FastAPI application factory.
"""

import logging
from fastapi import FastAPI

from . import __version__
from .core.errors import AppError
from .lifecycle.manager import LifecycleManager
from .routes import api_router
from .middlewares import (
    RequestTrackerMiddleware,
    ResourceContextMiddleware,
    app_error_handler,
    unhandled_error_handler,
)


logger = logging.getLogger(__name__)


def create_app(lifecycle: LifecycleManager) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        lifecycle: The process lifecycle manager

    Returns:
        Configured FastAPI app
    """
    is_development = lifecycle.config.runtime.environment == "development"

    app = FastAPI(
        title="Plaid API",
        version=__version__,
        docs_url="/docs" if is_development else None,
        redoc_url=None
    )
    app.state.lifecycle = lifecycle

    # Execution order: last added -> first executed

    # 1. Resources (request logger, database handle)
    app.add_middleware(ResourceContextMiddleware)

    # 2. Request Tracker (rejects work once draining, counts in-flight requests)
    app.add_middleware(RequestTrackerMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_router)

    logger.info("FastAPI application created")
    return app
