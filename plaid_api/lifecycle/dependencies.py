"""
Application Dependencies Module

FastAPI dependency functions. The LifecycleManager is stored on
app.state at creation time and the request-scoped handles on
request.state by ResourceContextMiddleware.

Usage:
    from plaid_api.lifecycle.dependencies import get_db, get_request_logger

    @router.get("/habits")
    async def list_habits(
        db: Database = Depends(get_db),
        log: Logger = Depends(get_request_logger)
    ):
        ...
"""

from starlette.requests import Request

from ..core.database import Database
from ..core.errors import ServiceUnavailableError
from ..core.logger import Logger
from .manager import LifecycleManager


def get_lifecycle(request: Request) -> LifecycleManager:
    """Get the process lifecycle manager."""
    return request.app.state.lifecycle


def get_db(request: Request) -> Database:
    """Get the database handle acquired for this request."""
    db = getattr(request.state, "db", None)
    if db is None:
        raise ServiceUnavailableError("Database is not available")
    return db


def get_request_logger(request: Request) -> Logger:
    """Get the request-scoped logger, or the root logger outside a request scope."""
    request_logger = getattr(request.state, "logger", None)
    if request_logger is None:
        return get_lifecycle(request).logger
    return request_logger
