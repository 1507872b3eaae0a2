"""
Request Tracker Middleware

This middleware tracks active requests and rejects new requests during shutdown.

Features:
    - Counts active requests on the LifecycleManager
    - Rejects requests with 503 once the orchestrator leaves "running"

Usage:
    from plaid_api.middlewares.request_tracker import RequestTrackerMiddleware

    app.add_middleware(RequestTrackerMiddleware)
"""

import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..core.errors import ServiceUnavailableError
from ..lifecycle.dependencies import get_lifecycle


logger = logging.getLogger(__name__)


class RequestTrackerMiddleware(BaseHTTPMiddleware):
    """
    Middleware to track active requests and handle shutdown gracefully.

    During shutdown:
    - Rejects new incoming requests with 503
    - Existing requests are allowed to complete
    """

    async def dispatch(self, request: Request, call_next):
        """Process request with tracking."""
        lifecycle = get_lifecycle(request)

        if not lifecycle.accepting_work:
            error = ServiceUnavailableError(
                "Server is shutting down",
                code="SHUTTING_DOWN"
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={"Connection": "close"}
            )

        lifecycle.request_started()
        try:
            return await call_next(request)
        finally:
            lifecycle.request_finished()
