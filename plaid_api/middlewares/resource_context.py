"""
Resource Context Middleware

Re-reads environment overrides (a rotated DATABASE_URL, say), then
acquires the cached resources on every request and attaches them to
request.state:

    - request.state.logger: request-scoped child logger
      (request_id, method, path in its context)
    - request.state.db: database handle for the active configuration

A fail-fast configuration conflict is answered with 503 here; the process
keeps serving with the handle already in service.
"""

import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..core.errors import ConfigurationError, ServiceUnavailableError
from ..lifecycle.cache import Conflict
from ..lifecycle.dependencies import get_lifecycle


REQUEST_ID_HEADER = "X-Request-ID"


class ResourceContextMiddleware(BaseHTTPMiddleware):
    """Attach request-scoped logger and database handle."""

    async def dispatch(self, request: Request, call_next):
        lifecycle = get_lifecycle(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex

        try:
            lifecycle.refresh_config()
        except ConfigurationError as e:
            error = ServiceUnavailableError(
                "Invalid configuration in environment",
                code="CONFIGURATION_INVALID"
            )
            lifecycle.logger.error(
                "Configuration refresh failed",
                {"request_id": request_id, "err": e}
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={REQUEST_ID_HEADER: request_id}
            )

        root_logger = (await lifecycle.acquire_logger()).unwrap()
        request_logger = root_logger.child({
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        })
        request.state.logger = request_logger

        outcome = await lifecycle.acquire_database()
        if isinstance(outcome, Conflict):
            error = outcome.to_error()
            request_logger.error(
                "Database configuration conflict",
                {
                    "in_service": outcome.cached.label,
                    "requested": outcome.requested.label,
                }
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={REQUEST_ID_HEADER: request_id}
            )
        request.state.db = outcome.handle

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
