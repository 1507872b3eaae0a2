"""
Global Error Handlers

Renders AppError subclasses with their status code and body, and any other
exception as a 500. Stack traces are only included in development.
"""

import traceback
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..core.errors import AppError
from ..lifecycle.dependencies import get_lifecycle, get_request_logger


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Known application error."""
    log = get_request_logger(request)
    severity = "error" if exc.status_code >= 500 else "warn"
    log.log(severity, exc.message, {"code": exc.code, "status": exc.status_code})

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else: log with stack, answer 500."""
    log = get_request_logger(request)
    log.error("Unhandled error", {"err": exc})

    content = {"success": False, "message": "Internal Server Error"}
    if get_lifecycle(request).config.runtime.environment == "development":
        content["trace"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )

    return JSONResponse(status_code=500, content=content)
