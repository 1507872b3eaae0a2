"""
Middlewares Package

- RequestTrackerMiddleware: active request count, 503 while draining
- ResourceContextMiddleware: per-request logger and database handle
- app_error_handler / unhandled_error_handler: global error rendering
"""

from .request_tracker import RequestTrackerMiddleware
from .resource_context import ResourceContextMiddleware, REQUEST_ID_HEADER
from .exception import app_error_handler, unhandled_error_handler

__all__ = [
    "RequestTrackerMiddleware",
    "ResourceContextMiddleware",
    "REQUEST_ID_HEADER",
    "app_error_handler",
    "unhandled_error_handler",
]
