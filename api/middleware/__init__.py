"""Middleware module for the API."""

from api.middleware.request_context import REQUEST_ID_HEADER, RequestContextMiddleware

__all__ = [
    "REQUEST_ID_HEADER",
    "RequestContextMiddleware",
]
