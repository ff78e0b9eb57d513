"""ephemstore API middleware package."""

from ephemstore.api.middleware.request_id import RequestIdMiddleware

__all__ = ["RequestIdMiddleware"]
