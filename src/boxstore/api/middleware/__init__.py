"""boxstore API middleware package."""

from boxstore.api.middleware.request_id import RequestIdMiddleware

__all__ = ["RequestIdMiddleware"]
