"""OpenTelemetry spans for storage operations.

Never export absolute filesystem paths in span attributes. Artifacts are
correlated through a SHA256 of their architecture id.
"""

from __future__ import annotations

import functools
import hashlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar, cast

from boxstore.observability.tracing import is_tracing_enabled

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def traced_storage_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace async storage operations with OpenTelemetry.

    The wrapped coroutine must take (self, location, architecture_id, ...).

    Args:
        operation: Operation name (e.g., "upload", "download", "delete").
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(
            self: Any, location: Any, architecture_id: str, *args: Any, **kwargs: Any
        ) -> Any:
            if not is_tracing_enabled():
                return await func(self, location, architecture_id, *args, **kwargs)

            try:
                from opentelemetry import trace
            except ImportError:
                return await func(self, location, architecture_id, *args, **kwargs)

            tracer = trace.get_tracer("boxstore.storage")
            with tracer.start_as_current_span(f"boxstore.storage.{operation}") as span:
                key_sha256 = hashlib.sha256(architecture_id.encode("utf-8")).hexdigest()
                span.set_attribute("boxstore.artifact_key_sha256", key_sha256)
                span.set_attribute("storage.backend", "filesystem")
                try:
                    result = await func(self, location, architecture_id, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise
                _add_result_attributes(span, result)
                return result

        return cast(F, wrapper)

    return decorator


def _add_result_attributes(span: Any, result: Any) -> None:
    """Add size/status attributes from a storage result."""
    try:
        for attr, name in (
            ("file_size", "boxstore.file_size_bytes"),
            ("is_complete", "boxstore.upload_complete"),
            ("status_code", "http.response.status_code"),
            ("content_length", "boxstore.content_length"),
        ):
            value = getattr(result, attr, None)
            if value is not None:
                span.set_attribute(name, value)
    except Exception as e:
        logger.debug("Failed to add result attributes to span: %s", e)
