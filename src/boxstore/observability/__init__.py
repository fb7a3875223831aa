"""boxstore observability module.

Provides opt-in OpenTelemetry tracing.
"""

from boxstore.observability.tracing import (
    TracingConfigError,
    configure_tracing,
    is_tracing_enabled,
)

__all__ = ["TracingConfigError", "configure_tracing", "is_tracing_enabled"]
