"""OpenTelemetry tracing integration for object storage operations.

Spans carry only the object id, size and backend name. Display names,
content types and filesystem paths are caller-controlled or host-specific and
are never exported.

Environment Variables:
    EPHEMSTORE_OTEL_ENABLED: Set to "1" to emit spans (default: disabled)
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar, cast

from ephemstore.config import get_env_bool

logger = logging.getLogger(__name__)

EPHEMSTORE_OTEL_ENABLED_ENV = "EPHEMSTORE_OTEL_ENABLED"

F = TypeVar("F", bound=Callable[..., Any])


def _is_otel_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    return get_env_bool(EPHEMSTORE_OTEL_ENABLED_ENV, False)


def traced_storage_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace storage operations with OpenTelemetry.

    Args:
        operation: Operation name (e.g., "create", "get", "delete").

    Returns:
        Decorated function that emits spans when tracing is enabled.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            if not _is_otel_enabled():
                return func(self, *args, **kwargs)

            try:
                from opentelemetry import trace
            except ImportError:
                return func(self, *args, **kwargs)

            tracer = trace.get_tracer("ephemstore.object_store")
            with tracer.start_as_current_span(f"ephemstore.object_store.{operation}") as span:
                span.set_attribute("storage.backend", getattr(self, "backend_name", "unknown"))
                if operation in ("get", "get_metadata", "delete") and args:
                    span.set_attribute("ephemstore.object_id", str(args[0]))

                try:
                    result = func(self, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

                _add_result_attributes(span, result)
                return result

        return cast(F, wrapper)

    return decorator


def _add_result_attributes(span: Any, result: Any) -> None:
    """Add result-based attributes (id, size, purge count) to a span."""
    from ephemstore.storage.models import ObjectRecord, StoredObject

    record: ObjectRecord | None = None
    if isinstance(result, ObjectRecord):
        record = result
    elif isinstance(result, StoredObject):
        record = result.record

    if record is not None:
        span.set_attribute("ephemstore.object_id", record.id)
        span.set_attribute("ephemstore.object_size_bytes", record.size)
    elif isinstance(result, int) and not isinstance(result, bool):
        span.set_attribute("ephemstore.purged_count", result)
