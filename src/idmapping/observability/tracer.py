"""
Tracers handed to the stores and coordinators.

Components never import OpenTelemetry themselves. They take an optional
``Tracer`` and otherwise build one with ``create_tracer``:

    >>> class Resolver:
    ...     def __init__(self, tracer: Tracer | None = None, enable_tracing: bool = True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
    ...
    ...     async def find_similar(self, record):
    ...         with self._tracer.span("idmapping.reconciliation.find_similar", {ATTR_MAPPING_KIND: "corporate"}):
    ...             ...

Mapping spans carry values OpenTelemetry does not accept as attributes
(UUID target ids, composite source keys, unset labels). ``span_attributes``
turns them into strings or drops them before a real span is started.

OpenTelemetry is optional; ``OTEL_AVAILABLE`` records whether it imported.
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator, Mapping
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

try:
    import opentelemetry.trace  # noqa: F401

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False

_PRIMITIVES = (str, bool, int, float)


@runtime_checkable
class Tracer(Protocol):
    """
    Anything that opens spans for the mapping components.

    ``enabled`` tells a component whether computing span attributes is
    worth the effort.
    """

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]: ...

    @property
    def enabled(self) -> bool: ...


def should_trace(enable_tracing: bool) -> bool:
    """Whether tracing was requested and OpenTelemetry is installed."""
    return enable_tracing and OTEL_AVAILABLE


def span_attributes(attributes: Mapping[str, Any] | None) -> dict[str, str | bool | int | float]:
    """
    Make attribute values acceptable to OpenTelemetry.

    None values are dropped, tuples (composite keys) are joined with '/',
    and anything else that is not a primitive is stringified.

    Example:
        >>> span_attributes({"key": (7, 2), "label": None, "count": 3})
        {'key': '7/2', 'count': 3}
    """
    result: dict[str, str | bool | int | float] = {}
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        if isinstance(value, tuple):
            result[key] = "/".join(map(str, value))
        elif isinstance(value, _PRIMITIVES):
            result[key] = value
        else:
            result[key] = str(value)
    return result


class NullTracer:
    """Tracer used when tracing is off; spans do nothing and yield None."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by an OpenTelemetry tracer of the given name.

    Args:
        tracer_name: Instrumentation name (the component's ``__name__``)

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=span_attributes(attributes))

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Tracer for tests; remembers every span opened, with raw attributes.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("idmapping.tree.create", {"idmapping.family.name": "corporate"}):
        ...     pass
        >>> tracer.span_names
        ['idmapping.tree.create']
        >>> tracer.attributes_of("idmapping.tree.create")
        {'idmapping.family.name': 'corporate'}
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def attributes_of(self, name: str) -> dict[str, Any]:
        """
        Attributes of the first span with the given name.

        Raises:
            KeyError: If no such span was opened
        """
        for span_name, attributes in self.spans:
            if span_name == name:
                return attributes or {}
        raise KeyError(f"No span named {name!r}; opened: {self.span_names}")

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Build the tracer a component uses when none is injected.

    Returns an OpenTelemetryTracer when tracing is requested and
    OpenTelemetry is installed, a NullTracer otherwise.
    """
    if should_trace(enable_tracing):
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "Tracer",
    "create_tracer",
    "should_trace",
    "span_attributes",
]
