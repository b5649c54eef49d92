"""
Explicit tracing context for job pipelines.

A ``Trace`` is created per task run and passed down to every step; steps
open named spans and attach key/value attributes to them. Spans are written
to the standard logger and kept on the trace so callers (and tests) can
inspect what happened without any global tracer state.
"""
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class Span:
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    duration_ms: float | None = None
    error: str | None = None

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


def _fmt(attributes: dict[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in attributes.items())


class Trace:
    """Collects spans for one task run. Base attributes are copied into every span."""

    def __init__(self, name: str, log: logging.Logger | None = None, **attributes: Any):
        self.name = name
        self.attributes = dict(attributes)
        self.spans: list[Span] = []
        self._log = log or logger

    @contextmanager
    def span(self, name: str, **attributes: Any) -> Iterator[Span]:
        span = Span(name=name, attributes={**self.attributes, **attributes})
        self.spans.append(span)
        started = time.perf_counter()
        self._log.debug("[%s] %s started %s", self.name, name, _fmt(span.attributes))
        try:
            yield span
        except Exception as exc:
            span.error = str(exc) or type(exc).__name__
            span.set_attribute("error", span.error)
            self._log.error("[%s] %s failed: %s %s", self.name, name, span.error, _fmt(span.attributes))
            raise
        finally:
            span.duration_ms = round((time.perf_counter() - started) * 1000, 1)
        self._log.info(
            "[%s] %s finished in %.1fms %s", self.name, name, span.duration_ms, _fmt(span.attributes)
        )

    def get(self, name: str) -> Span | None:
        """Return the most recent span with ``name``."""
        for span in reversed(self.spans):
            if span.name == name:
                return span
        return None
