"""
Local observability.

Spans time one pipeline step and log it; counters accumulate per component
and are reported by CapabilityIndexService.stats(). Nothing is exported.
"""

import time
from contextlib import contextmanager
from typing import Dict, Any, Iterable, Optional, Iterator

from capindex.core.logging import AsyncLogger
from capindex.core.id_generator import generate_id


class MetricsCollector:
    """
    Counters of one component, keyed "<package>.<component>.<event>".

    Timings are kept as two counters, "<name>.count" and "<name>.total_ms".
    """

    def __init__(self) -> None:
        self.metrics: Dict[str, float] = {}

    def increment(self, name: str, value: float = 1.0) -> None:
        self.metrics[name] = self.metrics.get(name, 0) + value

    def timing(self, name: str, duration_ms: float) -> None:
        self.increment(f"{name}.count")
        self.increment(f"{name}.total_ms", duration_ms)

    def get_metrics(self) -> Dict[str, float]:
        return self.metrics.copy()


def merge_metrics(collectors: Iterable[MetricsCollector]) -> Dict[str, float]:
    """Sum counters across collectors, sorted by name."""
    merged: Dict[str, float] = {}
    for collector in collectors:
        for name, value in collector.get_metrics().items():
            merged[name] = merged.get(name, 0) + value
    return dict(sorted(merged.items()))


class LocalTracer:
    """Times named operations and logs each one with a span id."""

    def __init__(self, service_name: str = "capindex") -> None:
        self.service_name = service_name
        self.logger = AsyncLogger("tracing")

    @contextmanager
    def span(
        self,
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> Iterator[None]:
        """
        Measure the enclosed block.

        With `metrics`, the duration is also added to that collector's
        "<name>.count" and "<name>.total_ms" counters.

        Usage:
        ```
        with tracer.span("graph.discovery", {"elements": 42}, self.metrics):
            ...
        ```
        """
        span_id = generate_id()
        start = time.perf_counter()

        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            if metrics is not None:
                metrics.timing(name, duration_ms)
            self.logger.debug(
                f"Span completed: {name}",
                span_id=span_id,
                duration_ms=duration_ms,
                **(attributes or {}),
            )


tracer = LocalTracer()
