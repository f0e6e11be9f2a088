"""Metrics collection and instrumentation for the ESI access layer.

This module provides a thread-safe metrics collector for timing upstream
calls, cache lookups, token refreshes and sync cycles.
"""

import asyncio
import logging
import statistics
import threading
import time
import uuid
from collections import defaultdict
from collections.abc import Callable
from contextlib import contextmanager
from functools import wraps
from typing import TypeVar

F = TypeVar("F", bound=Callable)


class MetricCategories:
    """Pre-defined metric category prefixes."""

    ESI = "esi"  # esi.* - proxied request timings and outcomes
    CACHE = "cache"  # cache.* - cache hits, misses and sweeps
    TOKEN = "token"  # token.* - refresh timings and failures
    NAMES = "names"  # names.* - resolver batch timings
    SYNC = "sync"  # sync.* - member audit sync cycles


class MetricsCollector:
    """Collects and reports timing metrics and counters.

    This is a thread-safe singleton.

    Usage:
        metrics = get_metrics()

        with metrics.time_operation("esi.request"):
            await proxy.call_proxy(...)

        metrics.increment("cache.memory_hit")
        stats = metrics.get_stats("esi.request")
    """

    _instance: "MetricsCollector | None" = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsCollector":
        """Create or return the singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialize()
        return cls._instance

    def _initialize(self) -> None:
        self._metrics: dict[str, list[float]] = defaultdict(list)
        self._counters: dict[str, int] = defaultdict(int)
        self._active_timers: dict[str, tuple[str, float]] = {}
        self._metrics_lock = threading.Lock()
        self._timers_lock = threading.Lock()

    def start_timer(self, operation: str) -> str:
        """Start timing an operation.

        Args:
            operation: Name of the operation being timed (e.g., "esi.request")

        Returns:
            Timer ID that should be passed to stop_timer()
        """
        timer_id = str(uuid.uuid4())
        with self._timers_lock:
            self._active_timers[timer_id] = (operation, time.perf_counter())
        return timer_id

    def stop_timer(self, timer_id: str) -> float:
        """Stop a timer and record the elapsed time.

        Args:
            timer_id: The timer ID returned from start_timer()

        Returns:
            Duration in milliseconds

        Raises:
            ValueError: If timer_id is not found
        """
        end_time = time.perf_counter()
        with self._timers_lock:
            if timer_id not in self._active_timers:
                raise ValueError(f"Timer ID not found: {timer_id}")
            operation, start_time = self._active_timers.pop(timer_id)

        duration_ms = (end_time - start_time) * 1000
        self.record(operation, duration_ms)
        return duration_ms

    @contextmanager
    def time_operation(self, operation: str):
        """Context manager for timing operations.

        Example:
            with metrics.time_operation("names.resolve_batch"):
                await resolver.resolve(batch)
        """
        timer_id = self.start_timer(operation)
        try:
            yield
        finally:
            self.stop_timer(timer_id)

    def record(self, metric: str, value: float) -> None:
        """Record a metric value."""
        with self._metrics_lock:
            self._metrics[metric].append(value)

    def increment(self, counter: str, amount: int = 1) -> None:
        """Increment a named counter."""
        with self._metrics_lock:
            self._counters[counter] += amount

    def get_count(self, counter: str) -> int:
        """Current value of a counter (0 if never incremented)."""
        with self._metrics_lock:
            return self._counters.get(counter, 0)

    def get_stats(self, metric: str) -> dict:
        """Get statistics for a metric.

        Args:
            metric: Name of the metric

        Returns:
            Dictionary with count, min, max, avg, p50 (median), and p95 percentile
        """
        with self._metrics_lock:
            values = sorted(self._metrics.get(metric, []))

        if not values:
            return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0}

        count = len(values)
        return {
            "count": count,
            "min": values[0],
            "max": values[-1],
            "avg": statistics.mean(values),
            "p50": values[min(int(count * 0.50), count - 1)],
            "p95": values[min(int(count * 0.95), count - 1)],
        }

    def get_all_metrics(self) -> dict[str, list[float]]:
        """Get a copy of all recorded timing metrics."""
        with self._metrics_lock:
            return {k: list(v) for k, v in self._metrics.items()}

    def get_all_counters(self) -> dict[str, int]:
        """Get a copy of all counters."""
        with self._metrics_lock:
            return dict(self._counters)

    def clear(self) -> None:
        """Clear all collected metrics, counters and active timers."""
        with self._metrics_lock:
            self._metrics.clear()
            self._counters.clear()
        with self._timers_lock:
            self._active_timers.clear()

    def report(self, logger: logging.Logger | None = None) -> str:
        """Generate a human-readable report of metrics and counters.

        Args:
            logger: Optional logger to write the report to

        Returns:
            Human-readable string report
        """
        lines = ["=" * 60, "ESI ACCESS LAYER METRICS", "=" * 60]

        all_metrics = self.get_all_metrics()
        all_counters = self.get_all_counters()

        if not all_metrics and not all_counters:
            lines.append("No metrics collected.")

        categories: dict[str, list[str]] = defaultdict(list)
        for name in sorted(all_metrics):
            categories[name.split(".")[0] if "." in name else "other"].append(name)

        for category in sorted(categories):
            lines.append("")
            lines.append(f"[{category.upper()}]")
            lines.append("-" * 40)
            for name in categories[category]:
                stats = self.get_stats(name)
                display_name = name.split(".", 1)[1] if "." in name else name
                lines.append(f"  {display_name}:")
                lines.append(
                    f"    count={stats['count']}, avg={stats['avg']:.2f}ms, "
                    f"p50={stats['p50']:.2f}ms, p95={stats['p95']:.2f}ms"
                )

        if all_counters:
            lines.append("")
            lines.append("[COUNTERS]")
            lines.append("-" * 40)
            for name in sorted(all_counters):
                lines.append(f"  {name}={all_counters[name]}")

        lines.append("")
        lines.append("=" * 60)

        if logger:
            for line in lines:
                logger.info(line)

        return "\n".join(lines)


def get_metrics(metrics: "MetricsCollector | None" = None) -> MetricsCollector:
    """Get the singleton MetricsCollector instance.

    Args:
        metrics: Optional MetricsCollector to install as the singleton.

    Returns:
        The global MetricsCollector instance
    """
    if metrics is not None:
        MetricsCollector._instance = metrics
        return metrics
    return MetricsCollector()


def timed(operation: str | None = None) -> Callable[[F], F]:
    """Decorator to time function execution (sync or async).

    Args:
        operation: Optional operation name. If not provided, uses the
                   function's qualified name.
    """

    def decorator(func: F) -> F:
        op_name = operation or f"{func.__module__}.{func.__qualname__}"

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            with get_metrics().time_operation(op_name):
                return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with get_metrics().time_operation(op_name):
                return func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore
        return sync_wrapper  # type: ignore

    return decorator


def reset_metrics() -> None:
    """Reset the metrics collector singleton (for tests)."""
    MetricsCollector._instance = None
