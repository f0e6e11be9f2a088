"""Tests for the metrics collector module."""

import asyncio
import logging
import time

import pytest

from utils.metrics import MetricsCollector, get_metrics, reset_metrics, timed


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_singleton_pattern(self):
        """Test that MetricsCollector is a singleton."""
        assert MetricsCollector() is MetricsCollector()
        assert get_metrics() is MetricsCollector()

    def test_reset_creates_new_instance(self):
        """Test that reset_metrics drops the singleton."""
        first = get_metrics()
        first.increment("cache.miss")

        reset_metrics()

        assert get_metrics() is not first
        assert get_metrics().get_count("cache.miss") == 0

    def test_install_custom_collector(self):
        """Test that get_metrics can install a collector."""
        collector = object.__new__(MetricsCollector)
        collector._initialize()

        assert get_metrics(collector) is collector
        assert get_metrics() is collector

    def test_start_stop_timer(self):
        """Test basic timer start/stop functionality."""
        metrics = get_metrics()

        timer_id = metrics.start_timer("esi.request")
        time.sleep(0.01)
        duration = metrics.stop_timer(timer_id)

        assert duration >= 10
        assert metrics.get_stats("esi.request")["count"] == 1

    def test_stop_unknown_timer_raises(self):
        """Test that stopping a non-existent timer raises ValueError."""
        with pytest.raises(ValueError, match="Timer ID not found"):
            get_metrics().stop_timer("nope")

    def test_time_operation_records_on_error(self):
        """Test that the context manager records even when the body raises."""
        metrics = get_metrics()

        with pytest.raises(RuntimeError):
            with metrics.time_operation("token.refresh"):
                raise RuntimeError("invalid_grant")

        assert metrics.get_stats("token.refresh")["count"] == 1

    def test_counters(self):
        """Test counter increments."""
        metrics = get_metrics()

        metrics.increment("cache.memory_hit")
        metrics.increment("cache.memory_hit", 2)

        assert metrics.get_count("cache.memory_hit") == 3
        assert metrics.get_count("cache.never") == 0
        assert metrics.get_all_counters() == {"cache.memory_hit": 3}

    def test_get_stats(self):
        """Test statistics calculation."""
        metrics = get_metrics()
        for value in range(1, 101):
            metrics.record("names.resolve_batch", float(value))

        stats = metrics.get_stats("names.resolve_batch")

        assert stats["count"] == 100
        assert stats["min"] == 1.0
        assert stats["max"] == 100.0
        assert stats["avg"] == 50.5
        assert stats["p50"] == 51.0
        assert stats["p95"] == 96.0

    def test_empty_stats(self):
        """Test statistics for an unrecorded metric."""
        assert get_metrics().get_stats("sync.cycle") == {
            "count": 0,
            "min": 0.0,
            "max": 0.0,
            "avg": 0.0,
            "p50": 0.0,
            "p95": 0.0,
        }

    def test_clear(self):
        """Test clearing all metrics."""
        metrics = get_metrics()
        metrics.record("esi.request", 1.0)
        metrics.increment("cache.miss")

        metrics.clear()

        assert metrics.get_all_metrics() == {}
        assert metrics.get_all_counters() == {}

    def test_report(self, caplog):
        """Test report generation grouped by category."""
        metrics = get_metrics()
        metrics.record("esi.request", 12.5)
        metrics.record("cache.lookup", 0.5)
        metrics.increment("cache.miss")

        with caplog.at_level(logging.INFO):
            report = metrics.report(logging.getLogger("metrics-test"))

        assert "ESI ACCESS LAYER METRICS" in report
        assert "[ESI]" in report
        assert "[CACHE]" in report
        assert "cache.miss=1" in report
        assert "[COUNTERS]" in caplog.text

    def test_empty_report(self):
        """Test report with no metrics."""
        assert "No metrics collected." in get_metrics().report()


class TestTimedDecorator:
    """Tests for the timed decorator."""

    def test_sync_function(self):
        """Test timing a sync function."""

        @timed("sync.summary")
        def summarize():
            return 42

        assert summarize() == 42
        assert get_metrics().get_stats("sync.summary")["count"] == 1

    @pytest.mark.asyncio
    async def test_async_function(self):
        """Test timing an async function."""

        @timed("esi.fetch")
        async def fetch():
            await asyncio.sleep(0.01)
            return "data"

        assert await fetch() == "data"
        assert get_metrics().get_stats("esi.fetch")["count"] == 1

    def test_default_operation_name(self):
        """Test that the qualified function name is used by default."""

        @timed()
        def helper():
            return None

        helper()

        names = list(get_metrics().get_all_metrics())
        assert len(names) == 1
        assert names[0].endswith("helper")
