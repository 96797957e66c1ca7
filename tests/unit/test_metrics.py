"""
Unit tests for the metrics collector.

Tests cover:
- Counter updates and derived rates
- Processing time statistics over the sliding window
- Throughput over a trailing window
- Prometheus exposition
"""

import threading

import pytest

from search_sync.monitoring import MetricsCollector


class TestMetricsCollector:
    """Test cases for MetricsCollector counters."""

    def test_initial_state(self, metrics):
        snapshot = metrics.get_metrics()

        assert snapshot == {
            "messagesReceived": 0,
            "messagesProcessed": 0,
            "messagesFailed": 0,
            "averageProcessingTime": 0.0,
            "errorRate": 0.0,
            "lastProcessedAt": None,
        }
        assert metrics.get_performance_stats() is None

    def test_average_and_error_rate(self, metrics):
        metrics.record_message_processed(100)
        metrics.record_message_processed(200)
        metrics.record_message_failed("boom", 500)

        snapshot = metrics.get_metrics()

        assert snapshot["messagesProcessed"] == 2
        assert snapshot["messagesFailed"] == 1
        assert snapshot["averageProcessingTime"] == pytest.approx(266.67, abs=0.01)
        assert snapshot["errorRate"] == pytest.approx(1 / 3)
        assert snapshot["lastProcessedAt"] is not None

    def test_received_counts(self, metrics):
        metrics.record_message_received()
        metrics.record_message_received(9)
        assert metrics.get_metrics()["messagesReceived"] == 10

    def test_failure_without_duration(self, metrics):
        metrics.record_message_failed("invalid")

        snapshot = metrics.get_metrics()
        assert snapshot["messagesFailed"] == 1
        assert snapshot["averageProcessingTime"] == 0.0
        assert snapshot["errorRate"] == 1.0

    def test_record_batch(self, metrics):
        metrics.record_batch(processed=8, failed=2, duration_ms=40)

        snapshot = metrics.get_metrics()
        assert snapshot["messagesProcessed"] == 8
        assert snapshot["messagesFailed"] == 2
        assert snapshot["averageProcessingTime"] == 40
        assert snapshot["errorRate"] == pytest.approx(0.2)

    def test_window_is_bounded(self):
        metrics = MetricsCollector(window_size=3)
        for duration in (1000, 1, 2, 3):
            metrics.record_message_processed(duration)

        assert metrics.get_metrics()["averageProcessingTime"] == pytest.approx(2)
        assert metrics.get_metrics()["messagesProcessed"] == 4

    def test_reset(self, metrics):
        metrics.record_message_received(3)
        metrics.record_message_processed(10)
        metrics.record_message_failed("x", 20)

        metrics.reset()

        assert metrics.get_metrics()["messagesReceived"] == 0
        assert metrics.get_metrics()["lastProcessedAt"] is None
        assert metrics.get_performance_stats() is None

    def test_concurrent_updates(self, metrics):
        def worker():
            for _ in range(500):
                metrics.record_message_received()
                metrics.record_message_processed(1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = metrics.get_metrics()
        assert snapshot["messagesReceived"] == 2000
        assert snapshot["messagesProcessed"] == 2000


class TestPerformanceStats:
    """Test cases for processing time distribution."""

    def test_distribution(self, metrics):
        for duration in range(1, 101):
            metrics.record_message_processed(duration)

        stats = metrics.get_performance_stats()

        assert stats["count"] == 100
        assert stats["min"] == 1
        assert stats["max"] == 100
        assert stats["average"] == pytest.approx(50.5)
        assert stats["median"] == pytest.approx(50.5)
        assert stats["p95"] == 96
        assert stats["p99"] == 100

    def test_single_sample(self, metrics):
        metrics.record_message_processed(7)

        stats = metrics.get_performance_stats()
        assert stats["min"] == stats["max"] == stats["p99"] == 7


class TestThroughput:
    """Test cases for trailing-window throughput."""

    def test_throughput(self, metrics):
        metrics.record_batch(processed=60, failed=0, duration_ms=5)

        stats = metrics.get_throughput_stats(window_ms=60000)

        assert stats["windowMs"] == 60000
        assert stats["messagesPerSecond"] == pytest.approx(1.0)
        assert stats["messagesPerMinute"] == pytest.approx(60.0)
        assert stats["successRate"] == 1.0

    def test_success_rate_in_window(self, metrics):
        metrics.record_batch(processed=3, failed=1, duration_ms=5)

        stats = metrics.get_throughput_stats()
        assert stats["successRate"] == pytest.approx(0.75)
        assert stats["errorRate"] == pytest.approx(0.25)

    def test_empty_window(self, metrics):
        stats = metrics.get_throughput_stats()
        assert stats["messagesPerSecond"] == 0
        assert stats["successRate"] == 1.0


class TestPrometheusExport:
    """Test cases for Prometheus exposition."""

    def test_export_contains_counters(self, metrics):
        metrics.record_message_received(3)
        metrics.record_message_processed(100)
        metrics.record_message_failed("boom", 200)

        text = metrics.export_prometheus()

        assert "search_sync_messages_received_total 3.0" in text
        assert "search_sync_messages_processed_total 1.0" in text
        assert "search_sync_messages_failed_total 1.0" in text
        assert "search_sync_error_rate 0.5" in text
        assert "search_sync_processing_time_avg 150.0" in text
        assert 'search_sync_processing_time_ms{quantile="0.5"}' in text

    def test_export_without_samples(self, metrics):
        text = metrics.export_prometheus()

        assert "search_sync_messages_received_total 0.0" in text
        assert "search_sync_processing_time_ms" not in text

    def test_collectors_are_independent(self):
        first = MetricsCollector()
        second = MetricsCollector()
        first.record_message_received(5)

        assert "search_sync_messages_received_total 0.0" in second.export_prometheus()
