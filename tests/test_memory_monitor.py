"""Tests for MemoryMonitor"""

import logging
from unittest.mock import patch

from hybrid_extract.memory_monitor import MemoryMonitor, MemorySnapshot


def snapshot(rss_mb):
    return MemorySnapshot(timestamp=None, rss_mb=rss_mb, available_mb=1024.0)


class TestMemoryMonitor:
    def test_start_and_stop(self):
        monitor = MemoryMonitor()

        start = monitor.start_tracking("ocr_dispatch")
        final = monitor.stop_tracking()

        assert start.rss_mb > 0
        assert final is not None
        assert set(monitor.snapshots) == {"ocr_dispatch_start", "ocr_dispatch_end"}
        assert monitor.tracking_label is None

    def test_stop_without_start(self):
        assert MemoryMonitor().stop_tracking() is None

    def test_growth_warning(self, caplog):
        monitor = MemoryMonitor(leak_warning_percent=10.0)

        with patch.object(monitor, '_get_snapshot', side_effect=[snapshot(100.0), snapshot(150.0)]):
            monitor.start_tracking("ocr_dispatch")
            with caplog.at_level(logging.WARNING, logger="hybrid_extract.memory_monitor"):
                monitor.stop_tracking()

        assert "Memory grew by 50.00MB" in caplog.text

    def test_small_growth_is_quiet(self, caplog):
        monitor = MemoryMonitor(leak_warning_percent=10.0)

        with patch.object(monitor, '_get_snapshot', side_effect=[snapshot(100.0), snapshot(105.0)]):
            monitor.start_tracking("ocr_dispatch")
            with caplog.at_level(logging.WARNING, logger="hybrid_extract.memory_monitor"):
                monitor.stop_tracking()

        assert "Memory grew" not in caplog.text

    def test_release_collects(self):
        assert MemoryMonitor().release() >= 0
