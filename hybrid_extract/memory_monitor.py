"""
Memory monitoring around the OCR phase.

Rasterized pages are the largest transient allocation of a run; RSS is
sampled before dispatch and after the image buffers are released.
"""

import gc
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

import psutil

logger = logging.getLogger(__name__)


@dataclass
class MemorySnapshot:
    """Process memory at a point in time."""
    timestamp: datetime
    rss_mb: float  # Resident Set Size in MB
    available_mb: float  # Available system memory in MB


class MemoryMonitor:
    """
    Track RSS across a phase of work.

    Usage:
        monitor = MemoryMonitor()
        monitor.start_tracking("ocr_dispatch")
        # ... do work ...
        monitor.release()
        monitor.stop_tracking()
    """

    def __init__(self, leak_warning_percent: float = 10.0):
        self.process = psutil.Process()
        self.leak_warning_percent = leak_warning_percent
        self.snapshots: Dict[str, MemorySnapshot] = {}
        self.tracking_label: Optional[str] = None
        self.start_snapshot: Optional[MemorySnapshot] = None

    def _get_snapshot(self) -> MemorySnapshot:
        return MemorySnapshot(
            timestamp=datetime.now(),
            rss_mb=self.process.memory_info().rss / (1024 * 1024),
            available_mb=psutil.virtual_memory().available / (1024 * 1024)
        )

    def start_tracking(self, label: str) -> MemorySnapshot:
        self.tracking_label = label
        self.start_snapshot = self._get_snapshot()
        self.snapshots[f"{label}_start"] = self.start_snapshot

        logger.debug(
            f"Memory tracking started for '{label}': "
            f"RSS={self.start_snapshot.rss_mb:.2f}MB, "
            f"Available={self.start_snapshot.available_mb:.2f}MB"
        )
        return self.start_snapshot

    def release(self) -> int:
        """Run garbage collection; returns number of objects collected"""
        collected = gc.collect()
        logger.debug(f"Garbage collection freed {collected} objects")
        return collected

    def stop_tracking(self) -> Optional[MemorySnapshot]:
        """
        Take the final snapshot and warn if RSS grew noticeably.

        Returns:
            Final snapshot, or None if tracking was never started
        """
        if not self.tracking_label or not self.start_snapshot:
            return None

        final = self._get_snapshot()
        self.snapshots[f"{self.tracking_label}_end"] = final

        delta_mb = final.rss_mb - self.start_snapshot.rss_mb
        delta_percent = (
            (final.rss_mb / self.start_snapshot.rss_mb - 1) * 100
            if self.start_snapshot.rss_mb > 0 else 0.0
        )

        logger.debug(
            f"Memory tracking stopped for '{self.tracking_label}': "
            f"RSS={final.rss_mb:.2f}MB ({delta_mb:+.2f}MB, {delta_percent:+.1f}%)"
        )

        if delta_mb > 0 and delta_percent > self.leak_warning_percent:
            logger.warning(
                f"Memory grew by {delta_mb:.2f}MB ({delta_percent:.1f}%) "
                f"during '{self.tracking_label}'"
            )

        self.tracking_label = None
        self.start_snapshot = None
        return final
