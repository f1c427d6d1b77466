"""
Process Resource Snapshot.

Point-in-time CPU and RAM readings for the /health endpoint and the
startup log line. Uses psutil for the current process and system memory.

Usage:
    from tts_relay.core.resources import get_sampler

    snapshot = get_sampler().sample()
    print(snapshot.to_dict())
"""
from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import psutil


@dataclass
class ResourceSnapshot:
    """
    Snapshot of resource usage.

    Attributes:
        cpu_percent: Process CPU utilization since the previous sample
            (can exceed 100 on multi-core systems).
        ram_used_mb: Process resident set size in megabytes.
        ram_available_mb: System-wide available RAM in megabytes.
        threads: Number of threads in the process.
    """
    cpu_percent: float = 0.0
    ram_used_mb: float = 0.0
    ram_available_mb: float = 0.0
    threads: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_percent": round(self.cpu_percent, 1),
            "ram_used_mb": round(self.ram_used_mb, 1),
            "ram_available_mb": round(self.ram_available_mb, 1),
            "threads": self.threads,
        }


class ResourceSampler:
    """Thread-safe psutil sampler for the current process."""

    def __init__(self):
        self._process = psutil.Process()
        self._lock = threading.Lock()
        # Prime cpu_percent so the first real sample is meaningful
        self._process.cpu_percent(interval=None)

    def sample(self) -> ResourceSnapshot:
        """Take a snapshot of current resource usage."""
        with self._lock:
            try:
                cpu_percent = self._process.cpu_percent(interval=None)
            except psutil.Error:
                cpu_percent = 0.0

            try:
                mem_info = self._process.memory_info()
                ram_used_mb = mem_info.rss / (1024 * 1024)
                ram_available_mb = psutil.virtual_memory().available / (1024 * 1024)
            except psutil.Error:
                ram_used_mb = 0.0
                ram_available_mb = 0.0

            try:
                threads = self._process.num_threads()
            except psutil.Error:
                threads = 0

            return ResourceSnapshot(
                cpu_percent=cpu_percent,
                ram_used_mb=ram_used_mb,
                ram_available_mb=ram_available_mb,
                threads=threads,
            )


_sampler: Optional[ResourceSampler] = None
_sampler_lock = threading.Lock()


def get_sampler() -> ResourceSampler:
    """Get or create the global ResourceSampler (thread-safe lazy singleton)."""
    global _sampler
    if _sampler is None:
        with _sampler_lock:
            if _sampler is None:
                _sampler = ResourceSampler()
    return _sampler


def reset_sampler() -> None:
    """Reset the global sampler (for testing)."""
    global _sampler
    with _sampler_lock:
        _sampler = None


def is_resources_enabled() -> bool:
    """Check if resource reporting is enabled (TTS_RELAY_RESOURCES_ENABLED)."""
    return os.getenv("TTS_RELAY_RESOURCES_ENABLED", "1") != "0"
