"""
Tests for process resource snapshots and the timing helper.
"""
from unittest.mock import patch

import psutil
import pytest

from tts_relay.core.resources import (
    ResourceSampler,
    ResourceSnapshot,
    get_sampler,
    is_resources_enabled,
    reset_sampler,
)
from tts_relay.utils.timeit import timeit


class TestResourceSnapshot:
    """Tests for ResourceSnapshot dataclass."""

    def test_default_values(self):
        snapshot = ResourceSnapshot()
        assert snapshot.cpu_percent == 0.0
        assert snapshot.threads == 0

    def test_to_dict_rounds(self):
        snapshot = ResourceSnapshot(cpu_percent=45.26, ram_used_mb=1024.55, ram_available_mb=8192.0, threads=7)
        assert snapshot.to_dict() == {
            "cpu_percent": 45.3,
            "ram_used_mb": 1024.5,
            "ram_available_mb": 8192.0,
            "threads": 7,
        }


class TestResourceSampler:
    """Tests for ResourceSampler."""

    def test_sample_reads_process(self):
        snapshot = ResourceSampler().sample()
        assert snapshot.ram_used_mb > 0
        assert snapshot.threads >= 1

    def test_psutil_errors_degrade_to_zero(self):
        sampler = ResourceSampler()
        with patch.object(sampler._process, "memory_info", side_effect=psutil.AccessDenied()):
            snapshot = sampler.sample()
        assert snapshot.ram_used_mb == 0.0

    def test_singleton(self):
        reset_sampler()
        try:
            assert get_sampler() is get_sampler()
        finally:
            reset_sampler()

    def test_enabled_flag(self, monkeypatch):
        monkeypatch.delenv("TTS_RELAY_RESOURCES_ENABLED", raising=False)
        assert is_resources_enabled() is True
        monkeypatch.setenv("TTS_RELAY_RESOURCES_ENABLED", "0")
        assert is_resources_enabled() is False


class TestTimeit:

    def test_records_timing(self):
        with timeit("block", meta={"engine": "google"}) as t:
            pass
        assert t.timing.name == "block"
        assert t.timing.seconds >= 0
        assert t.timing.meta == {"engine": "google"}

    def test_records_on_exception(self):
        t = timeit("failing")
        try:
            with t:
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert t.timing is not None

    def test_exit_without_enter(self):
        with pytest.raises(RuntimeError):
            timeit("never_entered").__exit__(None, None, None)
