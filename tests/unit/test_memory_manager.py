"""
Unit tests for memory_manager.py module.

Tests memory monitoring, cleanup callbacks, and the monitoring decorator.
"""

from unittest.mock import Mock, patch

import pytest

from ptcgapi.memory_manager import (
    MemoryManager,
    force_memory_cleanup,
    get_memory_manager,
    get_memory_stats,
    monitor_memory,
)


def mock_process(rss_mb, vms_mb=None, percent=1.0):
    process = Mock()
    process.memory_info.return_value = Mock(
        rss=rss_mb * 1024 * 1024,
        vms=(vms_mb or rss_mb) * 1024 * 1024,
    )
    process.memory_percent.return_value = percent
    return process


class TestMemoryManager:
    """Test MemoryManager class functionality."""

    def test_init_with_custom_limit(self):
        manager = MemoryManager(limit_mb=256)
        assert manager.limit_mb == 256
        assert manager.limit_bytes == 256 * 1024 * 1024
        assert manager.warning_threshold == 0.8
        assert manager.critical_threshold == 0.9

    def test_init_with_configured_limit(self):
        with patch("ptcgapi.memory_manager.MEM_LIMIT_MB", 1024):
            assert MemoryManager().limit_mb == 1024

    @patch("ptcgapi.memory_manager.psutil.Process")
    def test_get_current_memory_usage(self, mock_process_class):
        mock_process_class.return_value = mock_process(100, 200, 5.0)

        usage = MemoryManager(limit_mb=512).get_current_memory_usage()

        assert usage["rss_mb"] == 100.0
        assert usage["vms_mb"] == 200.0
        assert usage["percent"] == 5.0
        assert usage["limit_mb"] == 512
        assert usage["usage_ratio"] == 100.0 / 512.0
        assert usage["cleanup_count"] == 0

    @pytest.mark.parametrize("rss_mb,warning,critical", [(50, False, False), (80, True, False), (90, True, True)])
    @patch("ptcgapi.memory_manager.psutil.Process")
    def test_thresholds(self, mock_process_class, rss_mb, warning, critical):
        mock_process_class.return_value = mock_process(rss_mb)
        manager = MemoryManager(limit_mb=100)

        assert manager.is_memory_warning() is warning
        assert manager.is_memory_critical() is critical

    def test_register_cleanup_callback_replaces_by_name(self):
        manager = MemoryManager()
        first, second = Mock(), Mock()

        manager.register_cleanup_callback("card_search_cache", first)
        manager.register_cleanup_callback("card_search_cache", second)

        assert manager.cleanup_callbacks == {"card_search_cache": second}

    @patch("ptcgapi.memory_manager.gc.collect", return_value=10)
    def test_force_cleanup_runs_callbacks(self, mock_gc_collect):
        manager = MemoryManager()
        callback = Mock()
        manager.register_cleanup_callback("cache", callback)

        manager.force_cleanup()

        callback.assert_called_once()
        mock_gc_collect.assert_called_once()
        assert manager.get_current_memory_usage()["cleanup_count"] == 1

    @patch("ptcgapi.memory_manager.gc.collect", return_value=0)
    def test_failing_callback_does_not_stop_others(self, _mock_gc_collect):
        manager = MemoryManager()
        failing = Mock(side_effect=RuntimeError("boom"))
        healthy = Mock()
        manager.register_cleanup_callback("failing", failing)
        manager.register_cleanup_callback("healthy", healthy)

        manager.force_cleanup()

        healthy.assert_called_once()

    @patch("ptcgapi.memory_manager.psutil.Process")
    def test_check_memory_and_cleanup_critical(self, mock_process_class):
        mock_process_class.return_value = mock_process(95)
        manager = MemoryManager(limit_mb=100)

        with patch.object(manager, "force_cleanup") as mock_cleanup:
            manager.check_memory_and_cleanup()

        mock_cleanup.assert_called_once()

    @patch("ptcgapi.memory_manager.psutil.Process")
    def test_check_memory_and_cleanup_warning_only_logs(self, mock_process_class):
        mock_process_class.return_value = mock_process(85)
        manager = MemoryManager(limit_mb=100)

        with patch.object(manager, "force_cleanup") as mock_cleanup:
            manager.check_memory_and_cleanup()

        mock_cleanup.assert_not_called()

    def test_decorator_checks_memory_after_exception(self):
        manager = MemoryManager()

        @manager.memory_limit_decorator
        def failing():
            raise ValueError("bad input")

        with patch.object(manager, "check_memory_and_cleanup") as mock_check:
            with pytest.raises(ValueError):
                failing()

        mock_check.assert_called_once()

    def test_decorator_preserves_metadata(self):
        manager = MemoryManager()

        @manager.memory_limit_decorator
        def sync_sets():
            """Sync sets."""
            return 2

        assert sync_sets() == 2
        assert sync_sets.__name__ == "sync_sets"
        assert sync_sets.__doc__ == "Sync sets."


class TestGlobalFunctions:
    """Test module-level helpers."""

    def test_get_memory_manager_singleton(self):
        assert get_memory_manager() is get_memory_manager()

    def test_monitor_memory(self):
        @monitor_memory
        def double(x):
            return x * 2

        assert double(4) == 8

    def test_get_memory_stats(self):
        stats = get_memory_stats()
        assert {"rss_mb", "limit_mb", "usage_ratio"} <= set(stats)

    def test_force_memory_cleanup(self):
        with patch.object(get_memory_manager(), "force_cleanup") as mock_cleanup:
            force_memory_cleanup()
        mock_cleanup.assert_called_once()
