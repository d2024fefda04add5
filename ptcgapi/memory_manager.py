"""
Memory Manager Module

Tracks process memory against the configured limit and runs registered
cleanup callbacks (search cache, database connections) when usage gets
critical.
"""

import gc
import logging
import threading
from functools import wraps
from typing import Any, Callable, Dict, Optional

import psutil

from .config import MEM_LIMIT_MB, MEMORY_CRITICAL_THRESHOLD, MEMORY_WARNING_THRESHOLD

logger = logging.getLogger(__name__)


class MemoryManager:
    """
    Process memory monitor with named cleanup callbacks.
    """

    def __init__(self, limit_mb: Optional[int] = None):
        """
        Initialize the memory manager.

        Args:
            limit_mb: Memory limit in MB. If None, uses MEM_LIMIT from config.
        """
        self.limit_mb = limit_mb or MEM_LIMIT_MB
        self.limit_bytes = self.limit_mb * 1024 * 1024
        self.warning_threshold = MEMORY_WARNING_THRESHOLD
        self.critical_threshold = MEMORY_CRITICAL_THRESHOLD
        self.cleanup_callbacks: Dict[str, Callable] = {}
        self.process = psutil.Process()
        self._cleanup_count = 0
        self._lock = threading.RLock()

        logger.info(f"Memory manager initialized with limit: {self.limit_mb}MB")

    def get_current_memory_usage(self) -> Dict[str, Any]:
        """Get current memory usage statistics."""
        memory_info = self.process.memory_info()
        usage_mb = memory_info.rss / 1024 / 1024

        return {
            'rss_mb': usage_mb,
            'vms_mb': memory_info.vms / 1024 / 1024,
            'percent': self.process.memory_percent(),
            'limit_mb': self.limit_mb,
            'usage_ratio': memory_info.rss / self.limit_bytes,
            'warning_threshold': self.warning_threshold,
            'critical_threshold': self.critical_threshold,
            'cleanup_count': self._cleanup_count,
        }

    def is_memory_critical(self) -> bool:
        """Check if memory usage is at critical levels."""
        usage = self.get_current_memory_usage()
        return usage['usage_ratio'] >= self.critical_threshold

    def is_memory_warning(self) -> bool:
        """Check if memory usage is at warning levels."""
        usage = self.get_current_memory_usage()
        return usage['usage_ratio'] >= self.warning_threshold

    def register_cleanup_callback(self, name: str, callback: Callable):
        """Register a cleanup callback under a unique name."""
        self.cleanup_callbacks[name] = callback
        logger.debug(f"Registered cleanup callback: {name}")

    def force_cleanup(self):
        """Run cleanup callbacks and force garbage collection."""
        logger.info("Forcing memory cleanup...")

        for name, callback in list(self.cleanup_callbacks.items()):
            try:
                logger.debug(f"Running cleanup callback: {name}")
                callback()
            except Exception as e:
                logger.error(f"Error in cleanup callback {name}: {e}")

        collected = gc.collect()
        logger.info(f"Garbage collection freed {collected} objects")

        with self._lock:
            self._cleanup_count += 1

        usage = self.get_current_memory_usage()
        logger.info(f"Memory usage after cleanup: {usage['rss_mb']:.1f}MB ({usage['usage_ratio']:.1%})")

    def check_memory_and_cleanup(self):
        """Check memory usage and perform cleanup if necessary."""
        if self.is_memory_critical():
            usage = self.get_current_memory_usage()
            logger.warning(f"Memory usage critical: {usage['rss_mb']:.1f}MB ({usage['usage_ratio']:.1%})")
            self.force_cleanup()

            new_usage = self.get_current_memory_usage()
            if new_usage['usage_ratio'] >= self.critical_threshold:
                logger.error(f"Memory usage still critical after cleanup: {new_usage['rss_mb']:.1f}MB")

        elif self.is_memory_warning():
            usage = self.get_current_memory_usage()
            logger.info(f"Memory usage warning: {usage['rss_mb']:.1f}MB ({usage['usage_ratio']:.1%})")

    def memory_limit_decorator(self, func: Callable) -> Callable:
        """Decorator that checks memory usage after the wrapped call."""
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            finally:
                self.check_memory_and_cleanup()

        return wrapper


# Global memory manager instance
_memory_manager: Optional[MemoryManager] = None

def get_memory_manager() -> MemoryManager:
    """Get the global memory manager instance."""
    global _memory_manager
    if _memory_manager is None:
        _memory_manager = MemoryManager()
    return _memory_manager

def monitor_memory(func: Callable) -> Callable:
    """Decorator to monitor memory usage for a function."""
    memory_manager = get_memory_manager()
    return memory_manager.memory_limit_decorator(func)

def get_memory_stats() -> Dict[str, Any]:
    """Get current memory statistics."""
    return get_memory_manager().get_current_memory_usage()

def force_memory_cleanup():
    """Force memory cleanup."""
    get_memory_manager().force_cleanup()
