"""Memory monitoring and reclamation for PhotoWright.

Provides:
- Process and system memory snapshots (psutil)
- Best-effort reclamation between heavy model stages
- Memory pressure classification

The restoration pipeline runs on devices with a hard memory ceiling, so
heavy models are released and memory reclaimed between stages rather
than cached.
"""

import gc
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

# Lazy imports
_torch = None
_torch_checked = False


def _get_torch():
    """Lazy load torch; it is an optional extra used only by TorchScript models."""
    global _torch, _torch_checked
    if not _torch_checked:
        try:
            import torch
            _torch = torch
        except ImportError:
            _torch = None
        _torch_checked = True
    return _torch


class MemoryPressure(Enum):
    """Memory pressure levels."""
    LOW = "low"           # < 50% used
    MODERATE = "moderate" # 50-75% used
    HIGH = "high"         # 75-90% used
    CRITICAL = "critical" # > 90% used


@dataclass
class MemoryStats:
    """Snapshot of process and system memory."""
    process_rss_mb: float = 0.0
    system_total_mb: float = 0.0
    system_available_mb: float = 0.0
    pressure: MemoryPressure = MemoryPressure.LOW

    @property
    def system_used_mb(self) -> float:
        return max(0.0, self.system_total_mb - self.system_available_mb)

    @property
    def utilization_percent(self) -> float:
        """Calculate system utilization percentage."""
        if self.system_total_mb == 0:
            return 0.0
        return (self.system_used_mb / self.system_total_mb) * 100

    def __str__(self) -> str:
        return (
            f"rss={self.process_rss_mb:.0f}MB, "
            f"available={self.system_available_mb:.0f}/{self.system_total_mb:.0f}MB "
            f"({self.pressure.value})"
        )


def _classify(utilization: float) -> MemoryPressure:
    if utilization < 50:
        return MemoryPressure.LOW
    if utilization < 75:
        return MemoryPressure.MODERATE
    if utilization < 90:
        return MemoryPressure.HIGH
    return MemoryPressure.CRITICAL


class MemoryManager:
    """Memory snapshots and reclamation.

    Example:
        >>> manager = MemoryManager()
        >>> manager.reclaim()
        >>> print(manager.get_memory_stats())
    """

    def __init__(self, auto_gc: bool = True, flush_accelerator_cache: bool = True):
        """Initialize memory manager.

        Args:
            auto_gc: Run the garbage collector when reclaiming
            flush_accelerator_cache: Empty the CUDA allocator cache when
                PyTorch with CUDA is installed
        """
        self.auto_gc = auto_gc
        self.flush_accelerator_cache = flush_accelerator_cache
        self._lock = threading.Lock()
        self._reclaim_count = 0

    @property
    def reclaim_count(self) -> int:
        return self._reclaim_count

    def get_memory_stats(self) -> MemoryStats:
        """Get current memory statistics."""
        stats = MemoryStats()
        try:
            vm = psutil.virtual_memory()
            stats.system_total_mb = vm.total / (1024 * 1024)
            stats.system_available_mb = vm.available / (1024 * 1024)
            stats.process_rss_mb = psutil.Process().memory_info().rss / (1024 * 1024)
        except (psutil.Error, OSError) as e:
            logger.debug(f"Failed to get memory stats: {e}")
            return stats

        stats.pressure = _classify(stats.utilization_percent)
        return stats

    def reclaim(self) -> None:
        """Request a best-effort memory reclamation pass.

        Never raises; a failed accelerator flush is logged and ignored.
        """
        with self._lock:
            self._reclaim_count += 1

        if self.auto_gc:
            collected = gc.collect()
            logger.debug(f"Garbage collector freed {collected} objects")

        if not self.flush_accelerator_cache:
            return

        torch = _get_torch()
        if torch is None:
            return

        try:
            if torch.cuda.is_available():
                torch.cuda.empty_cache()
                logger.debug("Cleared CUDA memory cache")
        except RuntimeError as e:
            logger.debug(f"Failed to clear CUDA cache: {e}")

    def log_stats(self, label: str) -> MemoryStats:
        """Log a memory snapshot tagged with ``label`` and return it."""
        stats = self.get_memory_stats()
        logger.info(f"Memory {label}: {stats}")
        return stats


# =============================================================================
# Global instance
# =============================================================================

_memory_manager: Optional[MemoryManager] = None


def get_memory_manager() -> MemoryManager:
    """Get or create global memory manager instance."""
    global _memory_manager
    if _memory_manager is None:
        _memory_manager = MemoryManager()
    return _memory_manager


def reclaim_memory() -> None:
    """Convenience function for a reclamation pass on the global manager."""
    get_memory_manager().reclaim()
