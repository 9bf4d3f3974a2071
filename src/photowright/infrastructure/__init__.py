"""Infrastructure layer for PhotoWright.

Memory monitoring/reclamation and the lifecycle of the heavy models.

Example:
    >>> from photowright.infrastructure import ResourceLifecycleManager, ResourceKind
    >>> lifecycle = ResourceLifecycleManager(encoder_loader, denoiser_loader)
    >>> with lifecycle.acquire(ResourceKind.ENCODER) as encoder:
    ...     outputs = encoder.encode(image)
"""

from photowright.infrastructure.memory import (
    MemoryManager,
    MemoryPressure,
    MemoryStats,
    get_memory_manager,
    reclaim_memory,
)
from photowright.infrastructure.resources import (
    LifecycleAction,
    LifecycleEvent,
    ModelLoader,
    ModelResource,
    ResourceKind,
    ResourceLifecycleManager,
    ResourceState,
)

__all__ = [
    "MemoryManager",
    "MemoryPressure",
    "MemoryStats",
    "get_memory_manager",
    "reclaim_memory",
    "LifecycleAction",
    "LifecycleEvent",
    "ModelLoader",
    "ModelResource",
    "ResourceKind",
    "ResourceLifecycleManager",
    "ResourceState",
]
