"""Lifecycle management for the heavy restoration models.

The degradation encoder and the denoiser do not fit in device memory
together. :class:`ResourceLifecycleManager` owns both and enforces:

1. A model is only reachable while its resource is ``LOADED``.
2. At most one heavy resource is loaded at any instant.
3. Every acquisition is scoped: the model is unloaded and a memory
   reclamation pass requested on every exit path (success, exception,
   cancellation).

Example:
    >>> lifecycle = ResourceLifecycleManager(encoder_loader, denoiser_loader)
    >>> with lifecycle.acquire(ResourceKind.ENCODER) as encoder:
    ...     outputs = encoder.encode(image)
    >>> # encoder is unloaded and memory reclaimed here
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

from ..exceptions import (
    ModelUnavailableError,
    OutOfMemoryError,
    ResourceStateError,
    is_out_of_memory,
)
from .memory import MemoryManager, get_memory_manager

logger = logging.getLogger(__name__)


class ResourceKind(Enum):
    """The heavy models managed by the lifecycle manager."""
    ENCODER = "encoder"
    DENOISER = "denoiser"


class ResourceState(Enum):
    """Load state of a model resource."""
    UNLOADED = "unloaded"
    LOADED = "loaded"


class LifecycleAction(Enum):
    """Lifecycle transitions reported to listeners."""
    ACQUIRE = "acquire"
    RELEASE = "release"
    RECLAIM = "reclaim"


@dataclass(frozen=True)
class LifecycleEvent:
    """One lifecycle transition."""
    kind: Optional[ResourceKind]
    action: LifecycleAction
    timestamp: datetime = field(default_factory=datetime.now)


LifecycleListener = Callable[[LifecycleEvent], None]


class ModelLoader(Protocol):
    """Creates and destroys one model instance."""

    name: str

    def load(self) -> Any:
        """Load the model and return it."""
        ...

    def unload(self, model: Any) -> None:
        """Release everything held by ``model``."""
        ...


class ModelResource:
    """A model with an explicit UNLOADED/LOADED lifecycle.

    The wrapped model is only handed out while loaded; there is no
    "call if not None" path.
    """

    def __init__(self, kind: ResourceKind, loader: ModelLoader):
        self.kind = kind
        self.loader = loader
        self._model: Any = None
        self._state = ResourceState.UNLOADED
        self._load_time_seconds = 0.0

    @property
    def name(self) -> str:
        return getattr(self.loader, "name", self.kind.value)

    @property
    def state(self) -> ResourceState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._state == ResourceState.LOADED

    @property
    def load_time_seconds(self) -> float:
        return self._load_time_seconds

    @property
    def model(self) -> Any:
        """The loaded model.

        Raises:
            ResourceStateError: If the resource is not loaded
        """
        if self._state != ResourceState.LOADED:
            raise ResourceStateError(
                f"Model '{self.name}' used while {self._state.value}",
                model_name=self.name,
            )
        return self._model

    def load(self) -> Any:
        """Load the model.

        Raises:
            ResourceStateError: If already loaded
            OutOfMemoryError: If loading exhausted memory
            ModelUnavailableError: If the model failed to initialize
        """
        if self._state == ResourceState.LOADED:
            raise ResourceStateError(f"Model '{self.name}' is already loaded", model_name=self.name)

        start = time.perf_counter()
        try:
            model = self.loader.load()
        except (ModelUnavailableError, OutOfMemoryError):
            raise
        except Exception as e:
            if is_out_of_memory(e):
                raise OutOfMemoryError(
                    f"Out of memory loading model '{self.name}'",
                    stage=f"load_{self.kind.value}",
                    cause=e,
                ) from e
            raise ModelUnavailableError(
                f"Failed to initialize model '{self.name}': {e}",
                model_name=self.name,
                cause=e,
            ) from e

        if model is None:
            raise ModelUnavailableError(
                f"Loader for '{self.name}' returned no model",
                model_name=self.name,
            )

        self._model = model
        self._state = ResourceState.LOADED
        self._load_time_seconds = time.perf_counter() - start
        logger.info(f"Loaded {self.kind.value} '{self.name}' in {self._load_time_seconds:.2f}s")
        return model

    def unload(self) -> None:
        """Unload the model. A no-op when already unloaded."""
        if self._state == ResourceState.UNLOADED:
            return

        model, self._model = self._model, None
        self._state = ResourceState.UNLOADED
        try:
            self.loader.unload(model)
        except Exception as e:
            # unload errors are logged, never raised
            logger.warning(f"Error while unloading '{self.name}': {e}")
        finally:
            del model
        logger.info(f"Unloaded {self.kind.value} '{self.name}'")


class ResourceLifecycleManager:
    """Owns the encoder and denoiser and sequences their residency.

    Sequence per request: acquire encoder -> extract -> release encoder
    and reclaim -> acquire denoiser -> sample -> release denoiser and
    reclaim.
    """

    def __init__(
        self,
        encoder_loader: ModelLoader,
        denoiser_loader: ModelLoader,
        memory_manager: Optional[MemoryManager] = None,
    ):
        """Initialize lifecycle manager.

        Args:
            encoder_loader: Loader for the degradation encoder
            denoiser_loader: Loader for the denoiser
            memory_manager: Reclamation backend (global manager if None)
        """
        self._resources: Dict[ResourceKind, ModelResource] = {
            ResourceKind.ENCODER: ModelResource(ResourceKind.ENCODER, encoder_loader),
            ResourceKind.DENOISER: ModelResource(ResourceKind.DENOISER, denoiser_loader),
        }
        self.memory = memory_manager or get_memory_manager()
        self._lock = threading.Lock()
        self._listeners: List[LifecycleListener] = []

    def resource(self, kind: ResourceKind) -> ModelResource:
        return self._resources[kind]

    @property
    def loaded(self) -> List[ResourceKind]:
        """Kinds currently resident in memory."""
        return [kind for kind, res in self._resources.items() if res.is_loaded]

    def add_listener(self, listener: LifecycleListener) -> None:
        """Register a callback for lifecycle transitions."""
        self._listeners.append(listener)

    def remove_listener(self, listener: LifecycleListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, kind: Optional[ResourceKind], action: LifecycleAction) -> None:
        event = LifecycleEvent(kind=kind, action=action)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Lifecycle listener failed: {e}")

    @contextmanager
    def acquire(self, kind: ResourceKind) -> Iterator[Any]:
        """Load ``kind`` for the duration of the ``with`` block.

        Raises:
            ResourceStateError: If another heavy model is still loaded
            ModelUnavailableError: If the model failed to initialize
            OutOfMemoryError: If loading exhausted memory
        """
        resource = self._resources[kind]
        with self._lock:
            others = [k for k in self.loaded if k != kind]
            if others or resource.is_loaded:
                raise ResourceStateError(
                    f"Cannot acquire {kind.value}: "
                    f"{', '.join(k.value for k in others or [kind])} still loaded",
                    model_name=resource.name,
                )
            try:
                model = resource.load()
            except BaseException:
                self._reclaim()
                raise
            self._notify(kind, LifecycleAction.ACQUIRE)

        try:
            yield model
        finally:
            self.release(kind)

    def release(self, kind: ResourceKind) -> None:
        """Unload ``kind`` (if loaded) and request memory reclamation."""
        resource = self._resources[kind]
        if not resource.is_loaded:
            return
        resource.unload()
        self._notify(kind, LifecycleAction.RELEASE)
        self._reclaim()

    def release_all(self) -> None:
        """Unload every resident model."""
        for kind in self.loaded:
            self.release(kind)

    def _reclaim(self) -> None:
        self.memory.reclaim()
        self._notify(None, LifecycleAction.RECLAIM)
