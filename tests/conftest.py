"""Shared pytest fixtures for PhotoWright tests."""
import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

import numpy as np
import pytest

from photowright.config import RestorationConfig
from photowright.infrastructure.memory import MemoryManager
from photowright.infrastructure.resources import ResourceLifecycleManager
from photowright.utils import logging as pw_logging


# ============================================================================
# Fake models
# ============================================================================

class FakeEncoder:
    """Degradation encoder returning a fixed embedding."""

    def __init__(
        self,
        outputs: Any = None,
        embedding_dim: int = 1024,
        exc: Optional[BaseException] = None,
        on_call: Optional[Callable[[], None]] = None,
    ):
        if outputs is None:
            outputs = {"combined_features": np.linspace(-1.0, 1.0, embedding_dim, dtype=np.float32)}
        self.outputs = outputs
        self.exc = exc
        self.on_call = on_call
        self.calls: List[Tuple[int, ...]] = []

    def encode(self, image):
        self.calls.append(tuple(image.shape))
        if self.on_call is not None:
            self.on_call()
        if self.exc is not None:
            raise self.exc
        return self.outputs


class FakeDenoiser:
    """Noise predictor returning a constant prediction.

    Args:
        value: Predicted noise value
        fail_at: 1-based call number that raises ``exc``
        exc: Exception raised at ``fail_at``
        shape: Output shape override (default: same as input)
        on_call: Hook invoked with the 1-based call number before predicting
    """

    def __init__(
        self,
        value: float = 0.0,
        fail_at: Optional[int] = None,
        exc: Optional[BaseException] = None,
        shape: Optional[Tuple[int, ...]] = None,
        on_call: Optional[Callable[[int], None]] = None,
    ):
        self.value = value
        self.fail_at = fail_at
        self.exc = exc
        self.shape = shape
        self.on_call = on_call
        self.timesteps: List[int] = []
        self.contexts: List[Tuple[np.ndarray, np.ndarray]] = []

    @property
    def call_count(self) -> int:
        return len(self.timesteps)

    def denoise(self, noisy, lq, timestep, image_context, degradation_context):
        self.timesteps.append(timestep)
        self.contexts.append((image_context, degradation_context))
        if self.on_call is not None:
            self.on_call(self.call_count)
        if self.fail_at is not None and self.call_count == self.fail_at:
            raise self.exc
        return np.full(self.shape or noisy.shape, self.value, dtype=np.float32)


class RecordingLoader:
    """Model loader that records load/unload calls into a shared log."""

    def __init__(self, name: str, model: Any, log: List[Tuple[str, str]], exc: Optional[BaseException] = None):
        self.name = name
        self.model = model
        self.log = log
        self.exc = exc
        self.load_count = 0
        self.unload_count = 0

    def load(self):
        self.load_count += 1
        self.log.append(("load", self.name))
        if self.exc is not None:
            raise self.exc
        return self.model

    def unload(self, model):
        self.unload_count += 1
        self.log.append(("unload", self.name))


class RecordingMemoryManager(MemoryManager):
    """Memory manager that logs reclamation passes without flushing caches."""

    def __init__(self, log: List[Tuple[str, str]]):
        super().__init__(auto_gc=False, flush_accelerator_cache=False)
        self.log = log

    def reclaim(self) -> None:
        self.log.append(("reclaim", ""))
        super().reclaim()


class FakeKeepAlive:
    """Keep-alive factory that counts acquisitions and releases."""

    def __init__(self):
        self.entered = 0
        self.exited = 0
        self._lock = threading.Lock()

    @property
    def held(self) -> bool:
        return self.entered > self.exited

    def __call__(self):
        return self

    def __enter__(self):
        with self._lock:
            self.entered += 1
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        with self._lock:
            self.exited += 1
        return False


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_logging():
    """Undo global logging configuration made by a test."""
    yield
    root = logging.getLogger(pw_logging.ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)
    pw_logging._log_config = None
    pw_logging._configured_loggers.clear()


@pytest.fixture
def event_log() -> List[Tuple[str, str]]:
    return []


@pytest.fixture
def fake_encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def fake_denoiser() -> FakeDenoiser:
    return FakeDenoiser()


@pytest.fixture
def encoder_loader(fake_encoder, event_log) -> RecordingLoader:
    return RecordingLoader("encoder", fake_encoder, event_log)


@pytest.fixture
def denoiser_loader(fake_denoiser, event_log) -> RecordingLoader:
    return RecordingLoader("denoiser", fake_denoiser, event_log)


@pytest.fixture
def memory_manager(event_log) -> RecordingMemoryManager:
    return RecordingMemoryManager(event_log)


@pytest.fixture
def lifecycle(encoder_loader, denoiser_loader, memory_manager) -> ResourceLifecycleManager:
    return ResourceLifecycleManager(encoder_loader, denoiser_loader, memory_manager)


@pytest.fixture
def keep_alive() -> FakeKeepAlive:
    return FakeKeepAlive()


@pytest.fixture
def config() -> RestorationConfig:
    """Small, fast, reproducible configuration."""
    return RestorationConfig(num_steps=10, seed=0, max_size=64, keep_awake=False)


@pytest.fixture
def small_image() -> np.ndarray:
    rng = np.random.default_rng(1234)
    return rng.uniform(0.0, 1.0, size=(3, 32, 48)).astype(np.float32)
