"""Restoration orchestrator.

Sequences one restoration request across the heavy models::

    validate -> keep-alive -> working-size lq
             -> acquire encoder -> extract context -> release encoder
             -> cancellation check -> schedule
             -> acquire denoiser -> sample -> release denoiser
             -> close progress channel with the terminal outcome

Requests run on a single dedicated worker thread. Only one request may be
in flight per process: every orchestrator shares one ``RunGuard``, so a
second request, from any orchestrator, is rejected with an
``ALREADY_RUNNING`` failure and never touches the models.

Example:
    >>> orchestrator = RestorationOrchestrator(lifecycle, RestorationConfig(seed=0))
    >>> job = orchestrator.start(image)
    >>> for event in job.events():
    ...     print(f"{event.current_step}/{event.total_steps}")
    >>> outcome = job.result()
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, Dict, Iterator, Optional

import numpy as np

from ..config import RestorationConfig
from ..core.imaging import resize_for_inference, validate_tensor
from ..core.types import ErrorKind, ProgressEvent, RestorationOutcome
from ..exceptions import (
    AlreadyRunningError,
    InvalidInputError,
    OutOfMemoryError,
    PhotowrightError,
    is_out_of_memory,
)
from ..infrastructure.resources import ResourceKind, ResourceLifecycleManager
from ..utils.power_manager import KeepAwake
from .context import DegradationContextExtractor
from .sampler import CancelToken, ProgressCallback, ReverseSDESampler
from .schedule import get_schedule

logger = logging.getLogger(__name__)

KeepAliveFactory = Callable[[], ContextManager[Any]]

_CLOSED = object()


class ProgressChannel:
    """Single-producer, single-consumer progress stream.

    The producer ``put``s events in order and ``close``s the channel
    exactly once with the terminal outcome. The consumer iterates events
    until the close marker arrives.
    """

    def __init__(self):
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._outcome: Optional[RestorationOutcome] = None
        self._closed = threading.Event()
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def outcome(self) -> Optional[RestorationOutcome]:
        return self._outcome

    def put(self, event: ProgressEvent) -> None:
        if self._closed.is_set():
            raise RuntimeError("Progress channel is closed")
        self._queue.put(event)

    def close(self, outcome: RestorationOutcome) -> None:
        """Deliver the terminal outcome.

        Raises:
            RuntimeError: If the channel was already closed
        """
        with self._lock:
            if self._closed.is_set():
                raise RuntimeError("Progress channel already closed")
            self._outcome = outcome
            self._closed.set()
        self._queue.put(_CLOSED)

    def wait(self, timeout: Optional[float] = None) -> Optional[RestorationOutcome]:
        """Block until closed; returns the outcome (None on timeout)."""
        self._closed.wait(timeout)
        return self._outcome

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item


class RunGuard:
    """Non-blocking single-flight token."""

    def __init__(self):
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def is_active(self) -> bool:
        return self._lock.locked()


# at most one restoration (and one heavy model) per process
_PROCESS_GUARD = RunGuard()


class RestorationJob:
    """Handle for a request running on the orchestrator's worker."""

    def __init__(self, future: "Future[RestorationOutcome]", channel: ProgressChannel, token: CancelToken):
        self._future = future
        self._channel = channel
        self._token = token

    def events(self) -> Iterator[ProgressEvent]:
        """Progress events in order; ends when the outcome is available."""
        return iter(self._channel)

    def result(self, timeout: Optional[float] = None) -> RestorationOutcome:
        """Wait for the terminal outcome.

        Raises:
            concurrent.futures.TimeoutError: If ``timeout`` elapses first
        """
        return self._future.result(timeout)

    def cancel(self) -> None:
        """Request cooperative cancellation (effective at the next step)."""
        self._token.cancel()

    def done(self) -> bool:
        return self._future.done()

    @property
    def cancel_requested(self) -> bool:
        return self._token.is_cancelled


class RestorationOrchestrator:
    """Runs restoration requests one at a time.

    Args:
        lifecycle: Owner of the encoder and denoiser
        config: Engine configuration
        keep_alive_factory: Returns the context manager held for the whole
            request (KeepAwake by default, nothing when ``keep_awake`` is off)
        extractor: Context extractor (default instance if None)
        guard: Single-flight guard; the process-wide guard if None
    """

    def __init__(
        self,
        lifecycle: ResourceLifecycleManager,
        config: Optional[RestorationConfig] = None,
        keep_alive_factory: Optional[KeepAliveFactory] = None,
        extractor: Optional[DegradationContextExtractor] = None,
        guard: Optional[RunGuard] = None,
    ):
        self.lifecycle = lifecycle
        self.config = config or RestorationConfig()
        if keep_alive_factory is None:
            keep_alive_factory = KeepAwake if self.config.keep_awake else nullcontext
        self.keep_alive_factory = keep_alive_factory
        self.extractor = extractor or DegradationContextExtractor()

        self._guard = guard if guard is not None else _PROCESS_GUARD
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="photowright-restore")
        self._token: Optional[CancelToken] = None

    @property
    def is_running(self) -> bool:
        """Whether this orchestrator has a request in flight."""
        return self._token is not None

    def start(self, image: np.ndarray, num_steps: Optional[int] = None) -> RestorationJob:
        """Submit a request to the worker and return immediately."""
        channel = ProgressChannel()
        token = CancelToken()

        if not self._guard.try_acquire():
            outcome = self._rejected()
            channel.close(outcome)
            future: "Future[RestorationOutcome]" = Future()
            future.set_result(outcome)
            return RestorationJob(future, channel, token)

        self._token = token
        try:
            future = self._executor.submit(self._execute, image, num_steps, token, channel)
        except RuntimeError:
            self._token = None
            self._guard.release()
            raise
        return RestorationJob(future, channel, token)

    def restore(
        self,
        image: np.ndarray,
        num_steps: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RestorationOutcome:
        """Run a request in the calling thread."""
        if not self._guard.try_acquire():
            return self._rejected()

        token = CancelToken()
        self._token = token
        try:
            return self._run(image, num_steps, token, on_progress)
        finally:
            self._token = None
            self._guard.release()

    def cancel(self) -> None:
        """Cancel the in-flight request, if any."""
        token = self._token
        if token is not None:
            logger.info("Cancellation requested")
            token.cancel()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel any in-flight request and stop the worker."""
        self.cancel()
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "RestorationOrchestrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    def _rejected(self) -> RestorationOutcome:
        error = AlreadyRunningError("A restoration is already in progress in this process")
        logger.warning(f"Restoration request rejected: {error}")
        return RestorationOutcome.failed(error.kind, str(error))

    def _execute(
        self,
        image: np.ndarray,
        num_steps: Optional[int],
        token: CancelToken,
        channel: ProgressChannel,
    ) -> RestorationOutcome:
        try:
            outcome = self._run(image, num_steps, token, channel.put)
        finally:
            self._token = None
            self._guard.release()
        channel.close(outcome)
        return outcome

    def _run(
        self,
        image: np.ndarray,
        num_steps: Optional[int],
        token: CancelToken,
        on_progress: Optional[ProgressCallback],
    ) -> RestorationOutcome:
        """Run one request; every failure becomes an outcome."""
        steps = self.config.num_steps if num_steps is None else num_steps
        start = time.perf_counter()
        try:
            if steps < 1:
                raise InvalidInputError("num_steps must be at least 1", expected=">= 1", actual=steps)
            validate_tensor(image)

            with self.keep_alive_factory():
                outcome = self._pipeline(image, steps, token, on_progress)
        except PhotowrightError as e:
            logger.error(f"Restoration failed ({e.kind.value}): {e}")
            outcome = RestorationOutcome.failed(e.kind, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error during restoration: {e}")
            outcome = RestorationOutcome.failed(ErrorKind.INFERENCE_FAILED, f"{type(e).__name__}: {e}")

        outcome.metadata.setdefault("total_seconds", time.perf_counter() - start)
        logger.info(f"Restoration finished: {outcome.status.value}")
        return outcome

    def _pipeline(
        self,
        image: np.ndarray,
        num_steps: int,
        token: CancelToken,
        on_progress: Optional[ProgressCallback],
    ) -> RestorationOutcome:
        config = self.config
        memory = self.lifecycle.memory
        metadata: Dict[str, Any] = {"input_size": [int(image.shape[2]), int(image.shape[1])]}

        if token.is_cancelled:
            return RestorationOutcome.cancelled(metadata)

        try:
            lq = resize_for_inference(image, config.max_size)
        except Exception as e:
            if is_out_of_memory(e):
                raise OutOfMemoryError(
                    "Out of memory preparing the working image", stage="preparation", cause=e
                ) from e
            raise
        lq.setflags(write=False)
        metadata["working_size"] = [int(lq.shape[2]), int(lq.shape[1])]

        # Stage 1: degradation context
        memory.log_stats("before encoding")
        with self.lifecycle.acquire(ResourceKind.ENCODER) as encoder:
            context = self.extractor.extract(encoder, lq)
        del encoder
        memory.log_stats("after encoding")

        if token.is_cancelled:
            logger.info("Cancelled between encoding and sampling")
            return RestorationOutcome.cancelled(metadata)

        schedule = get_schedule(config.timesteps, config.max_sigma, config.eps)
        sampler = ReverseSDESampler(seed=config.seed, check_finite=config.check_finite)

        # Stage 2: reverse SDE
        with self.lifecycle.acquire(ResourceKind.DENOISER) as denoiser:
            outcome = sampler.sample(
                denoiser,
                lq,
                context,
                schedule,
                num_steps,
                on_progress=on_progress,
                cancel_token=token,
            )
        del denoiser
        memory.log_stats("after sampling")

        outcome.metadata.update(metadata)
        return outcome
