"""Reverse SDE sampler.

Integrates the mean-reverting SDE backwards from a noisy copy of the
degraded image towards the restored image, one denoiser call per step::

    x = lq + N(0, max_sigma^2)
    for step = num_steps .. 1:
        t = timestep_for_step(step, num_steps, T)
        score = -denoiser(x, lq, t, context) / sigma_bars[t]
        drift = (thetas[t] * (lq - x) - sigmas[t]^2 * score) * dt
        x -= drift + sigmas[t] * sqrt(dt) * N(0, 1)
    return clamp(x, 0, 1)
"""

import logging
import math
import threading
import time
from enum import Enum
from typing import Callable, Optional

import numpy as np

from ..core.types import DegradationContext, ErrorKind, ProgressEvent, RestorationOutcome, RestorationState
from ..exceptions import (
    DimensionMismatchError,
    InferenceError,
    InvalidInputError,
    OutOfMemoryError,
    PhotowrightError,
    is_out_of_memory,
)
from ..models.base import NoiseDenoiser
from ..utils.logging import PhotowrightLogger
from .schedule import NoiseSchedule, timestep_for_step

logger = logging.getLogger(__name__)
step_logger = PhotowrightLogger(logger, "engine.sampler")

ProgressCallback = Callable[[ProgressEvent], None]


class SamplerState(Enum):
    """Sampler lifecycle."""
    INIT = "init"
    STEPPING = "stepping"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CancelToken:
    """Cooperative cancellation flag shared between caller and worker.

    Example:
        >>> token = CancelToken()
        >>> token.cancel()
        >>> token.is_cancelled
        True
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class ReverseSDESampler:
    """Runs the reverse SDE with a conditional noise predictor.

    Args:
        seed: Seed for the Gaussian noise generator (None = fresh entropy)
        rng: Explicit generator; takes precedence over ``seed``
        check_finite: Log a warning the first time the state goes NaN/Inf
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
        check_finite: bool = True,
    ):
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.check_finite = check_finite
        self._state = SamplerState.INIT
        self._steps_completed = 0

    @property
    def state(self) -> SamplerState:
        return self._state

    @property
    def steps_completed(self) -> int:
        return self._steps_completed

    def sample(
        self,
        denoiser: NoiseDenoiser,
        lq: np.ndarray,
        context: DegradationContext,
        schedule: NoiseSchedule,
        num_steps: int,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> RestorationOutcome:
        """Restore ``lq`` in ``num_steps`` denoiser calls.

        Never raises for denoiser failures; they are reported as a failed
        outcome.

        Raises:
            InvalidInputError: If ``num_steps`` < 1
        """
        if num_steps < 1:
            raise InvalidInputError("num_steps must be at least 1", expected=">= 1", actual=num_steps)

        self._state = SamplerState.INIT
        self._steps_completed = 0
        lq = np.asarray(lq, dtype=np.float32)
        start = time.perf_counter()

        state = RestorationState(
            x=lq + self.rng.normal(0.0, schedule.max_sigma, size=lq.shape).astype(np.float32),
            lq=lq,
        )
        x = state.x
        dt = np.float32(schedule.dt)
        sqrt_dt = np.float32(math.sqrt(schedule.dt))
        non_finite_reported = False

        self._state = SamplerState.STEPPING
        logger.info(f"Sampling {state.width}x{state.height} in {num_steps} steps")

        for step in range(num_steps, 0, -1):
            if cancel_token is not None and cancel_token.is_cancelled:
                self._state = SamplerState.CANCELLED
                logger.info(f"Sampling cancelled after {self._steps_completed}/{num_steps} steps")
                return RestorationOutcome.cancelled(self._metadata(num_steps, start))

            t = timestep_for_step(step, num_steps, schedule.T)
            step_start = time.perf_counter()
            try:
                self._step(denoiser, state, context, schedule, t, dt, sqrt_dt, step)
            except PhotowrightError as e:
                return self._fail(e.kind, str(e), num_steps, start)

            self._steps_completed += 1
            step_ms = (time.perf_counter() - step_start) * 1000
            if self._steps_completed == 1:
                logger.info(f"First step (t={t}) took {step_ms:.0f}ms")
            else:
                step_logger.step_completed(
                    self._steps_completed, num_steps, step_time_ms=step_ms, timestep=t
                )

            if self.check_finite and not non_finite_reported and not np.all(np.isfinite(x)):
                non_finite_reported = True
                logger.warning(
                    f"Non-finite values in sampler state at step "
                    f"{self._steps_completed}/{num_steps} (t={t})"
                )

            if on_progress is not None:
                on_progress(ProgressEvent(self._steps_completed, num_steps))

        np.clip(x, 0.0, 1.0, out=x)
        self._state = SamplerState.DONE
        metadata = self._metadata(num_steps, start)
        logger.info(f"Sampling finished in {metadata['elapsed_seconds']:.2f}s")
        return RestorationOutcome.success(x, metadata)

    def _step(
        self,
        denoiser: NoiseDenoiser,
        state: RestorationState,
        context: DegradationContext,
        schedule: NoiseSchedule,
        t: int,
        dt: np.float32,
        sqrt_dt: np.float32,
        step: int,
    ) -> None:
        """Advance ``state.x`` in place by one reverse step at index ``t``."""
        x, lq = state.x, state.lq
        try:
            noise = denoiser.denoise(
                x, lq, t, context.image_context, context.degradation_context
            )
        except PhotowrightError:
            raise
        except Exception as e:
            if is_out_of_memory(e):
                raise OutOfMemoryError(
                    f"Out of memory in denoiser at step {step}",
                    stage="sampling",
                    step=step,
                    cause=e,
                ) from e
            raise InferenceError(
                f"Denoiser failed at step {step}: {e}",
                step=step,
                timestep=t,
                cause=e,
            ) from e

        noise = np.asarray(noise, dtype=np.float32)
        if noise.shape != x.shape:
            raise DimensionMismatchError(
                f"Denoiser output shape {noise.shape} does not match state shape {x.shape}",
                expected=tuple(x.shape),
                actual=tuple(noise.shape),
            )

        theta = schedule.thetas[t]
        sigma = schedule.sigmas[t]
        score = -noise / schedule.sigma_bars[t]
        reverse_drift = (theta * (lq - x) - sigma * sigma * score) * dt
        dispersion = sigma * self.rng.standard_normal(size=x.shape, dtype=np.float32) * sqrt_dt
        x -= reverse_drift + dispersion

    def _fail(
        self, kind: ErrorKind, detail: str, num_steps: int, start: float
    ) -> RestorationOutcome:
        self._state = SamplerState.FAILED
        logger.error(f"Sampling failed after {self._steps_completed}/{num_steps} steps: {detail}")
        return RestorationOutcome.failed(kind, detail, self._metadata(num_steps, start))

    def _metadata(self, num_steps: int, start: float) -> dict:
        return {
            "num_steps": num_steps,
            "steps_completed": self._steps_completed,
            "elapsed_seconds": time.perf_counter() - start,
        }
