"""Cosine noise schedule for the mean-reverting reverse SDE.

The schedule is a pure function of ``(T, max_sigma, eps)`` and is
memoized for the lifetime of the process. Index 0 is the clean end of
the process; the sampler walks from index T-1 down toward 0.
"""

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import List

import numpy as np

from ..config import DEFAULT_EPS, DEFAULT_MAX_SIGMA, DEFAULT_TIMESTEPS
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

COSINE_OFFSET = 0.008


@dataclass(frozen=True, eq=False)
class NoiseSchedule:
    """Precomputed per-timestep SDE coefficients.

    Attributes:
        T: Number of timesteps
        thetas: Mean-reversion rate per timestep (>= 0)
        thetas_cumsum: Cumulative thetas, shifted so index 0 is 0
        dt: Integration step (> 0)
        sigmas: Diffusion coefficient per timestep
        sigma_bars: Marginal noise std per timestep, 0 at index 0 and
            strictly increasing with the index
        max_sigma: Maximum noise level
        eps: Terminal noise fraction
    """

    T: int
    thetas: np.ndarray
    thetas_cumsum: np.ndarray
    dt: float
    sigmas: np.ndarray
    sigma_bars: np.ndarray
    max_sigma: float
    eps: float

    def __post_init__(self) -> None:
        for name in ("thetas", "thetas_cumsum", "sigmas", "sigma_bars"):
            getattr(self, name).setflags(write=False)

    def summary(self) -> dict:
        """Scalar overview of the schedule for logging and the CLI."""
        return {
            "T": self.T,
            "max_sigma": float(self.max_sigma),
            "eps": float(self.eps),
            "dt": float(self.dt),
            "theta_min": float(self.thetas.min()),
            "theta_max": float(self.thetas.max()),
            "sigma_bar_max": float(self.sigma_bars[-1]),
        }


def _cosine_alphas_cumprod(timesteps: int, s: float = COSINE_OFFSET) -> np.ndarray:
    steps = timesteps + 1
    x = np.arange(steps, dtype=np.float32)
    angle = ((x / np.float32(timesteps)) + np.float32(s)) / np.float32(1 + s)
    angle = angle * np.float32(math.pi * 0.5)
    alphas_cumprod = np.cos(angle) ** 2
    return alphas_cumprod / alphas_cumprod[0]


def generate_schedule(
    T: int = DEFAULT_TIMESTEPS,
    max_sigma: float = DEFAULT_MAX_SIGMA,
    eps: float = DEFAULT_EPS,
) -> NoiseSchedule:
    """Build the cosine-based SDE schedule.

    Args:
        T: Number of timesteps (>= 2)
        max_sigma: Maximum noise level (> 0)
        eps: Terminal noise fraction in (0, 1)

    Returns:
        NoiseSchedule with float32 arrays of length T

    Raises:
        ConfigurationError: If the parameters would produce a degenerate
            schedule (T=1 makes the last cumulative theta zero, so dt
            would divide by zero)
    """
    if T < 2:
        raise ConfigurationError("T must be at least 2", config_key="T", config_value=T)
    if max_sigma <= 0:
        raise ConfigurationError(
            "max_sigma must be positive", config_key="max_sigma", config_value=max_sigma
        )
    if not 0.0 < eps < 1.0:
        raise ConfigurationError("eps must be in (0, 1)", config_key="eps", config_value=eps)

    alphas_cumprod = _cosine_alphas_cumprod(T + 2)

    thetas = (np.float32(1.0) - alphas_cumprod[1:T + 1]).astype(np.float32)
    thetas_cumsum = (np.cumsum(thetas, dtype=np.float32) - thetas[0]).astype(np.float32)

    dt = np.float32(-math.log(eps)) / thetas_cumsum[-1]

    max_sigma_sq = np.float32(max_sigma) ** 2
    sigmas = np.sqrt(max_sigma_sq * np.float32(2.0) * thetas).astype(np.float32)
    sigma_bars = np.sqrt(
        max_sigma_sq * (np.float32(1.0) - np.exp(np.float32(-2.0) * thetas_cumsum * dt))
    ).astype(np.float32)

    logger.debug(f"SDE schedule generated: T={T}, max_sigma={max_sigma:.5f}, dt={float(dt):.6f}")

    return NoiseSchedule(
        T=T,
        thetas=thetas,
        thetas_cumsum=thetas_cumsum,
        dt=float(dt),
        sigmas=sigmas,
        sigma_bars=sigma_bars,
        max_sigma=float(max_sigma),
        eps=float(eps),
    )


@lru_cache(maxsize=8)
def get_schedule(
    T: int = DEFAULT_TIMESTEPS,
    max_sigma: float = DEFAULT_MAX_SIGMA,
    eps: float = DEFAULT_EPS,
) -> NoiseSchedule:
    """Memoized :func:`generate_schedule`."""
    return generate_schedule(T, max_sigma, eps)


def timestep_for_step(step: int, num_steps: int, T: int) -> int:
    """Map a sampling step to a schedule index.

    ``num_steps`` model calls subsample the full T-step schedule:
    ``t = clamp(round(step * T / num_steps), 0, T - 1)`` with halves
    rounded up.
    """
    scaled = step * T / num_steps
    t = int(math.floor(scaled + 0.5))
    return min(max(t, 0), T - 1)


def timestep_sequence(num_steps: int, T: int) -> List[int]:
    """Schedule indices visited by the sampler, in visiting order."""
    return [timestep_for_step(step, num_steps, T) for step in range(num_steps, 0, -1)]
