"""Restoration engine.

- **Schedule**: Cosine noise schedule of the mean-reverting SDE
- **Context**: Degradation context extraction from encoder output
- **Sampler**: Reverse SDE integration with cooperative cancellation
- **Orchestrator**: Single-flight request sequencing across the heavy models

Example:
    >>> from photowright.engine import RestorationOrchestrator
    >>> orchestrator = RestorationOrchestrator(lifecycle, config)
    >>> job = orchestrator.start(image)
    >>> outcome = job.result()
"""

# Noise schedule
from photowright.engine.schedule import (
    NoiseSchedule,
    generate_schedule,
    get_schedule,
    timestep_for_step,
    timestep_sequence,
)

# Context extraction
from photowright.engine.context import DegradationContextExtractor

# Sampling
from photowright.engine.sampler import (
    CancelToken,
    ProgressCallback,
    ReverseSDESampler,
    SamplerState,
)

# Orchestration
from photowright.engine.orchestrator import (
    ProgressChannel,
    RestorationJob,
    RestorationOrchestrator,
    RunGuard,
)

__all__ = [
    "NoiseSchedule",
    "generate_schedule",
    "get_schedule",
    "timestep_for_step",
    "timestep_sequence",
    "DegradationContextExtractor",
    "CancelToken",
    "ProgressCallback",
    "ReverseSDESampler",
    "SamplerState",
    "ProgressChannel",
    "RestorationJob",
    "RestorationOrchestrator",
    "RunGuard",
]
