"""PhotoWright - Diffusion-based photo restoration with a reverse SDE."""
__version__ = "0.4.0"

from .core.types import (
    CONTEXT_DIM,
    DegradationContext,
    ErrorKind,
    OutcomeStatus,
    ProgressEvent,
    RestorationOutcome,
    RestorationState,
)

from .exceptions import (
    PhotowrightError,
    ConfigurationError,
    InvalidInputError,
    ModelError,
    ModelUnavailableError,
    InferenceError,
    ResourceStateError,
    EncodingFailedError,
    DimensionMismatchError,
    OutOfMemoryError,
    AlreadyRunningError,
)

from .config import RestorationConfig, load_config

from .engine import (
    CancelToken,
    DegradationContextExtractor,
    NoiseSchedule,
    RestorationJob,
    RestorationOrchestrator,
    ReverseSDESampler,
    generate_schedule,
    get_schedule,
)

from .infrastructure import ResourceKind, ResourceLifecycleManager
from .models import create_loaders

# Structured logging
from .utils.logging import LogConfig, PhotowrightLogger, configure_logging, get_logger

__all__ = [
    "__version__",
    # Types
    "CONTEXT_DIM",
    "DegradationContext",
    "ErrorKind",
    "OutcomeStatus",
    "ProgressEvent",
    "RestorationOutcome",
    "RestorationState",
    # Exceptions
    "PhotowrightError",
    "ConfigurationError",
    "InvalidInputError",
    "ModelError",
    "ModelUnavailableError",
    "InferenceError",
    "ResourceStateError",
    "EncodingFailedError",
    "DimensionMismatchError",
    "OutOfMemoryError",
    "AlreadyRunningError",
    # Configuration
    "RestorationConfig",
    "load_config",
    # Engine
    "CancelToken",
    "DegradationContextExtractor",
    "NoiseSchedule",
    "RestorationJob",
    "RestorationOrchestrator",
    "ReverseSDESampler",
    "generate_schedule",
    "get_schedule",
    # Infrastructure
    "ResourceKind",
    "ResourceLifecycleManager",
    "create_loaders",
    # Logging
    "LogConfig",
    "PhotowrightLogger",
    "configure_logging",
    "get_logger",
]
