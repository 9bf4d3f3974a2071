"""Standardized exception hierarchy for PhotoWright.

Every failure that can end a restoration request maps to exactly one
:class:`~photowright.core.types.ErrorKind`, so the orchestrator can turn
any exception raised by a component into a single terminal
``RestorationOutcome``.

Exception Hierarchy:
    PhotowrightError (base)
    +-- ConfigurationError
    +-- InvalidInputError
    +-- ModelError
    |   +-- ModelUnavailableError
    |   +-- InferenceError
    |   +-- ResourceStateError
    +-- EncodingFailedError
    +-- DimensionMismatchError
    +-- OutOfMemoryError
    +-- AlreadyRunningError
"""

from typing import Any, Dict, Optional

from .core.types import ErrorKind


class PhotowrightError(Exception):
    """Base exception for all PhotoWright errors.

    Attributes:
        message: Human-readable error description
        details: Optional dictionary with additional context
        cause: Original exception that caused this error (if any)
    """

    kind: ErrorKind = ErrorKind.INFERENCE_FAILED

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

        # Chain the cause exception for proper traceback
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        """Return string representation with details if available."""
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization.

        Returns:
            Dictionary with error type, kind, message, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "error_kind": self.kind.value,
            "message": self.message,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(PhotowrightError):
    """Invalid configuration.

    Raised when configuration values are out of range, missing, or
    mutually incompatible.
    """

    kind = ErrorKind.INVALID_INPUT

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = config_value
        super().__init__(message, details=details, cause=cause)


class InvalidInputError(PhotowrightError):
    """Restoration request arguments are unusable (bad tensor shape, steps < 1)."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(
        self,
        message: str,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        details = {}
        if expected is not None:
            details["expected"] = expected
        if actual is not None:
            details["actual"] = actual
        super().__init__(message, details=details, cause=cause)


class ModelError(PhotowrightError):
    """Model loading or inference error.

    Examples:
        - Model file not found
        - Runtime session could not be created
        - Inference call raised
    """

    def __init__(
        self,
        message: str,
        model_name: Optional[str] = None,
        model_path: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        details = {}
        if model_name:
            details["model_name"] = model_name
        if model_path:
            details["model_path"] = model_path
        super().__init__(message, details=details, cause=cause)


class ModelUnavailableError(ModelError):
    """An external model failed to initialize. Fatal before any work starts."""

    kind = ErrorKind.MODEL_UNAVAILABLE


class InferenceError(ModelError):
    """The denoiser failed for a reason other than memory exhaustion."""

    kind = ErrorKind.INFERENCE_FAILED

    def __init__(
        self,
        message: str,
        model_name: Optional[str] = None,
        step: Optional[int] = None,
        timestep: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, model_name=model_name, cause=cause)
        if step is not None:
            self.details["step"] = step
        if timestep is not None:
            self.details["timestep"] = timestep


class ResourceStateError(ModelError):
    """A model resource was used outside its loaded lifetime.

    Also raised when a second heavy model is acquired while another one
    is still resident.
    """

    kind = ErrorKind.INFERENCE_FAILED


class EncodingFailedError(PhotowrightError):
    """The degradation encoder produced no usable output."""

    kind = ErrorKind.ENCODING_FAILED


class DimensionMismatchError(PhotowrightError):
    """A model output has an unexpected shape. Fatal, never retried."""

    kind = ErrorKind.DIMENSION_MISMATCH

    def __init__(
        self,
        message: str,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        details = {}
        if expected is not None:
            details["expected"] = expected
        if actual is not None:
            details["actual"] = actual
        super().__init__(message, details=details, cause=cause)


class OutOfMemoryError(PhotowrightError):
    """Memory exhausted during extraction, sampling, or final conversion.

    Fatal per request: the image is never downscaled and retried
    automatically. Whether to retry at a smaller ``max_size`` is the
    caller's decision.
    """

    kind = ErrorKind.OUT_OF_MEMORY

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        step: Optional[int] = None,
        available_mb: Optional[float] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if stage:
            details["stage"] = stage
        if step is not None:
            details["step"] = step
        if available_mb is not None:
            details["available_mb"] = round(available_mb, 1)
        super().__init__(message, details=details, cause=cause)


class AlreadyRunningError(PhotowrightError):
    """A restoration is already in progress in this process."""

    kind = ErrorKind.ALREADY_RUNNING


_OOM_MARKERS = (
    "out of memory",
    "failed to allocate",
    "cannot allocate memory",
    "bad_alloc",
    "insufficient memory",
)


def is_out_of_memory(exc: BaseException) -> bool:
    """Check whether a raw exception signals memory exhaustion.

    Covers Python's ``MemoryError``, CUDA OOM runtime errors raised by
    PyTorch, and ONNX Runtime allocation failures.
    """
    if isinstance(exc, (MemoryError, OutOfMemoryError)):
        return True
    error_str = str(exc).lower()
    return any(marker in error_str for marker in _OOM_MARKERS)


# Exception mapping for easy lookup
EXCEPTION_MAP = {
    ErrorKind.INVALID_INPUT: InvalidInputError,
    ErrorKind.MODEL_UNAVAILABLE: ModelUnavailableError,
    ErrorKind.INFERENCE_FAILED: InferenceError,
    ErrorKind.ENCODING_FAILED: EncodingFailedError,
    ErrorKind.DIMENSION_MISMATCH: DimensionMismatchError,
    ErrorKind.OUT_OF_MEMORY: OutOfMemoryError,
    ErrorKind.ALREADY_RUNNING: AlreadyRunningError,
}


def get_exception_class(kind: ErrorKind) -> type:
    """Get the exception class raised for an error kind.

    Raises:
        KeyError: If the kind has no exception class
    """
    return EXCEPTION_MAP[kind]
