"""Core value types shared by every PhotoWright component."""

from .types import (
    CONTEXT_DIM,
    DegradationContext,
    ErrorKind,
    ImageTensor,
    OutcomeStatus,
    ProgressEvent,
    RestorationOutcome,
    RestorationState,
)

__all__ = [
    "CONTEXT_DIM",
    "DegradationContext",
    "ErrorKind",
    "ImageTensor",
    "OutcomeStatus",
    "ProgressEvent",
    "RestorationOutcome",
    "RestorationState",
]
