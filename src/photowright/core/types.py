"""Shared value types for the restoration engine.

Tensors are plain ``numpy.ndarray`` objects: ``float32``, channel-planar
``(3, H, W)``, nominally in ``[0, 1]``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

ImageTensor = np.ndarray

CONTEXT_DIM = 512


class ErrorKind(str, Enum):
    """Failure categories reported in a failed outcome."""

    DIMENSION_MISMATCH = "dimension_mismatch"
    ENCODING_FAILED = "encoding_failed"
    OUT_OF_MEMORY = "out_of_memory"
    MODEL_UNAVAILABLE = "model_unavailable"
    ALREADY_RUNNING = "already_running"
    INFERENCE_FAILED = "inference_failed"
    INVALID_INPUT = "invalid_input"


class OutcomeStatus(str, Enum):
    """Terminal status of a restoration request."""

    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True, eq=False)
class DegradationContext:
    """Conditioning vectors for the denoiser.

    Attributes:
        image_context: Image-content embedding (512 floats)
        degradation_context: Degradation-type embedding (512 floats)
    """

    image_context: np.ndarray
    degradation_context: np.ndarray

    def __post_init__(self) -> None:
        for name in ("image_context", "degradation_context"):
            vector = np.array(getattr(self, name), dtype=np.float32).reshape(-1)
            vector.setflags(write=False)
            object.__setattr__(self, name, vector)

    @property
    def dim(self) -> int:
        return int(self.image_context.shape[0])


@dataclass(eq=False)
class RestorationState:
    """Working tensors of one sampling run.

    ``x`` is the current estimate and is updated in place every step.
    ``lq`` is a read-only view of the degraded image for the whole run.
    """

    x: ImageTensor
    lq: ImageTensor

    def __post_init__(self) -> None:
        if self.x.shape != self.lq.shape:
            raise ValueError(f"State shape {self.x.shape} does not match lq shape {self.lq.shape}")
        lq = self.lq.view()
        lq.setflags(write=False)
        self.lq = lq

    @property
    def width(self) -> int:
        return int(self.x.shape[2])

    @property
    def height(self) -> int:
        return int(self.x.shape[1])


@dataclass(frozen=True)
class ProgressEvent:
    """One completed sampling step (``current_step`` is 1-based)."""

    current_step: int
    total_steps: int

    @property
    def fraction(self) -> float:
        if self.total_steps <= 0:
            return 1.0
        return self.current_step / self.total_steps


@dataclass(frozen=True, eq=False)
class RestorationOutcome:
    """Terminal result of one restoration request.

    Exactly one of the three shapes:
        - ``success(image)``: ``image`` holds the restored tensor
        - ``cancelled()``: no image, no error
        - ``failed(kind, detail)``: ``error_kind`` and ``detail`` set
    """

    status: OutcomeStatus
    image: Optional[ImageTensor] = None
    error_kind: Optional[ErrorKind] = None
    detail: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(
        cls, image: ImageTensor, metadata: Optional[Dict[str, Any]] = None
    ) -> "RestorationOutcome":
        return cls(OutcomeStatus.SUCCESS, image=image, metadata=metadata or {})

    @classmethod
    def cancelled(cls, metadata: Optional[Dict[str, Any]] = None) -> "RestorationOutcome":
        return cls(OutcomeStatus.CANCELLED, metadata=metadata or {})

    @classmethod
    def failed(
        cls,
        kind: ErrorKind,
        detail: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "RestorationOutcome":
        return cls(
            OutcomeStatus.FAILED,
            error_kind=kind,
            detail=detail,
            metadata=metadata or {},
        )

    @property
    def is_success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def is_cancelled(self) -> bool:
        return self.status == OutcomeStatus.CANCELLED

    @property
    def is_failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Summarize the outcome without the tensor payload."""
        data: Dict[str, Any] = {"status": self.status.value}
        if self.image is not None:
            data["shape"] = list(self.image.shape)
        if self.error_kind is not None:
            data["error_kind"] = self.error_kind.value
            data["detail"] = self.detail
        data.update(self.metadata)
        return data
