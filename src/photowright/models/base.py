"""Model interfaces consumed by the restoration engine."""

from typing import Mapping, Protocol, runtime_checkable

import numpy as np

COMBINED_FEATURES = "combined_features"


@runtime_checkable
class DegradationEncoder(Protocol):
    """Image encoder producing degradation/content embeddings."""

    def encode(self, image: np.ndarray) -> Mapping[str, np.ndarray]:
        """Encode a ``(3, H, W)`` image tensor.

        Returns:
            Mapping of output name to embedding. The engine reads
            ``combined_features`` (or the first output).
        """
        ...


@runtime_checkable
class NoiseDenoiser(Protocol):
    """Conditional noise predictor of the reverse SDE."""

    def denoise(
        self,
        noisy: np.ndarray,
        lq: np.ndarray,
        timestep: int,
        image_context: np.ndarray,
        degradation_context: np.ndarray,
    ) -> np.ndarray:
        """Predict the noise in ``noisy``; same ``(3, H, W)`` shape."""
        ...
