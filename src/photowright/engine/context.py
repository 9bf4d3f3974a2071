"""Degradation context extraction.

Runs the degradation encoder once on the working image and splits its
embedding into the two conditioning vectors consumed by the denoiser.
"""

import logging
import time
from typing import Any, Mapping, Optional

import numpy as np

from ..core.types import CONTEXT_DIM, DegradationContext
from ..exceptions import (
    DimensionMismatchError,
    EncodingFailedError,
    OutOfMemoryError,
    PhotowrightError,
    is_out_of_memory,
)
from ..models.base import COMBINED_FEATURES, DegradationEncoder

logger = logging.getLogger(__name__)


class DegradationContextExtractor:
    """Turns encoder output into a :class:`DegradationContext`.

    Embedding layouts:
        - ``2 * dim`` floats: ``[image_context | degradation_context]``
        - ``dim`` floats: a single embedding used for both vectors
        - anything else: DimensionMismatchError

    Args:
        dim: Length of each context vector
    """

    def __init__(self, dim: int = CONTEXT_DIM):
        self.dim = dim

    def extract(self, encoder: DegradationEncoder, image: np.ndarray) -> DegradationContext:
        """Encode ``image`` and build the conditioning vectors.

        Raises:
            EncodingFailedError: If the encoder raised or returned nothing
            OutOfMemoryError: If the encoder exhausted memory
            DimensionMismatchError: If the embedding length is unsupported
        """
        start = time.perf_counter()
        try:
            outputs = encoder.encode(image)
        except PhotowrightError:
            raise
        except Exception as e:
            if is_out_of_memory(e):
                raise OutOfMemoryError(
                    "Out of memory during degradation encoding",
                    stage="encoding",
                    cause=e,
                ) from e
            raise EncodingFailedError(f"Degradation encoder failed: {e}", cause=e) from e

        embedding = self._select_output(outputs)
        context = self._split(embedding)
        logger.info(
            f"Context extracted in {(time.perf_counter() - start) * 1000:.0f}ms "
            f"({embedding.shape[0]} dims)"
        )
        return context

    def _select_output(self, outputs: Any) -> np.ndarray:
        if outputs is None:
            raise EncodingFailedError("Degradation encoder returned no output")

        if isinstance(outputs, np.ndarray):
            value: Optional[Any] = outputs
        elif isinstance(outputs, Mapping):
            if len(outputs) == 0:
                raise EncodingFailedError("Degradation encoder returned no outputs")
            if COMBINED_FEATURES in outputs:
                value = outputs[COMBINED_FEATURES]
            else:
                name = next(iter(outputs))
                logger.debug(f"No '{COMBINED_FEATURES}' output, using '{name}'")
                value = outputs[name]
        else:
            raise EncodingFailedError(
                f"Unsupported encoder output type: {type(outputs).__name__}"
            )

        if value is None:
            raise EncodingFailedError("Degradation encoder output is empty")

        embedding = np.asarray(value, dtype=np.float32).reshape(-1)
        if embedding.size == 0:
            raise EncodingFailedError("Degradation encoder output is empty")
        return embedding

    def _split(self, embedding: np.ndarray) -> DegradationContext:
        length = embedding.shape[0]
        if length == 2 * self.dim:
            return DegradationContext(
                image_context=embedding[:self.dim].copy(),
                degradation_context=embedding[self.dim:].copy(),
            )
        if length == self.dim:
            # both vectors own their buffer
            return DegradationContext(
                image_context=embedding.copy(),
                degradation_context=embedding.copy(),
            )
        raise DimensionMismatchError(
            f"Encoder embedding has {length} values, expected {self.dim} or {2 * self.dim}",
            expected=[self.dim, 2 * self.dim],
            actual=length,
        )
