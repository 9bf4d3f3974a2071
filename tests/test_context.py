"""Tests for degradation context extraction."""
import numpy as np
import pytest

from photowright.core.types import CONTEXT_DIM, DegradationContext
from photowright.engine.context import DegradationContextExtractor
from photowright.exceptions import (
    DimensionMismatchError,
    EncodingFailedError,
    OutOfMemoryError,
)

from tests.conftest import FakeEncoder


@pytest.fixture
def extractor():
    return DegradationContextExtractor()


class TestEmbeddingLayouts:
    """Tests for splitting the encoder embedding."""

    def test_split_combined_embedding(self, extractor, small_image):
        """Test a 1024-float embedding is split into two halves."""
        embedding = np.arange(1024, dtype=np.float32)
        encoder = FakeEncoder(outputs={"combined_features": embedding})

        context = extractor.extract(encoder, small_image)

        assert isinstance(context, DegradationContext)
        np.testing.assert_array_equal(context.image_context, embedding[:512])
        np.testing.assert_array_equal(context.degradation_context, embedding[512:])
        assert context.dim == CONTEXT_DIM

    def test_single_embedding_duplicated(self, extractor, small_image):
        """Test a 512-float embedding is used for both vectors, as copies."""
        embedding = np.arange(512, dtype=np.float32)
        encoder = FakeEncoder(outputs={"combined_features": embedding})

        context = extractor.extract(encoder, small_image)

        np.testing.assert_array_equal(context.image_context, embedding)
        np.testing.assert_array_equal(context.degradation_context, embedding)
        assert not np.shares_memory(context.image_context, context.degradation_context)
        assert not np.shares_memory(context.image_context, embedding)

    def test_batched_output_flattened(self, extractor, small_image):
        embedding = np.ones((1, 1024), dtype=np.float32)
        encoder = FakeEncoder(outputs={"combined_features": embedding})

        context = extractor.extract(encoder, small_image)

        assert context.image_context.shape == (512,)
        assert context.degradation_context.shape == (512,)

    @pytest.mark.parametrize("length", [256, 768, 1023, 2048])
    def test_unsupported_length(self, extractor, small_image, length):
        encoder = FakeEncoder(outputs={"combined_features": np.zeros(length, dtype=np.float32)})

        with pytest.raises(DimensionMismatchError) as exc_info:
            extractor.extract(encoder, small_image)
        assert exc_info.value.details["actual"] == length

    def test_context_read_only(self, extractor, small_image):
        context = extractor.extract(FakeEncoder(), small_image)

        with pytest.raises(ValueError):
            context.image_context[0] = 5.0

    def test_encoder_called_once_with_image(self, extractor, small_image):
        encoder = FakeEncoder()
        extractor.extract(encoder, small_image)
        assert encoder.calls == [small_image.shape]


class TestOutputSelection:
    """Tests for picking the encoder output."""

    def test_combined_features_preferred(self, extractor, small_image):
        outputs = {
            "image_features": np.zeros(512, dtype=np.float32),
            "combined_features": np.full(1024, 2.0, dtype=np.float32),
        }

        context = extractor.extract(FakeEncoder(outputs=outputs), small_image)

        assert np.all(context.image_context == 2.0)

    def test_first_output_fallback(self, extractor, small_image):
        outputs = {
            "features": np.full(512, 3.0, dtype=np.float32),
            "other": np.zeros(1024, dtype=np.float32),
        }

        context = extractor.extract(FakeEncoder(outputs=outputs), small_image)

        assert np.all(context.degradation_context == 3.0)

    def test_bare_array_output(self, extractor, small_image):
        encoder = FakeEncoder(outputs=np.ones(1024, dtype=np.float32))
        context = extractor.extract(encoder, small_image)
        assert context.dim == 512


class TestEncodingFailures:
    """Tests for encoder failures."""

    @pytest.mark.parametrize("outputs", [
        None,
        {},
        {"combined_features": np.zeros(0, dtype=np.float32)},
        {"combined_features": None},
    ])
    def test_empty_output(self, extractor, small_image, outputs):
        encoder = FakeEncoder()
        encoder.outputs = outputs

        with pytest.raises(EncodingFailedError):
            extractor.extract(encoder, small_image)

    def test_encoder_exception(self, extractor, small_image):
        encoder = FakeEncoder(exc=RuntimeError("session crashed"))

        with pytest.raises(EncodingFailedError) as exc_info:
            extractor.extract(encoder, small_image)
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.parametrize("exc", [
        MemoryError(),
        RuntimeError("CUDA out of memory. Tried to allocate 2.00 GiB"),
        RuntimeError("Failed to allocate memory for requested buffer"),
    ])
    def test_memory_exhaustion(self, extractor, small_image, exc):
        encoder = FakeEncoder(exc=exc)

        with pytest.raises(OutOfMemoryError) as exc_info:
            extractor.extract(encoder, small_image)
        assert exc_info.value.details["stage"] == "encoding"
