"""Tests for the exception hierarchy."""
import pytest

from photowright.core.types import ErrorKind
from photowright.exceptions import (
    AlreadyRunningError,
    ConfigurationError,
    DimensionMismatchError,
    EncodingFailedError,
    InferenceError,
    InvalidInputError,
    ModelError,
    ModelUnavailableError,
    OutOfMemoryError,
    PhotowrightError,
    ResourceStateError,
    get_exception_class,
    is_out_of_memory,
)


class TestErrorHierarchy:
    """Tests for error class hierarchy."""

    @pytest.mark.parametrize("cls", [
        ConfigurationError,
        InvalidInputError,
        ModelError,
        EncodingFailedError,
        DimensionMismatchError,
        OutOfMemoryError,
        AlreadyRunningError,
    ])
    def test_subclasses_base(self, cls):
        assert issubclass(cls, PhotowrightError)

    @pytest.mark.parametrize("cls", [ModelUnavailableError, InferenceError, ResourceStateError])
    def test_model_errors(self, cls):
        assert issubclass(cls, ModelError)

    @pytest.mark.parametrize("cls, kind", [
        (ConfigurationError, ErrorKind.INVALID_INPUT),
        (InvalidInputError, ErrorKind.INVALID_INPUT),
        (ModelUnavailableError, ErrorKind.MODEL_UNAVAILABLE),
        (InferenceError, ErrorKind.INFERENCE_FAILED),
        (ResourceStateError, ErrorKind.INFERENCE_FAILED),
        (EncodingFailedError, ErrorKind.ENCODING_FAILED),
        (DimensionMismatchError, ErrorKind.DIMENSION_MISMATCH),
        (OutOfMemoryError, ErrorKind.OUT_OF_MEMORY),
        (AlreadyRunningError, ErrorKind.ALREADY_RUNNING),
    ])
    def test_error_kinds(self, cls, kind):
        assert cls("test").kind == kind


class TestErrorDetails:
    """Tests for messages, details and serialization."""

    def test_str_without_details(self):
        assert str(EncodingFailedError("no output")) == "no output"

    def test_str_with_details(self):
        error = DimensionMismatchError("bad embedding", expected=1024, actual=768)

        assert str(error) == "bad embedding [expected=1024, actual=768]"

    def test_cause_chained(self):
        cause = RuntimeError("session crashed")
        error = InferenceError("denoiser failed", step=3, timestep=97, cause=cause)

        assert error.__cause__ is cause
        assert error.details == {"step": 3, "timestep": 97}

    def test_to_dict(self):
        error = OutOfMemoryError("oom", stage="sampling", step=5, available_mb=123.456)

        data = error.to_dict()

        assert data["error_type"] == "OutOfMemoryError"
        assert data["error_kind"] == "out_of_memory"
        assert data["details"] == {"stage": "sampling", "step": 5, "available_mb": 123.5}
        assert data["cause"] is None

    def test_model_error_details(self):
        error = ModelUnavailableError("missing", model_name="denoiser", model_path="/m/d.onnx")
        assert error.details == {"model_name": "denoiser", "model_path": "/m/d.onnx"}


class TestOutOfMemoryClassification:
    """Tests for is_out_of_memory."""

    @pytest.mark.parametrize("exc", [
        MemoryError(),
        OutOfMemoryError("oom"),
        RuntimeError("CUDA out of memory. Tried to allocate 20.00 MiB"),
        RuntimeError("[ONNXRuntimeError] : 6 : RUNTIME_EXCEPTION : Failed to allocate memory"),
        OSError("Cannot allocate memory"),
        RuntimeError("std::bad_alloc"),
        RuntimeError("OpenCV(4.9.0) alloc.cpp:73: error: (-4:Insufficient memory) Failed to allocate 1.2 GB"),
    ])
    def test_memory_errors(self, exc):
        assert is_out_of_memory(exc)

    @pytest.mark.parametrize("exc", [
        ValueError("shape mismatch"),
        RuntimeError("invalid argument"),
        KeyError("image"),
    ])
    def test_other_errors(self, exc):
        assert not is_out_of_memory(exc)


class TestExceptionMap:
    """Tests for kind to class lookup."""

    def test_lookup(self):
        assert get_exception_class(ErrorKind.OUT_OF_MEMORY) is OutOfMemoryError
        assert get_exception_class(ErrorKind.ALREADY_RUNNING) is AlreadyRunningError

    def test_every_kind_mapped(self):
        for kind in ErrorKind:
            assert get_exception_class(kind).kind == kind
