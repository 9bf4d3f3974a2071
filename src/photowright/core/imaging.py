"""Conversions between 8-bit images and channel-planar float tensors.

Images on the outside are ``uint8`` HWC arrays in RGB order (the CLI
converts from OpenCV's BGR at the file boundary). Tensors on the inside
are ``float32`` CHW arrays in ``[0, 1]``.
"""

import logging
from typing import Callable, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..exceptions import InvalidInputError, OutOfMemoryError, is_out_of_memory

logger = logging.getLogger(__name__)

# ImageNet statistics used by CLIP-family encoders
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


def validate_tensor(tensor: np.ndarray, name: str = "image") -> None:
    """Raise InvalidInputError unless ``tensor`` is a non-empty 3xHxW array."""
    if not isinstance(tensor, np.ndarray):
        raise InvalidInputError(
            f"{name} must be a numpy array",
            expected="ndarray",
            actual=type(tensor).__name__,
        )
    if tensor.ndim != 3 or tensor.shape[0] != 3 or tensor.shape[1] == 0 or tensor.shape[2] == 0:
        raise InvalidInputError(
            f"{name} must have shape (3, H, W)",
            expected="(3, H, W)",
            actual=tuple(tensor.shape),
        )


def image_to_tensor(image: np.ndarray) -> np.ndarray:
    """Convert an RGB ``uint8`` HWC image to a float32 CHW tensor in [0, 1]."""
    if image.ndim == 2:
        image = np.stack([image] * 3, axis=-1)
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise InvalidInputError(
            "image must be HxWx3 or HxWx4",
            expected="(H, W, 3)",
            actual=tuple(image.shape),
        )
    rgb = image[:, :, :3].astype(np.float32) / 255.0
    return np.ascontiguousarray(rgb.transpose(2, 0, 1))


def _to_uint8(tensor: np.ndarray) -> np.ndarray:
    clipped = np.clip(tensor, 0.0, 1.0)
    return np.rint(clipped.transpose(1, 2, 0) * 255.0).astype(np.uint8)


def tensor_to_image(
    tensor: np.ndarray,
    reclaim: Optional[Callable[[], None]] = None,
) -> np.ndarray:
    """Convert a CHW float tensor to an RGB ``uint8`` HWC image.

    Values are clamped to [0, 1] before scaling. On memory exhaustion the
    conversion is retried once after ``reclaim`` (if given) frees memory;
    a second failure raises OutOfMemoryError.
    """
    validate_tensor(tensor, "tensor")
    try:
        return _to_uint8(tensor)
    except Exception as e:
        if not is_out_of_memory(e):
            raise
        logger.warning("Out of memory during tensor conversion, reclaiming and retrying once")
        if reclaim is not None:
            reclaim()

    try:
        return _to_uint8(tensor)
    except Exception as e:
        if is_out_of_memory(e):
            raise OutOfMemoryError(
                "Out of memory converting result to image",
                stage="conversion",
                cause=e,
            ) from e
        raise


def fit_within(width: int, height: int, max_size: int) -> Tuple[int, int]:
    """Scale ``(width, height)`` down so neither side exceeds ``max_size``.

    Aspect ratio is preserved and images that already fit are returned
    unchanged (never upscaled).
    """
    if width <= max_size and height <= max_size:
        return width, height
    scale = min(max_size / width, max_size / height)
    return max(1, int(width * scale)), max(1, int(height * scale))


def resize_tensor(tensor: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Resize a CHW tensor to ``size`` = (width, height).

    INTER_AREA is used when shrinking, INTER_CUBIC when growing.
    """
    validate_tensor(tensor, "tensor")
    width, height = size
    _, src_h, src_w = tensor.shape
    if (src_w, src_h) == (width, height):
        return tensor.copy()

    shrinking = width * height < src_w * src_h
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC
    hwc = np.ascontiguousarray(tensor.transpose(1, 2, 0))
    resized = cv2.resize(hwc, (width, height), interpolation=interpolation)
    return np.ascontiguousarray(resized.transpose(2, 0, 1), dtype=np.float32)


def resize_for_inference(tensor: np.ndarray, max_size: Optional[int]) -> np.ndarray:
    """Prepare the working-size degraded image.

    Downscales so the longest side is at most ``max_size`` (no padding,
    no upscaling). ``None`` disables resizing. Always returns a new array
    so the caller's tensor is never aliased.
    """
    validate_tensor(tensor)
    if max_size is None:
        return np.array(tensor, dtype=np.float32, copy=True)

    _, height, width = tensor.shape
    new_w, new_h = fit_within(width, height, max_size)
    if (new_w, new_h) != (width, height):
        logger.debug(f"Resizing {width}x{height} -> {new_w}x{new_h} for inference")
    return resize_tensor(tensor.astype(np.float32, copy=False), (new_w, new_h))


def prepare_encoder_input(
    tensor: np.ndarray,
    target_size: int = 224,
    mean: Sequence[float] = IMAGENET_MEAN,
    std: Sequence[float] = IMAGENET_STD,
) -> np.ndarray:
    """Build the ``(1, 3, S, S)`` batch fed to a CLIP-style encoder.

    The image is squashed to a square (aspect ratio not preserved) and
    normalized per channel.
    """
    square = resize_tensor(tensor.astype(np.float32, copy=False), (target_size, target_size))
    mean_arr = np.asarray(mean, dtype=np.float32).reshape(3, 1, 1)
    std_arr = np.asarray(std, dtype=np.float32).reshape(3, 1, 1)
    normalized = (square - mean_arr) / std_arr
    return normalized[np.newaxis].astype(np.float32)
