"""TorchScript implementations of the encoder and denoiser.

Requires the ``torch`` extra. The scripted modules take the same inputs,
in the same order, as the ONNX exports.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from ..core.imaging import prepare_encoder_input
from ..exceptions import ModelUnavailableError
from .base import COMBINED_FEATURES

logger = logging.getLogger(__name__)


def _import_torch():
    try:
        import torch
    except ImportError as e:
        raise ModelUnavailableError(
            "TorchScript models need PyTorch (pip install photowright[torch])",
            cause=e,
        ) from e
    return torch


class TorchScriptDegradationEncoder:
    """Encoder backed by a ``torch.jit`` module."""

    def __init__(self, module, device: str = "cpu", input_size: int = 224):
        self.module = module
        self.device = device
        self.input_size = input_size

    def encode(self, image: np.ndarray) -> Dict[str, np.ndarray]:
        torch = _import_torch()
        batch = torch.from_numpy(prepare_encoder_input(image, self.input_size)).to(self.device)
        with torch.inference_mode():
            output = self.module(batch)

        if isinstance(output, dict):
            items = output.items()
        elif isinstance(output, (tuple, list)):
            items = [(f"output_{i}", value) for i, value in enumerate(output)]
            if len(output) == 1:
                items = [(COMBINED_FEATURES, output[0])]
        else:
            items = [(COMBINED_FEATURES, output)]

        return {
            name: value.detach().float().cpu().numpy()[0].reshape(-1)
            for name, value in items
        }


class TorchScriptNoiseDenoiser:
    """Denoiser backed by a ``torch.jit`` module."""

    def __init__(self, module, device: str = "cpu"):
        self.module = module
        self.device = device

    def denoise(
        self,
        noisy: np.ndarray,
        lq: np.ndarray,
        timestep: int,
        image_context: np.ndarray,
        degradation_context: np.ndarray,
    ) -> np.ndarray:
        torch = _import_torch()
        device = self.device
        with torch.inference_mode():
            noise = self.module(
                torch.from_numpy(np.ascontiguousarray(noisy[np.newaxis])).to(device),
                torch.from_numpy(np.ascontiguousarray(lq[np.newaxis])).to(device),
                torch.tensor([timestep], dtype=torch.int64, device=device),
                torch.from_numpy(image_context.reshape(1, -1).copy()).to(device),
                torch.from_numpy(degradation_context.reshape(1, -1).copy()).to(device),
            )
        return noise.float().cpu().numpy()[0]


class TorchScriptModelLoader:
    """Loads a TorchScript encoder or denoiser on demand."""

    def __init__(
        self,
        path: Path,
        role: str,
        device: str = "cpu",
        encoder_input_size: int = 224,
        name: Optional[str] = None,
    ):
        if role not in ("encoder", "denoiser"):
            raise ValueError(f"role must be 'encoder' or 'denoiser', got {role!r}")
        self.path = Path(path)
        self.role = role
        self.device = device
        self.encoder_input_size = encoder_input_size
        self.name = name or self.path.stem

    def load(self):
        torch = _import_torch()
        if not self.path.exists():
            raise ModelUnavailableError(
                f"Model file not found: {self.path}", model_path=str(self.path)
            )

        module = torch.jit.load(str(self.path), map_location=self.device)
        module.eval()
        logger.info(f"TorchScript model loaded: {self.path.name} on {self.device}")

        if self.role == "encoder":
            return TorchScriptDegradationEncoder(module, self.device, self.encoder_input_size)
        return TorchScriptNoiseDenoiser(module, self.device)

    def unload(self, model) -> None:
        model.module = None
