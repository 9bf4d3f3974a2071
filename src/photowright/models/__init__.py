"""Model adapters for the degradation encoder and the denoiser.

``create_loaders`` picks the runtime from the model file suffix:
``.onnx`` runs on ONNX Runtime, ``.pt``/``.pth``/``.ts`` are loaded as
TorchScript (requires the ``torch`` extra).
"""

from pathlib import Path
from typing import Optional, Tuple, Union

from ..config import RestorationConfig
from ..exceptions import ConfigurationError
from .base import COMBINED_FEATURES, DegradationEncoder, NoiseDenoiser
from .onnx import OnnxDegradationEncoder, OnnxModelLoader, OnnxNoiseDenoiser
from .torchscript import (
    TorchScriptDegradationEncoder,
    TorchScriptModelLoader,
    TorchScriptNoiseDenoiser,
)

TORCHSCRIPT_SUFFIXES = (".pt", ".pth", ".ts")

ModelLoaderType = Union[OnnxModelLoader, TorchScriptModelLoader]


def create_loader(
    path: Optional[Path],
    role: str,
    config: Optional[RestorationConfig] = None,
) -> ModelLoaderType:
    """Create a loader for one model file.

    Raises:
        ConfigurationError: If no path is given or the suffix is unknown
    """
    config = config or RestorationConfig()
    if path is None:
        raise ConfigurationError(f"No {role} model configured", config_key=f"{role}_path")

    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".onnx":
        return OnnxModelLoader(
            path,
            role,
            device=config.device,
            encoder_input_size=config.encoder_input_size,
            intra_op_threads=config.intra_op_threads,
            inter_op_threads=config.inter_op_threads,
        )
    if suffix in TORCHSCRIPT_SUFFIXES:
        return TorchScriptModelLoader(
            path,
            role,
            device=config.device,
            encoder_input_size=config.encoder_input_size,
        )
    raise ConfigurationError(
        f"Unsupported model format '{suffix}' for {role}",
        config_key=f"{role}_path",
        config_value=str(path),
    )


def create_loaders(config: RestorationConfig) -> Tuple[ModelLoaderType, ModelLoaderType]:
    """Create the (encoder, denoiser) loaders named by ``config``."""
    return (
        create_loader(config.encoder_path, "encoder", config),
        create_loader(config.denoiser_path, "denoiser", config),
    )


__all__ = [
    "COMBINED_FEATURES",
    "DegradationEncoder",
    "NoiseDenoiser",
    "OnnxDegradationEncoder",
    "OnnxModelLoader",
    "OnnxNoiseDenoiser",
    "TorchScriptDegradationEncoder",
    "TorchScriptModelLoader",
    "TorchScriptNoiseDenoiser",
    "create_loader",
    "create_loaders",
]
