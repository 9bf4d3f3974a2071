"""Configuration module for the PhotoWright restoration engine."""
import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .exceptions import ConfigurationError

# Schedule defaults of the trained denoiser
DEFAULT_TIMESTEPS = 100
DEFAULT_MAX_SIGMA = 50.0 / 255.0
DEFAULT_EPS = 0.005


@dataclass
class RestorationConfig:
    """Configuration for one restoration engine instance.

    Attributes:
        num_steps: Reverse-SDE steps per request (denoiser calls)
        timesteps: Length T of the full noise schedule
        max_sigma: Maximum noise level of the schedule
        eps: Terminal noise fraction used to derive dt
        max_size: Longest side of the working image (None = no resize).
            384 is the largest size that fits the reference 6GB device budget.
        encoder_input_size: Square input size of the degradation encoder
        seed: Seed for the Gaussian noise generator (None = fresh entropy)
        check_finite: Log a warning when the state goes NaN/Inf
        keep_awake: Hold a keep-alive signal while restoring
        encoder_path: Path to the encoder model (.onnx or TorchScript)
        denoiser_path: Path to the denoiser model (.onnx or TorchScript)
        device: Inference device ("cpu" or "cuda")
        intra_op_threads: Thread pool size inside one model call
        inter_op_threads: Parallel operator pool size inside one model call
    """

    num_steps: int = 100
    timesteps: int = DEFAULT_TIMESTEPS
    max_sigma: float = DEFAULT_MAX_SIGMA
    eps: float = DEFAULT_EPS
    max_size: Optional[int] = 384
    encoder_input_size: int = 224
    seed: Optional[int] = None
    check_finite: bool = True
    keep_awake: bool = True
    encoder_path: Optional[Path] = None
    denoiser_path: Optional[Path] = None
    device: str = "cpu"
    intra_op_threads: int = 4
    inter_op_threads: int = 2

    def __post_init__(self) -> None:
        """Normalize paths and validate configuration."""
        if self.encoder_path is not None and not isinstance(self.encoder_path, Path):
            self.encoder_path = Path(self.encoder_path)
        if self.denoiser_path is not None and not isinstance(self.denoiser_path, Path):
            self.denoiser_path = Path(self.denoiser_path)

        if self.num_steps < 1:
            raise ConfigurationError(
                "num_steps must be at least 1",
                config_key="num_steps",
                config_value=self.num_steps,
            )

        if self.timesteps < 2:
            raise ConfigurationError(
                "timesteps must be at least 2",
                config_key="timesteps",
                config_value=self.timesteps,
            )

        if self.max_sigma <= 0:
            raise ConfigurationError(
                "max_sigma must be positive",
                config_key="max_sigma",
                config_value=self.max_sigma,
            )

        if not 0.0 < self.eps < 1.0:
            raise ConfigurationError(
                "eps must be between 0 and 1 (exclusive)",
                config_key="eps",
                config_value=self.eps,
            )

        if self.max_size is not None and self.max_size < 16:
            raise ConfigurationError(
                "max_size must be at least 16 or None",
                config_key="max_size",
                config_value=self.max_size,
            )

        if self.encoder_input_size < 1:
            raise ConfigurationError(
                "encoder_input_size must be positive",
                config_key="encoder_input_size",
                config_value=self.encoder_input_size,
            )

        if self.device not in ("cpu", "cuda"):
            raise ConfigurationError(
                "device must be 'cpu' or 'cuda'",
                config_key="device",
                config_value=self.device,
            )

        if self.intra_op_threads < 1 or self.inter_op_threads < 1:
            raise ConfigurationError("thread counts must be at least 1")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a plain dictionary."""
        data = {}
        for f in fields(self):
            val = getattr(self, f.name)
            data[f.name] = str(val) if isinstance(val, Path) else val
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RestorationConfig":
        """Create configuration from dictionary, ignoring unknown keys."""
        valid_keys = {f.name for f in fields(cls)}
        filtered_data = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered_data)

    def with_overrides(self, **overrides: Any) -> "RestorationConfig":
        """Return a copy with the non-None overrides applied."""
        data = self.to_dict()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return RestorationConfig.from_dict(data)


def load_config(path: Union[str, Path]) -> RestorationConfig:
    """Load a RestorationConfig from a YAML or JSON file.

    The file may hold the fields at top level or under a ``restoration``
    key. Relative model paths are resolved against the file's directory.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", config_key="config")

    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not parse config file {path}: {e}", cause=e) from e

    data = data or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    if isinstance(data.get("restoration"), dict):
        data = data["restoration"]

    for key in ("encoder_path", "denoiser_path"):
        if data.get(key):
            model_path = Path(data[key]).expanduser()
            if not model_path.is_absolute():
                model_path = path.parent / model_path
            data[key] = model_path

    return RestorationConfig.from_dict(data)
