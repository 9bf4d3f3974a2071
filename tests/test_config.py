"""Tests for the configuration module."""
import json
from pathlib import Path

import pytest

from photowright.config import (
    DEFAULT_EPS,
    DEFAULT_MAX_SIGMA,
    DEFAULT_TIMESTEPS,
    RestorationConfig,
    load_config,
)
from photowright.core.types import ErrorKind
from photowright.exceptions import ConfigurationError


class TestConfigCreation:
    """Tests for RestorationConfig defaults."""

    def test_defaults(self):
        config = RestorationConfig()

        assert config.num_steps == 100
        assert config.timesteps == DEFAULT_TIMESTEPS == 100
        assert config.max_sigma == pytest.approx(50.0 / 255.0)
        assert config.eps == DEFAULT_EPS == 0.005
        assert config.max_size == 384
        assert config.encoder_input_size == 224
        assert config.seed is None
        assert config.check_finite is True
        assert config.keep_awake is True
        assert config.device == "cpu"
        assert config.intra_op_threads == 4
        assert config.inter_op_threads == 2

    def test_paths_converted(self):
        config = RestorationConfig(encoder_path="models/encoder.onnx", denoiser_path="denoiser.pt")

        assert config.encoder_path == Path("models/encoder.onnx")
        assert isinstance(config.denoiser_path, Path)

    def test_max_size_disabled(self):
        assert RestorationConfig(max_size=None).max_size is None


class TestConfigValidation:
    """Tests for RestorationConfig validation."""

    @pytest.mark.parametrize("kwargs, key", [
        ({"num_steps": 0}, "num_steps"),
        ({"timesteps": 1}, "timesteps"),
        ({"max_sigma": 0.0}, "max_sigma"),
        ({"eps": 0.0}, "eps"),
        ({"eps": 1.0}, "eps"),
        ({"max_size": 8}, "max_size"),
        ({"encoder_input_size": 0}, "encoder_input_size"),
        ({"device": "tpu"}, "device"),
    ])
    def test_invalid_values(self, kwargs, key):
        with pytest.raises(ConfigurationError) as exc_info:
            RestorationConfig(**kwargs)

        assert exc_info.value.details["config_key"] == key
        assert exc_info.value.kind == ErrorKind.INVALID_INPUT

    def test_invalid_threads(self):
        with pytest.raises(ConfigurationError):
            RestorationConfig(intra_op_threads=0)


class TestConfigSerialization:
    """Tests for dictionary round trips and overrides."""

    def test_to_dict_paths_as_strings(self):
        data = RestorationConfig(encoder_path=Path("/models/enc.onnx")).to_dict()

        assert data["encoder_path"] == str(Path("/models/enc.onnx"))
        assert data["denoiser_path"] is None
        json.dumps(data)

    def test_from_dict_ignores_unknown(self):
        config = RestorationConfig.from_dict({"num_steps": 20, "unknown_key": "x"})
        assert config.num_steps == 20

    def test_with_overrides_skips_none(self):
        base = RestorationConfig(num_steps=50, seed=3)

        config = base.with_overrides(num_steps=None, seed=9, max_size=256)

        assert config.num_steps == 50
        assert config.seed == 9
        assert config.max_size == 256
        assert base.seed == 3

    def test_with_overrides_validates(self):
        with pytest.raises(ConfigurationError):
            RestorationConfig().with_overrides(num_steps=0)


class TestLoadConfig:
    """Tests for loading configuration files."""

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "photowright.yaml"
        path.write_text("num_steps: 40\nseed: 11\nmax_size: 256\n")

        config = load_config(path)

        assert config.num_steps == 40
        assert config.seed == 11
        assert config.max_size == 256

    def test_nested_section_and_relative_paths(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(
            "restoration:\n"
            "  encoder_path: models/encoder.onnx\n"
            "  denoiser_path: /abs/denoiser.onnx\n"
            "  max_size: null\n"
        )

        config = load_config(path)

        assert config.encoder_path == tmp_path / "models" / "encoder.onnx"
        assert config.denoiser_path == Path("/abs/denoiser.onnx")
        assert config.max_size is None

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"num_steps": 5, "check_finite": False}))

        config = load_config(path)

        assert config.num_steps == 5
        assert config.check_finite is False

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path).num_steps == 100

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("num_steps: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_invalid_value_in_file(self, tmp_path):
        path = tmp_path / "bad_value.yaml"
        path.write_text("eps: 2.0\n")

        with pytest.raises(ConfigurationError):
            load_config(path)
