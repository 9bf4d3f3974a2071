"""ONNX Runtime implementations of the encoder and denoiser.

Input/output names follow the exported models:

- encoder: input ``image`` ``[1, 3, S, S]``; every output is returned
- denoiser: inputs ``noisy_image``, ``lq_image`` ``[1, 3, H, W]``,
  ``timestep`` int64 ``[1]``, ``image_context``, ``degra_context``
  ``[1, 512]``; output 0 is the predicted noise
"""

import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import onnxruntime as ort

from ..core.imaging import prepare_encoder_input
from ..exceptions import ModelUnavailableError

logger = logging.getLogger(__name__)


def create_session(
    path: Path,
    device: str = "cpu",
    intra_op_threads: int = 4,
    inter_op_threads: int = 2,
) -> ort.InferenceSession:
    """Create an inference session with full graph optimization.

    Raises:
        ModelUnavailableError: If the file is missing
    """
    path = Path(path)
    if not path.exists():
        raise ModelUnavailableError(f"Model file not found: {path}", model_path=str(path))

    # Set up providers
    providers = ["CPUExecutionProvider"]
    if device.startswith("cuda"):
        providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]

    sess_options = ort.SessionOptions()
    sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    sess_options.intra_op_num_threads = intra_op_threads
    sess_options.inter_op_num_threads = inter_op_threads

    session = ort.InferenceSession(str(path), sess_options, providers=providers)

    size_mb = path.stat().st_size / (1024 * 1024)
    logger.info(f"ONNX model loaded: {path.name} ({size_mb:.0f} MB)")
    for item in session.get_inputs():
        logger.debug(f"Input '{item.name}': {item.shape} {item.type}")
    for item in session.get_outputs():
        logger.debug(f"Output '{item.name}': {item.shape} {item.type}")
    return session


class OnnxDegradationEncoder:
    """DA-CLIP style encoder running on ONNX Runtime."""

    def __init__(
        self,
        session: ort.InferenceSession,
        input_name: str = "image",
        input_size: int = 224,
    ):
        self.session = session
        self.input_name = input_name
        self.input_size = input_size
        self._output_names: List[str] = [o.name for o in session.get_outputs()]

    def encode(self, image: np.ndarray) -> Dict[str, np.ndarray]:
        start = time.perf_counter()
        batch = prepare_encoder_input(image, self.input_size)
        outputs = self.session.run(self._output_names, {self.input_name: batch})

        result = {}
        for name, value in zip(self._output_names, outputs):
            embedding = np.asarray(value, dtype=np.float32)
            if embedding.ndim > 1:
                embedding = embedding[0]
            result[name] = embedding.reshape(-1)
            logger.debug(f"Output '{name}': {result[name].shape[0]} dims")

        logger.info(f"Encoded in {(time.perf_counter() - start) * 1000:.0f}ms")
        return result

    def close(self) -> None:
        self.session = None


class OnnxNoiseDenoiser:
    """Conditional noise predictor running on ONNX Runtime."""

    def __init__(self, session: ort.InferenceSession):
        self.session = session
        self._output_name = session.get_outputs()[0].name

    def denoise(
        self,
        noisy: np.ndarray,
        lq: np.ndarray,
        timestep: int,
        image_context: np.ndarray,
        degradation_context: np.ndarray,
    ) -> np.ndarray:
        inputs = {
            "noisy_image": noisy[np.newaxis].astype(np.float32, copy=False),
            "lq_image": lq[np.newaxis].astype(np.float32, copy=False),
            "timestep": np.array([timestep], dtype=np.int64),
            "image_context": image_context.reshape(1, -1).astype(np.float32, copy=False),
            "degra_context": degradation_context.reshape(1, -1).astype(np.float32, copy=False),
        }
        (noise,) = self.session.run([self._output_name], inputs)
        return np.asarray(noise, dtype=np.float32)[0]

    def close(self) -> None:
        self.session = None


class OnnxModelLoader:
    """Loads an ONNX encoder or denoiser on demand.

    Args:
        path: Path to the ``.onnx`` file
        role: ``"encoder"`` or ``"denoiser"``
        device: ``"cpu"`` or ``"cuda"``
        encoder_input_size: Square input size for the encoder
        intra_op_threads: Threads per operator
        inter_op_threads: Parallel operators
    """

    def __init__(
        self,
        path: Path,
        role: str,
        device: str = "cpu",
        encoder_input_size: int = 224,
        intra_op_threads: int = 4,
        inter_op_threads: int = 2,
        name: Optional[str] = None,
    ):
        if role not in ("encoder", "denoiser"):
            raise ValueError(f"role must be 'encoder' or 'denoiser', got {role!r}")
        self.path = Path(path)
        self.role = role
        self.device = device
        self.encoder_input_size = encoder_input_size
        self.intra_op_threads = intra_op_threads
        self.inter_op_threads = inter_op_threads
        self.name = name or self.path.stem

    def load(self):
        session = create_session(
            self.path,
            device=self.device,
            intra_op_threads=self.intra_op_threads,
            inter_op_threads=self.inter_op_threads,
        )
        if self.role == "encoder":
            return OnnxDegradationEncoder(session, input_size=self.encoder_input_size)
        return OnnxNoiseDenoiser(session)

    def unload(self, model) -> None:
        model.close()
