"""
Embedding model wrappers.

This module abstracts away the details of loading and running a face
embedding network.  The default backend uses OpenCV's DNN module, which can
read two‑artifact models (an OpenVINO ``.xml`` description with its ``.bin``
weights, a Caffe prototxt with its caffemodel) as well as single file
models such as the OpenFace ``.t7``.  Optionally an ArcFace ONNX model can
be run through InsightFace and ONNX Runtime.

The :class:`Embedder` interface exposes :attr:`Embedder.embedding_size` and
a single method :meth:`Embedder.embed` which takes an RGB image and returns
a float32 vector.  Embedders are context managers so the driver can release
them on every exit path.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from .config import RunConfig
from .errors import ConfigurationError, InferenceError

log = logging.getLogger(__name__)

# device selector -> (backend, target)
_DNN_DEVICES = {
    "CPU": (cv2.dnn.DNN_BACKEND_OPENCV, cv2.dnn.DNN_TARGET_CPU),
    "GPU": (cv2.dnn.DNN_BACKEND_OPENCV, cv2.dnn.DNN_TARGET_OPENCL),
    "CUDA": (cv2.dnn.DNN_BACKEND_CUDA, cv2.dnn.DNN_TARGET_CUDA),
    "MYRIAD": (cv2.dnn.DNN_BACKEND_INFERENCE_ENGINE, cv2.dnn.DNN_TARGET_MYRIAD),
}


class Embedder:
    """Base class for all embedders."""

    embedding_size: int = 0

    def embed(self, img: np.ndarray) -> np.ndarray:
        """Return the embedding of an ``(h, w, 3)`` uint8 RGB image.

        Subclasses must implement this method and raise
        :class:`~facemodes.errors.InferenceError` when the network fails on
        this particular image.
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release the underlying model."""

    def __enter__(self) -> "Embedder":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class OpenCVDnnEmbedder(Embedder):
    """Embedding network run by :mod:`cv2.dnn`.

    Parameters
    ----------
    desc: Path
        Description artifact, or the only artifact for single file formats.
    weights: Path, optional
        Weights artifact for two file formats.
    device: str
        One of ``CPU``, ``GPU``, ``CUDA`` or ``MYRIAD``.
    input_size: int
        The image is resized to a square blob of this side length.
    """
    def __init__(self, desc: Path, weights: Optional[Path] = None, device: str = "CPU",
                 input_size: int = 96, scale: float = 1.0 / 255) -> None:
        key = device.upper()
        if key not in _DNN_DEVICES:
            raise ConfigurationError(
                f"unknown device {device!r}; expected one of {', '.join(_DNN_DEVICES)}")
        try:
            if weights is None:
                self.net = cv2.dnn.readNet(str(desc))
            else:
                self.net = cv2.dnn.readNet(str(weights), str(desc))
            backend, target = _DNN_DEVICES[key]
            self.net.setPreferableBackend(backend)
            self.net.setPreferableTarget(target)
        except cv2.error as exc:
            raise ConfigurationError(f"cannot load classifier {desc}: {exc}") from exc
        self.input_size = input_size
        self.scale = scale
        self.embedding_size = self._probe_size()
        log.info("loaded %s on %s, embedding size %d", desc, key, self.embedding_size)

    def _blob(self, img: np.ndarray) -> np.ndarray:
        # images are already RGB so no channel swap
        return cv2.dnn.blobFromImage(img, self.scale, (self.input_size, self.input_size),
                                     (0, 0, 0), swapRB=False, crop=False)

    def _probe_size(self) -> int:
        zeros = np.zeros((self.input_size, self.input_size, 3), dtype=np.uint8)
        try:
            self.net.setInput(self._blob(zeros))
            out = self.net.forward()
        except cv2.error as exc:
            raise ConfigurationError(f"classifier failed on a probe input: {exc}") from exc
        return int(np.asarray(out).size)

    def embed(self, img: np.ndarray) -> np.ndarray:
        if self.net is None:
            raise RuntimeError("embedder is closed")
        try:
            self.net.setInput(self._blob(img))
            out = self.net.forward()
        except cv2.error as exc:
            raise InferenceError("<image>", str(exc)) from exc
        return np.asarray(out, dtype=np.float32).reshape(-1)

    def close(self) -> None:
        self.net = None


class InsightFaceEmbedder(Embedder):
    """ArcFace recognition model loaded through InsightFace's model zoo.

    The image is expected to be an aligned face crop.  Embeddings are L2
    normalised.
    """
    def __init__(self, model_path: Path, device: str = "CPU") -> None:
        from insightface.model_zoo import get_model

        use_gpu = device.upper() in ("GPU", "CUDA")
        if use_gpu:
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
        else:
            providers = ["CPUExecutionProvider"]
        try:
            self.model = get_model(str(model_path), providers=providers)
        except Exception as exc:
            raise ConfigurationError(f"cannot load classifier {model_path}: {exc}") from exc
        if self.model is None or not hasattr(self.model, "get_feat"):
            raise ConfigurationError(f"{model_path} is not a recognition model")
        self.model.prepare(ctx_id=0 if use_gpu else -1)
        self.embedding_size = int(self.model.output_shape[1])
        log.info("loaded %s with %s, embedding size %d", model_path, providers[0], self.embedding_size)

    def embed(self, img: np.ndarray) -> np.ndarray:
        if self.model is None:
            raise RuntimeError("embedder is closed")
        bgr = np.ascontiguousarray(img[:, :, ::-1])
        try:
            feat = self.model.get_feat(bgr)
        except Exception as exc:
            raise InferenceError("<image>", str(exc)) from exc
        embedding = np.asarray(feat, dtype=np.float32).reshape(-1)
        embedding /= np.linalg.norm(embedding) + 1e-9
        return embedding

    def close(self) -> None:
        self.model = None


def get_embedder(config: RunConfig) -> Embedder:
    """Factory function returning an embedder for ``config``."""
    if config.classifier_desc is None:
        raise ConfigurationError("-classifierDesc is required to embed faces")
    for artifact in (config.classifier_desc, config.classifier_weights):
        if artifact is not None and not Path(artifact).is_file():
            raise ConfigurationError(f"classifier artifact {artifact} does not exist")
    backend = config.backend.lower()
    if backend == "dnn":
        return OpenCVDnnEmbedder(config.classifier_desc, config.classifier_weights,
                                 device=config.device, input_size=config.input_size)
    elif backend == "insightface":
        return InsightFaceEmbedder(config.classifier_desc, device=config.device)
    raise ConfigurationError(f"unknown backend {config.backend!r}")
