"""
Command‑line entry point for the facemodes pipeline.

This module parses command line arguments, configures logging, constructs a
:class:`RunConfig` object and runs the pipeline.  Any
:class:`~facemodes.errors.FaceModesError` ends the process with a logged
message and exit status 1.
"""

from __future__ import annotations

import logging
import sys

from .config import RunConfig, parse_args
from .errors import FaceModesError
from .pipeline import run_pipeline

log = logging.getLogger("facemodes")

LOG_FORMAT = "%(asctime)s %(levelname)s %(filename)s:%(lineno)d %(message)s"


def _gpu_preflight(cfg: RunConfig) -> None:
    """Warn when the InsightFace backend is asked for a GPU ONNX Runtime cannot see.

    This does not stop execution; ONNX Runtime falls back to the CPU provider.
    """
    if cfg.backend != "insightface" or cfg.device.upper() == "CPU":
        return
    try:
        import onnxruntime as ort  # type: ignore
    except ImportError:
        # InsightFace will report the missing runtime when loading the model.
        return
    if "CUDAExecutionProvider" not in set(ort.get_available_providers()):
        log.warning(
            "GPU not detected by ONNX Runtime; falling back to CPU. "
            "To enable GPU install the CUDA build: "
            "pip uninstall -y onnxruntime && pip install onnxruntime-gpu"
        )


def main(argv: list[str] | None = None) -> None:
    """Entry point called by the ``prime-modes`` script."""
    cfg = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=cfg.log_level, format=LOG_FORMAT, stream=sys.stderr)
    _gpu_preflight(cfg)
    try:
        run_pipeline(cfg)
    except FaceModesError as exc:
        log.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main(sys.argv[1:])
