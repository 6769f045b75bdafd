"""
Top‑level package for the facemodes pipeline.

The functionality is organised into smaller modules:

- :mod:`facemodes.config` – frozen dataclass for run configuration and flag parsing.
- :mod:`facemodes.errors` – fatal and per‑image error types.
- :mod:`facemodes.images` – walking the faces directory and decoding JPEG images.
- :mod:`facemodes.embedders` – OpenCV DNN and InsightFace wrappers producing face embeddings.
- :mod:`facemodes.modes` – the mode store accumulating embeddings into peaks.
- :mod:`facemodes.embeddings_io` – the JSON path → embedding cache.
- :mod:`facemodes.clustering` – nearest‑peak assignment and per‑peak folders.
- :mod:`facemodes.pipeline` – orchestrates a full run, tying together all modules.

You can run the pipeline from the command line using the ``prime-modes``
script installed by this package.
"""

__all__ = [
    "config",
    "errors",
    "images",
    "embedders",
    "modes",
    "embeddings_io",
    "clustering",
    "pipeline",
]
