"""
Assignment of cached embeddings to peaks and materialization on disk.

Every embedding in the cache is assigned to the peak whose mean is nearest
in Euclidean distance, and the source image is copied into a folder named
after that peak's identifier.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple

import numpy as np

from .embeddings_io import EmbeddingCache
from .errors import CopyError, DimensionMismatchError, StorageError
from .modes import Peak

log = logging.getLogger(__name__)

PROGRESS_INTERVAL = 100


def l2(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance between two vectors of equal length."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatchError(a.size, b.size)
    return float(np.sqrt(np.sum((b - a) ** 2)))


def nearest_peak(vector: np.ndarray, peaks: Sequence[Peak]) -> int:
    """Return the index of the peak nearest to ``vector``.

    Only a strictly smaller distance replaces the current best, so among
    equidistant peaks the one listed first wins.
    """
    if not peaks:
        raise ValueError("no peaks to assign to")
    best = -1
    best_distance = np.inf
    for i, peak in enumerate(peaks):
        dist = l2(peak.mean, vector)
        if best < 0 or dist < best_distance:
            best_distance = dist
            best = i
    return best


def assign_clusters(cache: EmbeddingCache, peaks: Sequence[Peak]) -> Iterator[Tuple[str, Peak]]:
    """Yield ``(path, peak)`` for every cached embedding, in cache order."""
    for path, vector in cache.items():
        yield path, peaks[nearest_peak(vector, peaks)]


def copy_file(src: Path, dst: Path) -> int:
    """Copy ``src`` to ``dst`` and return the number of bytes written.

    The whole source is read first; a write shorter than the source is an
    error.
    """
    try:
        with open(src, "rb") as f:
            data = f.read()
        with open(dst, "wb") as t:
            written = t.write(data)
    except OSError as exc:
        raise CopyError(f"copying {src} to {dst}: {exc}") from exc
    if written != len(data):
        raise CopyError(f"copying {src} to {dst}: wrote {written} of {len(data)} bytes")
    return written


def place_in_cluster(root: Path, peak: Peak, src: Path, count: int, extension: str = ".jpg") -> Path:
    """Copy ``src`` into ``root/<peak id>/``, creating the folder if needed."""
    peak_dir = Path(root) / str(peak.id)
    try:
        peak_dir.mkdir(exist_ok=True)
    except OSError as exc:
        raise StorageError(f"cannot create cluster directory {peak_dir}: {exc}") from exc
    dst = peak_dir / f"image{count}{extension}"
    copy_file(src, dst)
    return dst


def materialize_clusters(cache: EmbeddingCache, peaks: Sequence[Peak], root: Path,
                         extension: str = ".jpg") -> List[Path]:
    """Create ``root`` and copy each cached image into its peak's folder.

    Copies are named ``image<n><extension>`` where ``n`` counts copies made
    during this call.  ``root`` must not exist yet; peak folders are created
    on first use and reused afterwards.

    Returns
    -------
    list of Path
        Paths of the copied files, in assignment order.
    """
    root = Path(root)
    try:
        os.mkdir(root)
    except OSError as exc:
        raise StorageError(f"cannot create cluster directory {root}: {exc}") from exc

    copied: List[Path] = []
    for count, (path, peak) in enumerate(assign_clusters(cache, peaks)):
        if count % PROGRESS_INTERVAL == 0:
            log.info("cluster: %d", count)
        copied.append(place_in_cluster(root, peak, Path(path), count, extension))
    log.info("copied %d images into %d clusters under %s",
             len(copied), len({p.parent for p in copied}), root)
    return copied
