"""
Mode store: an incrementally updated summary of inserted embeddings.

:class:`MultiModal` keeps at most ``max_nodes`` weighted centroids ("nodes")
of the vectors inserted so far.  A vector close to an existing node is
absorbed into it, otherwise it becomes a node of its own; when the store
grows past its capacity the two closest nodes are merged.  Peaks are the
connected components of the graph linking nodes closer than ``bandwidth``,
found with a FAISS range search and a union–find pass.

The pipeline only relies on the narrow contract of insert, peak list and
binary (de)serialization; the node layout is private to this module.
"""

from __future__ import annotations

import io
import logging
import zipfile
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, List, Optional, Tuple

import faiss
import numpy as np

from .config import DEFAULT_BANDWIDTH
from .errors import DimensionMismatchError, StorageError

log = logging.getLogger(__name__)

FORMAT_TAG = "facemodes.multimodal/1"


@dataclass
class Peak:
    """A mode of the inserted embeddings."""
    id: int
    mean: np.ndarray
    weight: float

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "weight": float(self.weight),
            "mean": [float(x) for x in self.mean],
        }


def connected_components(n_nodes: int, edges: Iterable[Tuple[int, int]]) -> Dict[int, List[int]]:
    """Compute connected components using a union–find structure.

    Returns a mapping from component representative to a list of member indices.
    """
    parent = list(range(n_nodes))

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def union(a: int, b: int) -> None:
        ra, rb = find(a), find(b)
        if ra != rb:
            parent[rb] = ra

    for a, b in edges:
        union(a, b)
    comp: Dict[int, List[int]] = defaultdict(list)
    for i in range(n_nodes):
        comp[find(i)].append(i)
    return comp


class MultiModal:
    """Bounded set of weighted nodes from which peaks are derived.

    Parameters
    ----------
    dimensions: int
        Length of every vector inserted into the store.
    max_nodes: int
        Maximum number of nodes kept; ``0`` means unbounded.
    bandwidth: float
        Nodes closer than this Euclidean distance belong to the same peak.
        Vectors within half of it are absorbed into an existing node.
    """
    def __init__(self, dimensions: int, max_nodes: int = 1024,
                 bandwidth: float = DEFAULT_BANDWIDTH) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        if max_nodes < 0:
            raise ValueError("max_nodes must not be negative")
        self.dimensions = int(dimensions)
        self.max_nodes = int(max_nodes)
        self.bandwidth = float(bandwidth)
        self._means = np.empty((0, self.dimensions), dtype=np.float32)
        self._weights = np.empty(0, dtype=np.float64)
        self._ids = np.empty(0, dtype=np.int64)
        self._next_id = 0
        self._closed = False

    def __len__(self) -> int:
        return int(self._ids.shape[0])

    def __enter__(self) -> "MultiModal":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._means = np.empty((0, self.dimensions), dtype=np.float32)
        self._weights = np.empty(0, dtype=np.float64)
        self._ids = np.empty(0, dtype=np.int64)
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("mode store is closed")

    @property
    def total_weight(self) -> float:
        return float(self._weights.sum())

    def insert(self, vector) -> None:
        """Add one embedding to the store.

        Raises
        ------
        DimensionMismatchError
            If ``vector`` is not one dimensional with ``dimensions`` entries.
        """
        self._check_open()
        v = np.asarray(vector, dtype=np.float32)
        if v.ndim != 1 or v.shape[0] != self.dimensions:
            raise DimensionMismatchError(self.dimensions, int(v.size))
        if len(self):
            dists = np.linalg.norm(self._means - v, axis=1)
            j = int(np.argmin(dists))
            if dists[j] <= self.bandwidth / 2:
                w = self._weights[j]
                self._means[j] = (self._means[j] * w + v) / (w + 1)
                self._weights[j] = w + 1
                return
        self._means = np.vstack([self._means, v[None, :]])
        self._weights = np.append(self._weights, 1.0)
        self._ids = np.append(self._ids, self._next_id)
        self._next_id += 1
        self._enforce_capacity()

    def _enforce_capacity(self) -> None:
        while self.max_nodes and len(self) > self.max_nodes:
            self._merge_closest_pair()

    def _merge_closest_pair(self) -> None:
        means = self._means.astype(np.float64)
        sq = np.einsum("ij,ij->i", means, means)
        d2 = sq[:, None] + sq[None, :] - 2.0 * (means @ means.T)
        np.fill_diagonal(d2, np.inf)
        i, j = np.unravel_index(int(np.argmin(d2)), d2.shape)
        # the heavier node survives, the older one on ties
        if (self._weights[j], -self._ids[j]) > (self._weights[i], -self._ids[i]):
            i, j = j, i
        wi, wj = self._weights[i], self._weights[j]
        self._means[i] = (means[i] * wi + means[j] * wj) / (wi + wj)
        self._weights[i] = wi + wj
        keep = np.arange(len(self)) != j
        self._means = self._means[keep]
        self._weights = self._weights[keep]
        self._ids = self._ids[keep]

    def _edges(self) -> List[Tuple[int, int]]:
        means = np.ascontiguousarray(self._means, dtype=np.float32)
        index = faiss.IndexFlatL2(self.dimensions)
        index.add(means)
        # IndexFlatL2 radii are squared distances
        lims, _distances, labels = index.range_search(means, self.bandwidth ** 2)
        edges = []
        for i in range(len(self)):
            for j in labels[lims[i]:lims[i + 1]]:
                if i < j:
                    edges.append((i, int(j)))
        return edges

    def peaks(self) -> List[Peak]:
        """Return the current peaks, heaviest first.

        The result only depends on the inserted vectors, so repeated calls
        without intervening inserts return equal lists.
        """
        self._check_open()
        if not len(self):
            return []
        comps = connected_components(len(self), self._edges())
        peaks = []
        for members in comps.values():
            weights = self._weights[members]
            mean = (self._means[members].astype(np.float64) * weights[:, None]).sum(axis=0) / weights.sum()
            # heaviest member names the peak
            head = min(members, key=lambda m: (-self._weights[m], self._ids[m]))
            peaks.append(Peak(id=int(self._ids[head]), mean=mean.astype(np.float32),
                              weight=float(weights.sum())))
        peaks.sort(key=lambda p: (-p.weight, p.id))
        return peaks

    def write_to(self, stream: BinaryIO) -> None:
        """Serialize the store state to a binary stream."""
        self._check_open()
        np.savez(
            stream,
            format=np.array(FORMAT_TAG),
            dimensions=np.array(self.dimensions, dtype=np.int64),
            bandwidth=np.array(self.bandwidth, dtype=np.float64),
            next_id=np.array(self._next_id, dtype=np.int64),
            ids=self._ids,
            means=self._means,
            weights=self._weights,
        )

    @classmethod
    def read_from(cls, stream: BinaryIO, max_nodes: int = 0,
                  dimensions: Optional[int] = None) -> "MultiModal":
        """Deserialize a store written by :meth:`write_to`.

        ``dimensions``, when given, must match the stored dimension.  A state
        with more nodes than ``max_nodes`` is collapsed down to capacity.
        """
        try:
            loaded = np.load(stream, allow_pickle=False)
            if not isinstance(loaded, np.lib.npyio.NpzFile):
                raise StorageError("mode store is not an npz archive")
            with loaded as data:
                if str(data["format"]) != FORMAT_TAG:
                    raise StorageError(f"unknown mode store format {data['format']}")
                stored_dims = int(data["dimensions"])
                bandwidth = float(data["bandwidth"])
                next_id = int(data["next_id"])
                ids = data["ids"].astype(np.int64)
                means = data["means"].astype(np.float32)
                weights = data["weights"].astype(np.float64)
        except (OSError, ValueError, TypeError, KeyError, EOFError, zipfile.BadZipFile) as exc:
            raise StorageError(f"cannot read mode store: {exc}") from exc
        if dimensions is not None and stored_dims != dimensions:
            raise DimensionMismatchError(dimensions, stored_dims, what="stored mode store")
        if means.shape != (ids.shape[0], stored_dims) or weights.shape != ids.shape:
            raise StorageError("mode store arrays are inconsistent")
        store = cls(stored_dims, max_nodes=max_nodes, bandwidth=bandwidth)
        store._means = means
        store._weights = weights
        store._ids = ids
        store._next_id = next_id
        store._enforce_capacity()
        return store


def load_mode_store(path: Optional[Path], dimensions: Optional[int], max_nodes: int,
                    bandwidth: float = DEFAULT_BANDWIDTH) -> MultiModal:
    """Open the mode store for a run.

    Returns an empty store when ``path`` is ``None``; ``dimensions`` must be
    known in that case.
    """
    if path is None:
        if dimensions is None:
            raise ValueError("dimensions are required for an empty mode store")
        return MultiModal(dimensions, max_nodes=max_nodes, bandwidth=bandwidth)
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as exc:
        raise StorageError(f"cannot open mode store {path}: {exc}") from exc
    store = MultiModal.read_from(io.BytesIO(raw), max_nodes=max_nodes, dimensions=dimensions)
    log.info("loaded mode store %s: %d nodes, %d dimensions", path, len(store), store.dimensions)
    return store


def save_mode_store(store: MultiModal, path: Path) -> None:
    """Write ``store`` to ``path``, replacing any previous content."""
    log.info("writing mode store to %s", path)
    try:
        with open(path, "wb") as f:
            store.write_to(f)
    except OSError as exc:
        raise StorageError(f"cannot write mode store {path}: {exc}") from exc
