"""
JSON input/output for the embedding cache.

The cache maps an image path to its embedding so that a later run can
assign images to clusters without running the network again.  It is stored
as a single JSON object ``{path: [float, ...]}`` which is rewritten in full
on every save.  Writes go through a temporary file in the same directory
followed by :func:`os.replace`, so a crash never leaves a half written file.

Vectors are held as float32 arrays and written as the exact double value of
each float32, so a save followed by a load reproduces them bit for bit.
"""

from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Dict, ItemsView, Iterator, Optional

import numpy as np

from .errors import DimensionMismatchError, StorageError

log = logging.getLogger(__name__)


def _target_mode(path: Path) -> int:
    """Permission bits for a rewritten ``path``: its current ones, else the umask default."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


class EmbeddingCache:
    """Ordered mapping from image path to embedding vector."""

    def __init__(self, entries: Optional[Dict[str, np.ndarray]] = None) -> None:
        self._entries: Dict[str, np.ndarray] = {}
        for path, vector in (entries or {}).items():
            self[path] = vector

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __getitem__(self, path: str) -> np.ndarray:
        return self._entries[path]

    def __setitem__(self, path: str, vector) -> None:
        v = np.asarray(vector, dtype=np.float32).reshape(-1)
        dims = self.dimensions
        if dims is not None and v.shape[0] != dims:
            raise DimensionMismatchError(dims, int(v.shape[0]), what=f"embedding of {path}")
        self._entries[str(path)] = v

    def items(self) -> ItemsView[str, np.ndarray]:
        return self._entries.items()

    @property
    def dimensions(self) -> Optional[int]:
        """Length of the cached vectors, or ``None`` when empty."""
        for v in self._entries.values():
            return int(v.shape[0])
        return None

    def to_json(self) -> Dict[str, list]:
        return {path: [float(x) for x in v] for path, v in self._entries.items()}

    @classmethod
    def from_json(cls, doc) -> "EmbeddingCache":
        if not isinstance(doc, dict):
            raise StorageError("embedding cache must be a JSON object")
        cache = cls()
        for path, values in doc.items():
            if not isinstance(values, list) or not all(
                    isinstance(x, (int, float)) and not isinstance(x, bool) for x in values):
                raise StorageError(f"embedding of {path} is not an array of numbers")
            try:
                cache[path] = values
            except DimensionMismatchError as exc:
                raise StorageError(f"inconsistent embedding cache: {exc}") from exc
        return cache

    @classmethod
    def load(cls, path: Path) -> "EmbeddingCache":
        """Read a cache file; a missing file yields an empty cache."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except FileNotFoundError:
            log.info("embedding cache %s does not exist yet, starting empty", path)
            return cls()
        except (OSError, ValueError) as exc:
            raise StorageError(f"cannot read embedding cache {path}: {exc}") from exc
        cache = cls.from_json(doc)
        log.info("loaded %d cached embeddings from %s", len(cache), path)
        return cache

    def save(self, path: Path) -> None:
        """Replace the content of ``path`` with the whole cache."""
        path = Path(path)
        directory = path.parent if str(path.parent) else Path(".")
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=directory,
                                             prefix=f".{path.name}.", suffix=".tmp",
                                             delete=False) as tmp:
                tmp_name = tmp.name
                json.dump(self.to_json(), tmp)
            os.chmod(tmp_name, _target_mode(path))
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"cannot write embedding cache {path}: {exc}") from exc
        log.info("saved %d embeddings to %s", len(self), path)
