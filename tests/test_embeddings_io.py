import json
from pathlib import Path

import numpy as np
import pytest

from facemodes.embeddings_io import EmbeddingCache
from facemodes.errors import DimensionMismatchError, StorageError


def test_round_trip(tmp_path: Path) -> None:
    cache = EmbeddingCache({
        "faces/a.jpg": np.array([0.1, -2.5, 3.0], dtype=np.float32),
        "faces/b.jpg": np.array([1e-7, 0.3333333, 42.0], dtype=np.float32),
    })
    target = tmp_path / "embeddings.json"
    cache.save(target)
    loaded = EmbeddingCache.load(target)
    assert list(loaded) == list(cache)
    for path, vector in cache.items():
        np.testing.assert_array_equal(loaded[path], vector)
        assert loaded[path].dtype == np.float32


def test_missing_file_is_empty(tmp_path: Path) -> None:
    cache = EmbeddingCache.load(tmp_path / "absent.json")
    assert len(cache) == 0
    assert cache.dimensions is None


def test_corrupt_file_is_fatal(tmp_path: Path) -> None:
    target = tmp_path / "embeddings.json"
    target.write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError):
        EmbeddingCache.load(target)


def test_wrong_shape_is_fatal(tmp_path: Path) -> None:
    target = tmp_path / "embeddings.json"
    target.write_text(json.dumps({"a.jpg": "oops"}), encoding="utf-8")
    with pytest.raises(StorageError):
        EmbeddingCache.load(target)
    target.write_text(json.dumps({"a.jpg": [1, 2], "b.jpg": [1, 2, 3]}), encoding="utf-8")
    with pytest.raises(StorageError):
        EmbeddingCache.load(target)


def test_save_replaces_previous_content(tmp_path: Path) -> None:
    target = tmp_path / "embeddings.json"
    EmbeddingCache({"old.jpg": [1.0, 2.0]}).save(target)
    EmbeddingCache({"new.jpg": [3.0, 4.0]}).save(target)
    assert json.loads(target.read_text(encoding="utf-8")) == {"new.jpg": [3.0, 4.0]}
    assert [p.name for p in tmp_path.iterdir()] == ["embeddings.json"]


def test_overwrite_and_dimension_check() -> None:
    cache = EmbeddingCache()
    cache["a.jpg"] = [1.0, 2.0]
    cache["a.jpg"] = [5.0, 6.0]
    assert len(cache) == 1
    np.testing.assert_array_equal(cache["a.jpg"], [5.0, 6.0])
    with pytest.raises(DimensionMismatchError):
        cache["b.jpg"] = [1.0, 2.0, 3.0]


def test_save_keeps_file_permissions(tmp_path: Path) -> None:
    target = tmp_path / "embeddings.json"
    EmbeddingCache({"a.jpg": [1.0]}).save(target)
    target.chmod(0o640)
    EmbeddingCache({"a.jpg": [2.0]}).save(target)
    assert target.stat().st_mode & 0o777 == 0o640
