import io
from pathlib import Path

import numpy as np
import pytest

from facemodes.errors import DimensionMismatchError, StorageError
from facemodes.modes import MultiModal, connected_components, load_mode_store, save_mode_store


def _two_groups() -> MultiModal:
    store = MultiModal(2, max_nodes=16, bandwidth=1.0)
    for v in ([0.0, 0.0], [0.1, 0.0], [0.0, 0.1], [10.0, 10.0], [10.2, 10.0]):
        store.insert(np.array(v, dtype=np.float32))
    return store


def test_insert_rejects_wrong_dimension() -> None:
    store = MultiModal(3, max_nodes=4)
    with pytest.raises(DimensionMismatchError):
        store.insert([1.0, 2.0])
    with pytest.raises(DimensionMismatchError):
        store.insert([1.0, 2.0, 3.0, 4.0])
    assert len(store) == 0


def test_peaks_separate_groups() -> None:
    peaks = _two_groups().peaks()
    assert len(peaks) == 2
    heavy, light = peaks
    assert heavy.weight == 3
    assert light.weight == 2
    np.testing.assert_allclose(heavy.mean, [1 / 30, 1 / 30], atol=1e-5)
    np.testing.assert_allclose(light.mean, [10.1, 10.0], atol=1e-5)


def test_peaks_are_stable_between_calls() -> None:
    store = _two_groups()
    first = store.peaks()
    second = store.peaks()
    assert [p.id for p in first] == [p.id for p in second]
    for a, b in zip(first, second):
        np.testing.assert_array_equal(a.mean, b.mean)


def test_empty_store_has_no_peaks() -> None:
    assert MultiModal(4).peaks() == []


def test_capacity_is_bounded() -> None:
    store = MultiModal(1, max_nodes=3, bandwidth=0.1)
    for x in range(10):
        store.insert([float(x)])
    assert len(store) == 3
    assert store.total_weight == 10


def test_serialization_round_trip() -> None:
    store = _two_groups()
    buf = io.BytesIO()
    store.write_to(buf)
    buf.seek(0)
    loaded = MultiModal.read_from(buf, max_nodes=16, dimensions=2)
    assert [p.to_dict() for p in loaded.peaks()] == [p.to_dict() for p in store.peaks()]
    loaded.insert([20.0, 20.0])
    assert len(loaded.peaks()) == 3


def test_read_rejects_other_dimension() -> None:
    buf = io.BytesIO()
    _two_groups().write_to(buf)
    buf.seek(0)
    with pytest.raises(DimensionMismatchError):
        MultiModal.read_from(buf, dimensions=128)


def test_read_rejects_garbage() -> None:
    with pytest.raises(StorageError):
        MultiModal.read_from(io.BytesIO(b"definitely not a mode store"))


def test_read_rejects_plain_array() -> None:
    buf = io.BytesIO()
    np.save(buf, np.zeros(3))
    buf.seek(0)
    with pytest.raises(StorageError):
        MultiModal.read_from(buf)


def test_read_rejects_non_scalar_header() -> None:
    buf = io.BytesIO()
    np.savez(buf, format=np.array("facemodes.multimodal/1"), dimensions=np.arange(3),
             bandwidth=np.array(1.0), next_id=np.array(0), ids=np.empty(0, dtype=np.int64),
             means=np.empty((0, 3), dtype=np.float32), weights=np.empty(0))
    buf.seek(0)
    with pytest.raises(StorageError):
        MultiModal.read_from(buf)


def test_load_without_path_is_empty(tmp_path: Path) -> None:
    store = load_mode_store(None, 8, max_nodes=32)
    assert store.dimensions == 8
    assert len(store) == 0


def test_save_and_load_file(tmp_path: Path) -> None:
    target = tmp_path / "modes.npz"
    save_mode_store(_two_groups(), target)
    store = load_mode_store(target, None, max_nodes=16)
    assert store.dimensions == 2
    assert len(store.peaks()) == 2
    with pytest.raises(StorageError):
        load_mode_store(tmp_path / "missing.npz", 2, max_nodes=16)


def test_closed_store_refuses_use() -> None:
    with MultiModal(2) as store:
        store.insert([0.0, 0.0])
    with pytest.raises(RuntimeError):
        store.insert([0.0, 0.0])


def test_connected_components() -> None:
    comps = connected_components(5, [(0, 1), (3, 4)])
    assert sorted(sorted(c) for c in comps.values()) == [[0, 1], [2], [3, 4]]
