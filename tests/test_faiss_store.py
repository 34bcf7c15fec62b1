"""
Test cases for FaissVectorIndex implementation.
"""

from unittest.mock import patch

import numpy as np
import pytest

from runetime.core.errors import DimensionMismatchError
from runetime.vector import EngineRejection, FaissVectorIndex, IVectorIndex, VectorIndexManager


def test_faiss_index_initialization():
    """Test that FaissVectorIndex can be initialized without a dimension."""
    index = FaissVectorIndex()

    assert isinstance(index, IVectorIndex)
    assert index.dimension is None
    assert index.size() == 0
    assert index.search(np.zeros(3), 5) == []


def test_faiss_first_add_fixes_dimension():
    index = FaissVectorIndex()
    index.add(1, np.array([1.0, 2.0, 3.0]))

    assert index.dimension == 3
    assert index.size() == 1


def test_faiss_fixed_dimension_up_front():
    index = FaissVectorIndex(dimension=384)

    with pytest.raises(EngineRejection, match="dimension"):
        index.add(1, np.zeros(3))


def test_faiss_search_returns_euclidean_distance():
    """IndexFlatL2 reports squared distances; results carry the plain L2 distance."""
    index = FaissVectorIndex()
    index.add(7, np.array([0.0, 0.0, 0.0]))
    index.add(8, np.array([3.0, 4.0, 0.0]))

    results = index.search(np.array([0.0, 0.0, 0.0]), 2)

    assert [r.id for r in results] == [7, 8]
    assert results[0].distance == pytest.approx(0.0)
    assert results[1].distance == pytest.approx(5.0)


def test_faiss_top_k_larger_than_index():
    index = FaissVectorIndex()
    index.add(1, np.array([0.0, 1.0]))
    index.add(2, np.array([1.0, 0.0]))

    assert len(index.search(np.array([0.0, 0.0]), 10)) == 2


def test_faiss_large_ids():
    index = FaissVectorIndex()
    big = 2 ** 63 - 1
    index.add(big, np.array([1.0, 1.0]))

    assert index.search(np.array([1.0, 1.0]), 1)[0].id == big


def test_faiss_duplicate_id_rejected():
    index = FaissVectorIndex()
    index.add(1, np.array([0.0, 1.0]))

    with pytest.raises(EngineRejection, match="already exists"):
        index.add(1, np.array([1.0, 0.0]))
    assert index.size() == 1


def test_faiss_free():
    index = FaissVectorIndex()
    index.add(1, np.array([0.0, 1.0]))
    index.free()

    assert index.size() == 0
    assert index.search(np.array([0.0, 1.0]), 1) == []


def test_faiss_save_and_load(tmp_path):
    path = tmp_path / "vectors.npz"
    index = FaissVectorIndex()
    index.add(10, np.array([0.0, 0.0, 0.0]))
    index.add(20, np.array([2.0, 0.0, 0.0]))
    index.save(path)

    restored = FaissVectorIndex()
    restored.load(path)

    assert restored.dimension == 3
    assert restored.size() == 2
    assert [r.id for r in restored.search(np.array([1.9, 0.0, 0.0]), 2)] == [20, 10]
    with pytest.raises(EngineRejection):
        restored.add(10, np.array([1.0, 1.0, 1.0]))


def test_faiss_snapshot_is_one_file(tmp_path):
    index = FaissVectorIndex()
    index.add(1, np.array([1.0, 2.0]))
    index.save(tmp_path / "vectors.npz")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["vectors.npz"]


def test_faiss_interrupted_save_keeps_previous_snapshot(tmp_path):
    path = tmp_path / "vectors.npz"
    index = FaissVectorIndex()
    index.add(10, np.array([0.0, 0.0, 0.0]))
    index.add(20, np.array([2.0, 0.0, 0.0]))
    index.save(path)

    index.add(30, np.array([4.0, 0.0, 0.0]))
    with patch("runetime.vector.index.np.savez", side_effect=OSError("No space left on device")):
        with pytest.raises(OSError):
            index.save(path)

    restored = FaissVectorIndex()
    restored.load(path)
    assert restored.size() == 2
    assert sorted(p.name for p in tmp_path.iterdir()) == ["vectors.npz"]


def test_faiss_save_empty_index_rejected(tmp_path):
    with pytest.raises(EngineRejection):
        FaissVectorIndex().save(tmp_path / "empty.faiss")


def test_manager_over_faiss():
    """The ranking and dimension-lock behaviour holds on the FAISS engine."""
    manager = VectorIndexManager(FaissVectorIndex)
    manager.add(1, [0.0, 0.0, 0.0])
    manager.add(2, [1.0, 0.0, 0.0])
    manager.add(3, [5.0, 0.0, 0.0])

    assert [r.id for r in manager.search([0.0, 0.0, 0.0], 2)] == [1, 2]
    with pytest.raises(DimensionMismatchError):
        manager.add(4, [1.0, 2.0])
