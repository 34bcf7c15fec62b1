"""
Test cases for the numpy in-memory engine.
"""

import numpy as np
import pytest

from runetime.vector.index import EngineRejection, IVectorIndex, SimpleInMemoryVectorIndex
from runetime.vector.types import QueryResult


def test_vector_index_interface():
    """Test that SimpleInMemoryVectorIndex implements IVectorIndex interface."""
    index = SimpleInMemoryVectorIndex()
    assert isinstance(index, IVectorIndex)


def test_add_single_record():
    index = SimpleInMemoryVectorIndex()
    index.add(1, np.array([1.0, 0.0, 0.0]))

    results = index.search(np.array([1.0, 0.0, 0.0]), top_k=1)
    assert len(results) == 1
    assert isinstance(results[0], QueryResult)
    assert results[0].id == 1
    assert results[0].distance == 0.0


def test_search_empty_index():
    assert SimpleInMemoryVectorIndex().search(np.array([1.0, 0.0]), top_k=3) == []


def test_search_ranks_by_distance():
    index = SimpleInMemoryVectorIndex()
    index.add(1, np.array([5.0, 0.0]))
    index.add(2, np.array([1.0, 0.0]))
    index.add(3, np.array([0.0, 2.0]))

    results = index.search(np.array([0.0, 0.0]), top_k=3)

    assert [r.id for r in results] == [2, 3, 1]
    assert [r.distance for r in results] == pytest.approx([1.0, 2.0, 5.0])


def test_equal_distances_keep_insertion_order():
    index = SimpleInMemoryVectorIndex()
    index.add(9, np.array([1.0, 0.0]))
    index.add(4, np.array([0.0, 1.0]))

    assert [r.id for r in index.search(np.array([0.0, 0.0]), top_k=2)] == [9, 4]


def test_duplicate_and_mismatched_adds_rejected():
    index = SimpleInMemoryVectorIndex()
    index.add(1, np.array([1.0, 0.0]))

    with pytest.raises(EngineRejection):
        index.add(1, np.array([0.0, 1.0]))
    with pytest.raises(EngineRejection):
        index.add(2, np.array([0.0, 1.0, 2.0]))
    assert index.size() == 1


def test_free_clears_index():
    index = SimpleInMemoryVectorIndex()
    index.add(1, np.array([1.0, 0.0]))
    index.free()

    assert index.size() == 0
    assert index.dimension is None


def test_save_and_load(tmp_path):
    path = tmp_path / "vectors.npz"
    index = SimpleInMemoryVectorIndex()
    index.add(1, np.array([1.0, 0.0]))
    index.add(2, np.array([0.0, 1.0]))
    index.save(path)

    restored = SimpleInMemoryVectorIndex()
    restored.load(path)

    assert restored.size() == 2
    assert restored.dimension == 2
    assert restored.search(np.array([0.0, 0.9]), top_k=1)[0].id == 2
