"""
FAISS-backed vector index - exact L2 search over a flat index.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from .index import EngineRejection, IVectorIndex, write_snapshot
from .types import QueryResult


class FaissVectorIndex(IVectorIndex):
    """
    FAISS IndexFlatL2 plus a position -> record id map.

    The native index is allocated on the first add, once the dimension is known.
    A snapshot is one .npz file holding the serialized FAISS index and its record ids.
    """

    def __init__(self, dimension: Optional[int] = None):
        """
        Args:
            dimension: Fix the vector length up front (default: taken from the first add)
        """
        try:
            import faiss
            self.faiss = faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self._dimension = dimension
        self._index = faiss.IndexFlatL2(dimension) if dimension else None
        self._ids: List[int] = []
        self._id_to_pos: Dict[int, int] = {}

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def add(self, record_id: int, vector: np.ndarray) -> None:
        if record_id in self._id_to_pos:
            raise EngineRejection(f"Record {record_id} already exists in the index")
        if self._dimension is not None and len(vector) != self._dimension:
            raise EngineRejection(f"Vector dimension {len(vector)} does not match index dimension {self._dimension}")

        if self._index is None:
            self._dimension = len(vector)
            self._index = self.faiss.IndexFlatL2(self._dimension)

        # FAISS wants a contiguous float32 row
        vec = np.ascontiguousarray(np.asarray(vector, dtype=np.float32).reshape(1, -1))
        self._index.add(vec)
        self._id_to_pos[record_id] = len(self._ids)
        self._ids.append(record_id)

    def search(self, query_vector: np.ndarray, top_k: int) -> List[QueryResult]:
        if self._index is None or not self._index.ntotal:
            return []

        query = np.ascontiguousarray(np.asarray(query_vector, dtype=np.float32).reshape(1, -1))
        distances, positions = self._index.search(query, min(top_k, self._index.ntotal))

        results = []
        for distance, pos in zip(distances[0], positions[0]):
            if pos < 0 or pos >= len(self._ids):
                continue
            # IndexFlatL2 reports squared distances
            results.append(QueryResult(id=self._ids[pos], distance=float(np.sqrt(max(float(distance), 0.0)))))
        return results

    def size(self) -> int:
        return len(self._ids)

    def free(self) -> None:
        if self._index is not None:
            self._index.reset()
        self._index = None
        self._ids = []
        self._id_to_pos = {}

    def save(self, path: Union[str, Path]) -> None:
        if self._index is None:
            raise EngineRejection("Nothing to save: index holds no vectors")
        write_snapshot(
            path,
            index=self.faiss.serialize_index(self._index),
            ids=np.array(self._ids, dtype=np.int64),
        )

    def load(self, path: Union[str, Path]) -> None:
        path = Path(path)
        with np.load(path) as data:
            index = self.faiss.deserialize_index(data["index"])
            ids = [int(i) for i in data["ids"]]
        if len(ids) != index.ntotal:
            raise ValueError(f"Snapshot {path} is inconsistent: {index.ntotal} vectors, {len(ids)} ids")

        self._index = index
        self._dimension = index.d
        self._ids = ids
        self._id_to_pos = {record_id: pos for pos, record_id in enumerate(ids)}
