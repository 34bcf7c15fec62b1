"""
Vector index engines - the interface every engine implements plus a numpy brute-force engine.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from .types import QueryResult


def write_snapshot(path: Union[str, Path], **arrays: np.ndarray) -> None:
    """Write arrays to one .npz file; readers see either the old file or the complete new one."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "wb") as f:
            np.savez(f, **arrays)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class EngineRejection(Exception):
    """The engine declined one operation; the index itself is intact."""


class IVectorIndex(ABC):
    """Abstract interface for an in-process vector index keyed by integer ids."""

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        """Fixed vector length, or None until the first vector is added."""
        pass

    @abstractmethod
    def add(self, record_id: int, vector: np.ndarray) -> None:
        """Add one vector. Raises EngineRejection for a duplicate id."""
        pass

    @abstractmethod
    def search(self, query_vector: np.ndarray, top_k: int) -> List[QueryResult]:
        """Return up to top_k nearest records, ascending by distance."""
        pass

    @abstractmethod
    def size(self) -> int:
        pass

    @abstractmethod
    def free(self) -> None:
        """Release the underlying index. The engine is unusable afterwards."""
        pass

    @abstractmethod
    def save(self, path: Union[str, Path]) -> None:
        pass

    @abstractmethod
    def load(self, path: Union[str, Path]) -> None:
        pass


class SimpleInMemoryVectorIndex(IVectorIndex):
    """In-memory implementation of IVectorIndex using exact L2 distance."""

    def __init__(self):
        self._vectors: Dict[int, np.ndarray] = {}
        self._dimension: Optional[int] = None

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def add(self, record_id: int, vector: np.ndarray) -> None:
        if record_id in self._vectors:
            raise EngineRejection(f"Record {record_id} already exists in the index")
        if self._dimension is not None and len(vector) != self._dimension:
            raise EngineRejection(f"Vector dimension {len(vector)} does not match index dimension {self._dimension}")

        self._vectors[record_id] = np.array(vector, dtype=np.float64)
        if self._dimension is None:
            self._dimension = len(vector)

    def search(self, query_vector: np.ndarray, top_k: int) -> List[QueryResult]:
        if not self._vectors:
            return []

        ids = list(self._vectors.keys())
        matrix = np.vstack([self._vectors[i] for i in ids])
        distances = np.linalg.norm(matrix - np.asarray(query_vector, dtype=np.float64), axis=1)

        # Stable sort keeps insertion order among equal distances
        order = np.argsort(distances, kind="stable")[:top_k]
        return [QueryResult(id=ids[i], distance=float(distances[i])) for i in order]

    def size(self) -> int:
        return len(self._vectors)

    def free(self) -> None:
        self._vectors.clear()
        self._dimension = None

    def save(self, path: Union[str, Path]) -> None:
        ids = np.array(list(self._vectors.keys()), dtype=np.int64)
        if self._vectors:
            vectors = np.vstack(list(self._vectors.values()))
        else:
            vectors = np.zeros((0, self._dimension or 0))
        write_snapshot(path, ids=ids, vectors=vectors)

    def load(self, path: Union[str, Path]) -> None:
        with np.load(Path(path)) as data:
            ids = data["ids"]
            vectors = data["vectors"]
        self._vectors = {int(i): vectors[pos].copy() for pos, i in enumerate(ids)}
        self._dimension = int(vectors.shape[1]) if len(ids) else None
