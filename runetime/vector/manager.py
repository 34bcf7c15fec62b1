"""
Vector index manager - single owner of the shared index handle.

Every operation on the handle runs under one lock, so native add/search/free
calls never overlap. Engine calls go through ``guard``: a rejected operation
leaves the handle Ready, anything else discards it back to Absent so the next
call starts from a fresh handle.
"""

import threading
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import numpy as np

from .faiss_store import FaissVectorIndex
from .index import EngineRejection, IVectorIndex, SimpleInMemoryVectorIndex
from .types import QueryResult, VectorRecord
from ..core.config import VectorConfig
from ..core.errors import (
    AddFailedError,
    DimensionMismatchError,
    InitializationFailedError,
    InvalidArgumentError,
    NotInitializedError,
    SearchFailedError,
)
from ..core.outcome import Outcome, guard
from ..util.logging import logger

MAX_RECORD_ID = 2 ** 63 - 1

ENGINES = {
    "faiss": FaissVectorIndex,
    "memory": SimpleInMemoryVectorIndex,
}


class IndexState(str, Enum):
    ABSENT = "absent"
    READY = "ready"


def classify_engine_error(exc: BaseException) -> Outcome:
    if isinstance(exc, EngineRejection):
        return Outcome.retryable(exc)
    return Outcome.failure(exc)


def as_vector(values: Union[Sequence[float], np.ndarray], name: str = "vector") -> np.ndarray:
    """Coerce to a non-empty, finite, one-dimensional float array."""
    try:
        vector = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"{name} must be a sequence of numbers: {e}") from e
    if vector.ndim != 1:
        raise InvalidArgumentError(f"{name} must be one-dimensional, got shape {vector.shape}")
    if vector.size == 0:
        raise InvalidArgumentError(f"{name} cannot be empty")
    if not np.all(np.isfinite(vector)):
        raise InvalidArgumentError(f"{name} must contain only finite values")
    return vector


class VectorIndexManager:
    """
    Owns one index handle and its lifecycle: Absent -> Ready -> Absent.

    Args:
        engine_factory: zero-argument callable returning a fresh IVectorIndex
        snapshot_path: optional file the index is loaded from and saved to
    """

    def __init__(self, engine_factory: Callable[[], IVectorIndex], snapshot_path: Optional[Union[str, Path]] = None):
        self._engine_factory = engine_factory
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._lock = threading.RLock()
        self._engine: Optional[IVectorIndex] = None

    @property
    def state(self) -> IndexState:
        return IndexState.READY if self._engine is not None else IndexState.ABSENT

    @property
    def dimension(self) -> Optional[int]:
        with self._lock:
            return self._engine.dimension if self._engine is not None else None

    def _has_snapshot(self) -> bool:
        return self.snapshot_path is not None and self.snapshot_path.exists()

    def ensure_ready(self) -> None:
        """
        Create the handle if Absent, restoring the snapshot when one exists.

        Raises:
            InitializationFailedError: the engine could not allocate or load
        """
        with self._lock:
            self._ensure_ready_locked()

    def _ensure_ready_locked(self) -> None:
        if self._engine is not None:
            return

        created = guard(self._engine_factory)
        if not created.ok:
            logger.log_vector_operation("init", details={"error": str(created.error)}, status="failed")
            raise InitializationFailedError(f"Cannot allocate vector index: {created.error}") from created.error
        engine = created.value

        if self._has_snapshot():
            loaded = guard(engine.load, self.snapshot_path)
            if not loaded.ok:
                guard(engine.free)
                logger.log_vector_operation("init", details={"snapshot": str(self.snapshot_path),
                                                             "error": str(loaded.error)}, status="failed")
                raise InitializationFailedError(
                    f"Cannot load vector snapshot {self.snapshot_path}: {loaded.error}"
                ) from loaded.error

        self._engine = engine
        logger.log_vector_operation("init", details={"size": engine.size(), "dimension": engine.dimension})

    def _discard_locked(self) -> None:
        if self._engine is not None:
            guard(self._engine.free)
        self._engine = None

    def add(self, record_id: int, vector: Union[Sequence[float], np.ndarray]) -> VectorRecord:
        """
        Add one vector under ``record_id``. The first add fixes the index dimension.

        Raises:
            InvalidArgumentError: bad id or vector
            DimensionMismatchError: vector length differs from the fixed dimension
            AddFailedError: engine rejected the add, or the snapshot could not be written
        """
        if isinstance(record_id, bool) or not 0 <= int(record_id) <= MAX_RECORD_ID:
            raise InvalidArgumentError(f"id must be between 0 and {MAX_RECORD_ID}, got {record_id}")
        record_id = int(record_id)
        vec = as_vector(vector)

        with self._lock:
            self._ensure_ready_locked()

            dimension = self._engine.dimension
            if dimension is not None and len(vec) != dimension:
                logger.log_vector_operation("add", record_id, {"dimension": len(vec), "expected": dimension},
                                            status="rejected")
                raise DimensionMismatchError(
                    f"Vector dimension {len(vec)} does not match index dimension {dimension}"
                )

            outcome = guard(self._engine.add, record_id, vec, classify=classify_engine_error)
            if not outcome.ok:
                if outcome.fatal:
                    self._discard_locked()
                logger.log_vector_operation("add", record_id, {"error": str(outcome.error),
                                                               "state": self.state.value}, status="failed")
                raise AddFailedError(f"Vector add failed for ID={record_id}: {outcome.error}") from outcome.error

            if self.snapshot_path is not None:
                saved = guard(self._engine.save, self.snapshot_path)
                if not saved.ok:
                    # Next call rebuilds from the last good snapshot, undoing this add
                    self._discard_locked()
                    logger.log_vector_operation("snapshot", record_id, {"error": str(saved.error)}, status="failed")
                    raise AddFailedError(
                        f"Vector add failed for ID={record_id}: snapshot {self.snapshot_path} was not written: {saved.error}"
                    ) from saved.error

            logger.log_vector_operation("add", record_id, {"dimension": len(vec), "size": self._engine.size()})

        return VectorRecord(id=record_id, vector=vec)

    def search(self, query_vector: Union[Sequence[float], np.ndarray], top_k: int = 5) -> List[QueryResult]:
        """
        Nearest records to ``query_vector``, ascending by distance.

        Fewer than ``top_k`` results come back when the index is smaller.

        Raises:
            InvalidArgumentError: bad query vector or top_k < 1
            NotInitializedError: no handle and no snapshot to restore
            DimensionMismatchError: query length differs from the fixed dimension
            SearchFailedError: engine error
        """
        query = as_vector(query_vector, name="query vector")
        if isinstance(top_k, bool) or int(top_k) < 1:
            raise InvalidArgumentError(f"top_k must be >= 1, got {top_k}")
        top_k = int(top_k)

        with self._lock:
            if self._engine is None:
                if not self._has_snapshot():
                    raise NotInitializedError("Vector index not initialized; add a vector first")
                self._ensure_ready_locked()

            dimension = self._engine.dimension
            if dimension is None:
                return []
            if len(query) != dimension:
                raise DimensionMismatchError(
                    f"Query dimension {len(query)} does not match index dimension {dimension}"
                )

            outcome = guard(self._engine.search, query, top_k, classify=classify_engine_error)
            if not outcome.ok:
                if outcome.fatal:
                    self._discard_locked()
                logger.log_vector_operation("search", details={"error": str(outcome.error),
                                                               "state": self.state.value}, status="failed")
                raise SearchFailedError(f"Vector search failed: {outcome.error}") from outcome.error

        logger.log_vector_operation("search", details={"top_k": top_k, "results": len(outcome.value)})
        return outcome.value

    def reset(self, discard_snapshot: bool = False) -> bool:
        """
        Free the handle and return to Absent. Idempotent.

        Returns True if a handle was freed.
        """
        with self._lock:
            freed = self._engine is not None
            self._discard_locked()
            if discard_snapshot and self.snapshot_path is not None:
                self.snapshot_path.unlink(missing_ok=True)
        logger.log_vector_operation("reset", details={"freed": freed, "discard_snapshot": discard_snapshot})
        return freed

    def reinitialize(self) -> None:
        """Drop any handle and create a new one (restoring the snapshot if configured)."""
        with self._lock:
            self._discard_locked()
            self._ensure_ready_locked()

    def size(self) -> int:
        with self._lock:
            return self._engine.size() if self._engine is not None else 0


def create_index_manager(config: VectorConfig) -> VectorIndexManager:
    """Manager for the configured engine."""
    engine_cls = ENGINES[config.engine]
    return VectorIndexManager(engine_cls, snapshot_path=config.snapshot_path)
