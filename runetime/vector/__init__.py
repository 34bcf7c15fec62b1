"""
Vector index - engines, records and the manager that owns the shared handle.
"""

from .index import EngineRejection, IVectorIndex, SimpleInMemoryVectorIndex
from .faiss_store import FaissVectorIndex
from .manager import IndexState, VectorIndexManager, create_index_manager
from .types import QueryResult, VectorRecord

__all__ = [
    'EngineRejection',
    'IVectorIndex',
    'SimpleInMemoryVectorIndex',
    'FaissVectorIndex',
    'IndexState',
    'VectorIndexManager',
    'create_index_manager',
    'QueryResult',
    'VectorRecord',
]
