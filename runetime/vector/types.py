"""
Vector index records - integer-keyed vectors and ranked search hits.
"""

from dataclasses import dataclass

import numpy as np


@dataclass
class VectorRecord:
    """A vector stored in the index under an integer key."""

    id: int
    """Unique 64-bit key of the record"""

    vector: np.ndarray
    """Fixed-length float vector"""


@dataclass
class QueryResult:
    """One ranked hit from a nearest-neighbour search."""

    id: int
    """Key of the matching record"""

    distance: float
    """Euclidean (L2) distance from the query; smaller is nearer"""
