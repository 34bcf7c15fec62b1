"""runetime-db - sensor time-series store with daily rollups and a vector similarity index."""

__version__ = "0.3.0"
