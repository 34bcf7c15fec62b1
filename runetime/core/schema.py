"""
Record types for raw readings, daily rollup buckets and compression reports.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Reading:
    sensor_id: int
    timestamp: datetime
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sensor_id": self.sensor_id,
            "timestamp": self.timestamp.isoformat(),
            "value": self.value,
        }


@dataclass(frozen=True)
class CompressedBucket:
    day: date
    avg_value: float
    max_value: float
    min_value: float
    sample_count: int
    compressed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "day": self.day.isoformat(),
            "avg_value": self.avg_value,
            "max_value": self.max_value,
            "min_value": self.min_value,
            "sample_count": self.sample_count,
        }
        if self.compressed_at:
            data["compressed_at"] = self.compressed_at.isoformat()
        return data


@dataclass
class CompressionReport:
    """Outcome of one compression pass."""
    cutoff: datetime
    started_at: datetime
    completed_at: Optional[datetime] = None
    buckets: List[CompressedBucket] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def days_compressed(self) -> int:
        return len(self.buckets)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "cutoff": self.cutoff.isoformat(),
            "started_at": self.started_at.isoformat(),
            "days_compressed": self.days_compressed,
            "buckets": [b.to_dict() for b in self.buckets],
            "errors": self.errors,
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


@dataclass
class PurgeReport:
    """Outcome of one purge pass over already-compressed days."""
    cutoff: datetime
    started_at: datetime
    completed_at: Optional[datetime] = None
    purged_days: List[date] = field(default_factory=list)
    unconfirmed_days: List[date] = field(default_factory=list)
    rows_deleted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "cutoff": self.cutoff.isoformat(),
            "started_at": self.started_at.isoformat(),
            "purged_days": [d.isoformat() for d in self.purged_days],
            "unconfirmed_days": [d.isoformat() for d in self.unconfirmed_days],
            "rows_deleted": self.rows_deleted,
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data
