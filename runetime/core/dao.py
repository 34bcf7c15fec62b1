"""
Ingestion - validated single-reading writes and time-range reads over the readings table.
"""

import math
from datetime import datetime, timezone
from typing import List, Optional, Union

from .db import READINGS_TABLE, Database
from .errors import ConflictError, InvalidArgumentError
from .schema import Reading
from ..util.logging import logger

SENSOR_ID_MIN = -2**31
SENSOR_ID_MAX = 2**31 - 1


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 instant. A trailing 'Z' means UTC; naive values are taken as UTC.

    Raises:
        InvalidArgumentError: the value is not a valid instant
    """
    if isinstance(value, datetime):
        ts = value
    else:
        text = str(value).strip()
        if not text:
            raise InvalidArgumentError("timestamp cannot be empty")
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidArgumentError(f"Invalid timestamp '{value}': expected ISO-8601") from e

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def validate_sensor_id(sensor_id: int) -> int:
    if isinstance(sensor_id, bool) or not isinstance(sensor_id, int):
        raise InvalidArgumentError(f"sensor_id must be an integer, got {sensor_id!r}")
    if not SENSOR_ID_MIN <= sensor_id <= SENSOR_ID_MAX:
        raise InvalidArgumentError(
            f"sensor_id must be between {SENSOR_ID_MIN} and {SENSOR_ID_MAX}, got {sensor_id}"
        )
    return sensor_id


def validate_value(value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgumentError(f"value must be a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidArgumentError(f"value must be finite, got {value}")
    return value


def insert_reading(db: Database, sensor_id: int, timestamp: Union[str, datetime], value: float) -> Reading:
    """
    Persist exactly one new reading.

    Raises:
        InvalidArgumentError: sensor_id out of range, malformed timestamp or non-finite value
            (nothing written)
        ConflictError: (sensor_id, timestamp) already stored
        UnavailableError: store unreachable
    """
    sensor_id = validate_sensor_id(sensor_id)
    ts = parse_timestamp(timestamp)
    value = validate_value(value)
    reading = Reading(sensor_id=sensor_id, timestamp=ts.astimezone(timezone.utc), value=value)

    outcome = db.run(
        f"INSERT INTO {READINGS_TABLE} (timestamp, sensor_id, value) VALUES (?, ?, ?)",
        (db.ts(reading.timestamp), reading.sensor_id, reading.value),
    )
    if not outcome.ok:
        status = "rejected" if isinstance(outcome.error, ConflictError) else "failed"
        logger.log_ingest(reading.sensor_id, reading.timestamp.isoformat(), reading.value, status=status,
                          details={"error": str(outcome.error)})
        if isinstance(outcome.error, ConflictError):
            raise ConflictError(
                f"Reading already exists for sensor_id={reading.sensor_id} at {reading.timestamp.isoformat()}"
            ) from outcome.error
        raise outcome.error

    db.commit()
    logger.log_ingest(reading.sensor_id, reading.timestamp.isoformat(), reading.value)
    return reading


def get_reading(db: Database, sensor_id: int, timestamp: Union[str, datetime]) -> Optional[Reading]:
    ts = parse_timestamp(timestamp)
    rows = db.query(
        f"SELECT timestamp, sensor_id, value FROM {READINGS_TABLE} WHERE sensor_id = ? AND timestamp = ?",
        (int(sensor_id), db.ts(ts)),
    )
    if not rows:
        return None
    return _row_to_reading(db, rows[0])


def query_readings(db: Database, start: Union[str, datetime], end: Union[str, datetime]) -> List[Reading]:
    """Readings with start <= timestamp <= end, ordered by timestamp then sensor_id."""
    start_ts = parse_timestamp(start)
    end_ts = parse_timestamp(end)
    if start_ts > end_ts:
        raise InvalidArgumentError(f"start ({start_ts.isoformat()}) is after end ({end_ts.isoformat()})")

    rows = db.query(
        f"SELECT timestamp, sensor_id, value FROM {READINGS_TABLE} "
        "WHERE timestamp BETWEEN ? AND ? ORDER BY timestamp, sensor_id",
        (db.ts(start_ts), db.ts(end_ts)),
    )
    readings = [_row_to_reading(db, row) for row in rows]
    logger.log_query(start_ts.isoformat(), end_ts.isoformat(), len(readings))
    return readings


def count_readings(db: Database, sensor_id: Optional[int] = None) -> int:
    if sensor_id is None:
        rows = db.query(f"SELECT COUNT(*) FROM {READINGS_TABLE}")
    else:
        rows = db.query(f"SELECT COUNT(*) FROM {READINGS_TABLE} WHERE sensor_id = ?", (int(sensor_id),))
    return int(rows[0][0])


def _row_to_reading(db: Database, row) -> Reading:
    timestamp, sensor_id, value = row
    return Reading(
        sensor_id=int(sensor_id),
        timestamp=db.to_datetime(timestamp).astimezone(timezone.utc),
        value=float(value),
    )
