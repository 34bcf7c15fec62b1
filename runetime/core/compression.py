"""
Retention/compression - roll readings older than the retention window into one bucket per UTC day.

compress() only writes buckets; raw readings stay in place. purge() is the
separate, opt-in second phase that deletes raw readings for a day once its
bucket provably covers every one of them.
"""

import time
from datetime import date, datetime, time as dtime, timedelta, timezone
from typing import Callable, List, Optional

from .config import RETENTION_DAYS
from .db import BUCKETS_TABLE, READINGS_TABLE, Database
from .errors import InvalidArgumentError, RunetimeError
from .schema import CompressedBucket, CompressionReport, PurgeReport
from ..util.logging import logger

UPSERT_BUCKET_SQL = f"""
    INSERT INTO {BUCKETS_TABLE} (day, avg_value, max_value, min_value, sample_count, compressed_at)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT (day) DO UPDATE SET
        avg_value = excluded.avg_value,
        max_value = excluded.max_value,
        min_value = excluded.min_value,
        sample_count = excluded.sample_count,
        compressed_at = excluded.compressed_at
    WHERE {BUCKETS_TABLE}.sample_count <> excluded.sample_count
       OR {BUCKETS_TABLE}.avg_value <> excluded.avg_value
       OR {BUCKETS_TABLE}.max_value <> excluded.max_value
       OR {BUCKETS_TABLE}.min_value <> excluded.min_value
"""


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def retention_cutoff(now: Optional[datetime] = None, retention_days: int = RETENTION_DAYS) -> datetime:
    """Instant before which readings are eligible for compression."""
    if retention_days < 1:
        raise InvalidArgumentError(f"retention_days must be >= 1, got {retention_days}")
    return _resolve_now(now) - timedelta(days=retention_days)


def day_start(day: date) -> datetime:
    return datetime.combine(day, dtime.min, tzinfo=timezone.utc)


def compress(db: Database, now: Optional[datetime] = None, retention_days: int = RETENTION_DAYS,
             checkpoint: Optional[Callable[[], None]] = None) -> CompressionReport:
    """
    Merge one bucket per UTC day for every reading older than the retention window.

    Each day is written and committed on its own, so a failure part-way leaves
    earlier days merged and later days untouched. Re-running with the same
    ``now`` rewrites nothing.

    Args:
        checkpoint: called before each day is written; raising stops the run
            (used to renew the compression lease)

    Raises:
        UnavailableError: store unreachable (days already merged stay merged)
        AlreadyRunningError: the checkpoint found the lease taken over
    """
    cutoff = retention_cutoff(now, retention_days)
    report = CompressionReport(cutoff=cutoff, started_at=datetime.now(timezone.utc))
    start_time = time.time()

    day_col = db.day_expr("timestamp")
    rows = db.query(
        f"SELECT {day_col} AS day, AVG(value), MAX(value), MIN(value), COUNT(*) "
        f"FROM {READINGS_TABLE} WHERE timestamp < ? GROUP BY 1 ORDER BY 1",
        (db.ts(cutoff),),
    )

    for day_value, avg_value, max_value, min_value, sample_count in rows:
        bucket = CompressedBucket(
            day=db.to_date(day_value),
            avg_value=float(avg_value),
            max_value=float(max_value),
            min_value=float(min_value),
            sample_count=int(sample_count),
            compressed_at=report.started_at,
        )
        if checkpoint is not None:
            try:
                checkpoint()
            except RunetimeError as e:
                logger.log_compression_run(cutoff.isoformat(), report.days_compressed, start_time, time.time(),
                                           status="failed", details={"error": str(e)})
                raise
        outcome = db.run(UPSERT_BUCKET_SQL, (
            db.day(bucket.day),
            bucket.avg_value,
            bucket.max_value,
            bucket.min_value,
            bucket.sample_count,
            db.ts(bucket.compressed_at),
        ))
        if not outcome.ok:
            report.errors.append(f"{bucket.day.isoformat()}: {outcome.error}")
            logger.log_compression_day(bucket.day.isoformat(), bucket.sample_count, status="failed",
                                       details={"error": str(outcome.error)})
            logger.log_compression_run(cutoff.isoformat(), report.days_compressed, start_time, time.time(),
                                       status="failed", details={"error": str(outcome.error)})
            raise outcome.error

        db.commit()
        report.buckets.append(bucket)
        status = "merged" if outcome.value else "unchanged"
        logger.log_compression_day(bucket.day.isoformat(), bucket.sample_count, status=status)

    report.completed_at = datetime.now(timezone.utc)
    logger.log_compression_run(cutoff.isoformat(), report.days_compressed, start_time, time.time())
    return report


def purge(db: Database, now: Optional[datetime] = None, retention_days: int = RETENTION_DAYS,
          checkpoint: Optional[Callable[[], None]] = None) -> PurgeReport:
    """
    Delete raw readings for whole days before the cutoff whose bucket covers them.

    A day is purged only when its bucket exists and its sample_count equals the
    number of raw rows being deleted; otherwise the delete is rolled back and the
    day is reported as unconfirmed. Run compress() first to refresh stale buckets.
    ``checkpoint`` is called before each day is deleted, as in compress().
    """
    cutoff = retention_cutoff(now, retention_days)
    report = PurgeReport(cutoff=cutoff, started_at=datetime.now(timezone.utc))

    # Only days that end at or before the cutoff are eligible
    boundary = day_start(cutoff.astimezone(timezone.utc).date())
    day_col = db.day_expr("timestamp")
    candidate_days = [
        db.to_date(row[0])
        for row in db.query(
            f"SELECT DISTINCT {day_col} FROM {READINGS_TABLE} WHERE timestamp < ? ORDER BY 1",
            (db.ts(boundary),),
        )
    ]
    buckets = {bucket.day: bucket for bucket in list_buckets(db)}

    for day in candidate_days:
        bucket = buckets.get(day)
        if bucket is None:
            report.unconfirmed_days.append(day)
            logger.log_purge(day.isoformat(), "unconfirmed", {"reason": "no bucket"})
            continue

        if checkpoint is not None:
            checkpoint()

        deleted = db.execute(
            f"DELETE FROM {READINGS_TABLE} WHERE timestamp >= ? AND timestamp < ?",
            (db.ts(day_start(day)), db.ts(day_start(day + timedelta(days=1)))),
        )
        if deleted != bucket.sample_count:
            db.rollback()
            report.unconfirmed_days.append(day)
            logger.log_purge(day.isoformat(), "unconfirmed",
                             {"reason": "sample count mismatch", "bucket": bucket.sample_count, "raw": deleted})
            continue

        db.commit()
        report.purged_days.append(day)
        report.rows_deleted += deleted
        logger.log_purge(day.isoformat(), "success", {"rows": deleted})

    report.completed_at = datetime.now(timezone.utc)
    return report


def list_buckets(db: Database, start_day: Optional[date] = None, end_day: Optional[date] = None) -> List[CompressedBucket]:
    """Stored buckets ordered by day, optionally limited to an inclusive day range."""
    clauses = []
    params = []
    if start_day is not None:
        clauses.append("day >= ?")
        params.append(db.day(start_day))
    if end_day is not None:
        clauses.append("day <= ?")
        params.append(db.day(end_day))
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

    rows = db.query(
        f"SELECT day, avg_value, max_value, min_value, sample_count, compressed_at FROM {BUCKETS_TABLE}{where} ORDER BY day",
        params,
    )
    return [
        CompressedBucket(
            day=db.to_date(day_value),
            avg_value=float(avg_value),
            max_value=float(max_value),
            min_value=float(min_value),
            sample_count=int(sample_count),
            compressed_at=db.to_datetime(compressed_at) if compressed_at is not None else None,
        )
        for day_value, avg_value, max_value, min_value, sample_count, compressed_at in rows
    ]


def count_buckets(db: Database) -> int:
    return int(db.query(f"SELECT COUNT(*) FROM {BUCKETS_TABLE}")[0][0])
