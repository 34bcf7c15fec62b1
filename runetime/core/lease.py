"""
Compression lease - a time-bounded row in the leases table that keeps compression runs from overlapping.
"""

import os
import socket
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from .config import LEASE_TTL_SEC
from .db import LEASES_TABLE, Database
from .errors import AlreadyRunningError
from ..util.logging import logger

# Take the row only when it is free or its holder let it expire
ACQUIRE_SQL = f"""
    INSERT INTO {LEASES_TABLE} (name, holder, acquired_at, expires_at)
    VALUES (?, ?, ?, ?)
    ON CONFLICT (name) DO UPDATE SET
        holder = excluded.holder,
        acquired_at = excluded.acquired_at,
        expires_at = excluded.expires_at
    WHERE {LEASES_TABLE}.expires_at <= ?
"""


def make_holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class CompressionLease:
    """
    Exclusive, expiring claim on a named background task.

    Usage:
        with CompressionLease(db, ttl_sec=900):
            compress(db)

    A holder that dies without releasing blocks others only until ``ttl_sec`` passes.
    """

    def __init__(self, db: Database, holder: Optional[str] = None, ttl_sec: int = LEASE_TTL_SEC,
                 name: str = "compression"):
        if ttl_sec < 1:
            raise ValueError(f"Lease TTL must be >= 1 second: {ttl_sec}")
        self.db = db
        self.name = name
        self.holder = holder or make_holder_id()
        self.ttl_sec = ttl_sec
        self.held = False

    def acquire(self, now: Optional[datetime] = None) -> None:
        """
        Claim the lease.

        Raises:
            AlreadyRunningError: another holder has an unexpired claim
        """
        now = now or datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=self.ttl_sec)
        self.db.execute(ACQUIRE_SQL, (
            self.name, self.holder, self.db.ts(now), self.db.ts(expires_at), self.db.ts(now),
        ))
        self.db.commit()

        current = self.current_holder()
        if current != self.holder:
            logger.log_lease(self.name, self.holder, "rejected", {"held_by": current})
            raise AlreadyRunningError(f"Compression already running (lease '{self.name}' held by {current})")

        self.held = True
        logger.log_lease(self.name, self.holder, "acquired", {"expires_at": expires_at.isoformat()})

    def renew(self, now: Optional[datetime] = None) -> None:
        """
        Push the expiry ``ttl_sec`` past ``now``. Long runs call this between units of work.

        Raises:
            AlreadyRunningError: the claim expired and another holder took it over
        """
        now = now or datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=self.ttl_sec)
        updated = 0
        if self.held:
            updated = self.db.execute(
                f"UPDATE {LEASES_TABLE} SET expires_at = ? WHERE name = ? AND holder = ?",
                (self.db.ts(expires_at), self.name, self.holder),
            )
            self.db.commit()

        if updated != 1:
            self.held = False
            current = self.current_holder()
            logger.log_lease(self.name, self.holder, "lost", {"held_by": current})
            raise AlreadyRunningError(
                f"Compression lease '{self.name}' lost to {current or 'no holder'}; stopping this run"
            )
        logger.log_lease(self.name, self.holder, "renewed", {"expires_at": expires_at.isoformat()})

    def release(self) -> None:
        """Drop the claim. Only the current holder's row is removed."""
        if not self.held:
            return
        self.db.execute(
            f"DELETE FROM {LEASES_TABLE} WHERE name = ? AND holder = ?",
            (self.name, self.holder),
        )
        self.db.commit()
        self.held = False
        logger.log_lease(self.name, self.holder, "released")

    def current_holder(self) -> Optional[str]:
        rows = self.db.query(f"SELECT holder FROM {LEASES_TABLE} WHERE name = ?", (self.name,))
        return rows[0][0] if rows else None

    def expires_at(self) -> Optional[datetime]:
        rows = self.db.query(f"SELECT expires_at FROM {LEASES_TABLE} WHERE name = ?", (self.name,))
        return self.db.to_datetime(rows[0][0]) if rows else None

    def __enter__(self) -> "CompressionLease":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
