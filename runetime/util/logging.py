"""
Structured operation logging for ingestion, compression, lease, heartbeat and vector operations.
"""

import logging
import os
from typing import Any, Dict, Optional


class StructuredLogger:
    """Structured logger emitting one 'Operation / Status / Details' line per event."""

    def __init__(self, name: str = "runetime", level: Optional[str] = None):
        self.logger = logging.getLogger(name)
        self.set_level(level or os.getenv("RUNETIME_LOG_LEVEL", "WARNING"))

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def set_level(self, level: str) -> None:
        """Set the threshold by name (DEBUG, INFO, WARNING, ...)."""
        self.logger.setLevel(getattr(logging, str(level).upper(), logging.WARNING))

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        elif status in ("skipped", "rejected", "unconfirmed", "lost"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_ingest(self, sensor_id: int, timestamp: str, value: float, status: str = "success", details: Dict[str, Any] = None):
        """Log a reading insert."""
        log_details = {"sensor_id": sensor_id, "timestamp": timestamp, "value": value}
        if details:
            log_details.update(details)
        self.log_operation("ingest.insert", status, log_details)

    def log_query(self, start: str, end: str, row_count: int):
        self.log_operation("ingest.query", "success", {"start": start, "end": end, "rows": row_count})

    def log_compression_day(self, day: str, sample_count: int, status: str = "merged", details: Dict[str, Any] = None):
        """Log a single day's bucket merge."""
        log_details = {"day": day, "samples": sample_count}
        if details:
            log_details.update(details)
        self.log_operation("compression.merge", status, log_details)

    def log_compression_run(self, cutoff: str, days: int, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log a whole compression pass."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"cutoff": cutoff, "days": days, "duration_ms": duration_ms}
        if details:
            log_details.update(details)
        self.log_operation("compression.run", status, log_details)

    def log_purge(self, day: str, status: str, details: Dict[str, Any] = None):
        log_details = {"day": day}
        if details:
            log_details.update(details)
        self.log_operation("compression.purge", status, log_details)

    def log_lease(self, name: str, holder: str, status: str, details: Dict[str, Any] = None):
        """Log lease acquisition, release and contention."""
        log_details = {"lease": name, "holder": holder}
        if details:
            log_details.update(details)
        self.log_operation(f"lease.{name}", status, log_details)

    def log_vector_operation(self, operation: str, record_id: Optional[int] = None, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector operation."""
        log_details = {}
        if record_id is not None:
            log_details["record_id"] = record_id
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Heartbeat task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Heartbeat task '{task_name}' failed after {duration_ms}ms"

        self.log_operation(f"heartbeat.{task_name}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
