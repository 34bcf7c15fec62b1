"""
Background scheduler - a detached daemon that runs compression on an interval under the compression lease.

Run directly with:
    python -m runetime.core.scheduler --config config.json
"""

import argparse
import os
import signal
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from .compression import compress
from .config import AppConfig, load_config
from .db import get_db, init_db
from .errors import AlreadyRunningError, FatalError, RunetimeError
from .heartbeat import Heartbeat
from .lease import CompressionLease
from .schema import CompressionReport
from ..util.logging import logger


def run_compression(config: AppConfig, now: Optional[datetime] = None) -> CompressionReport:
    """
    One compression pass under the lease.

    Raises:
        AlreadyRunningError: another run holds the lease
        UnavailableError: store unreachable
    """
    with get_db(config.database) as db:
        with CompressionLease(db, ttl_sec=config.daemon.lease_ttl_sec) as lease:
            return compress(db, now=now, retention_days=config.retention.retention_days, checkpoint=lease.renew)


def _read_pid(pid_file: Path) -> Optional[int]:
    try:
        return int(pid_file.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def _is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


def daemon_status(config: AppConfig) -> Dict:
    """Daemon liveness as recorded by its PID file."""
    pid_file = config.daemon.pid_file
    pid = _read_pid(pid_file)
    return {
        "running": pid is not None and _is_alive(pid),
        "pid": pid,
        "pid_file": str(pid_file),
        "log_file": str(config.daemon.log_file),
    }


def schedule_daemon(config: AppConfig, config_path: Union[str, Path]) -> int:
    """
    Spawn the compression daemon as a detached process and return its PID.

    The child gets its own session, so it outlives the invoking command.

    Raises:
        AlreadyRunningError: a live daemon is already recorded
        FatalError: the process could not be started
    """
    status = daemon_status(config)
    if status["running"]:
        raise AlreadyRunningError(f"Daemon already running: PID={status['pid']}")

    state_dir = config.daemon.state_dir
    cmd = [sys.executable, "-m", "runetime.core.scheduler", "--config", str(Path(config_path).resolve())]
    env = dict(os.environ)
    env.setdefault("RUNETIME_LOG_LEVEL", "INFO")

    try:
        state_dir.mkdir(parents=True, exist_ok=True)
        with open(config.daemon.log_file, "ab") as log:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                env=env,
                start_new_session=True,
            )
        config.daemon.pid_file.write_text(str(process.pid), encoding="utf-8")
    except OSError as e:
        logger.log_operation("daemon.spawn", "failed", {"error": str(e)})
        raise FatalError(f"Failed to start daemon: {e}") from e

    logger.log_operation("daemon.spawn", "success", {"pid": process.pid, "log_file": str(config.daemon.log_file)})
    return process.pid


def stop_daemon(config: AppConfig) -> Optional[int]:
    """Send SIGTERM to the recorded daemon. Returns its PID, or None if none was running."""
    status = daemon_status(config)
    pid = status["pid"]
    if not status["running"]:
        if pid is not None:
            config.daemon.pid_file.unlink(missing_ok=True)
        return None

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        config.daemon.pid_file.unlink(missing_ok=True)
        return None
    except PermissionError as e:
        raise FatalError(f"Cannot stop daemon PID={pid}: {e}") from e

    logger.log_operation("daemon.stop", "success", {"pid": pid})
    return pid


class CompressionDaemon:
    """Runs the compression task on a Heartbeat until SIGTERM/SIGINT."""

    TASK_NAME = "compression"

    def __init__(self, config: AppConfig, heartbeat: Optional[Heartbeat] = None):
        self.config = config
        self.heartbeat = heartbeat or Heartbeat()

    def compress_tick(self):
        """Heartbeat task body. A held lease skips this cycle; other errors reach the heartbeat."""
        try:
            report = run_compression(self.config)
        except AlreadyRunningError as e:
            logger.log_operation("daemon.compress", "skipped", {"reason": str(e)})
            return
        logger.log_operation("daemon.compress", "success", {"days": report.days_compressed})

    def _write_pid(self):
        pid_file = self.config.daemon.pid_file
        pid_file.parent.mkdir(parents=True, exist_ok=True)
        pid_file.write_text(str(os.getpid()), encoding="utf-8")

    def _clear_pid(self):
        pid_file = self.config.daemon.pid_file
        if _read_pid(pid_file) == os.getpid():
            pid_file.unlink(missing_ok=True)

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        self.heartbeat.stop()

    def start(self):
        """Run until stopped. Blocks the calling (main) thread."""
        recorded = _read_pid(self.config.daemon.pid_file)
        if recorded is not None and recorded != os.getpid() and _is_alive(recorded):
            raise AlreadyRunningError(f"Daemon already running: PID={recorded}")

        with get_db(self.config.database) as db:
            init_db(db)

        self._write_pid()
        signal.signal(signal.SIGTERM, self._handle_signal)
        signal.signal(signal.SIGINT, self._handle_signal)

        self.heartbeat.register_task(self.TASK_NAME, self.config.daemon.interval_sec, self.compress_tick)
        logger.log_operation("daemon.start", "success", {
            "pid": os.getpid(),
            "interval_sec": self.config.daemon.interval_sec,
            "store": self.config.database.describe(),
        })

        try:
            self.heartbeat.start(block=True)
        finally:
            self.stop()

    def stop(self):
        self.heartbeat.stop()
        status = self.heartbeat.get_status()
        self.heartbeat.unregister_task(self.TASK_NAME)
        self._clear_pid()
        logger.log_operation("daemon.stop", "success", {"pid": os.getpid(), "heartbeat": status})


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="runetime-db compression daemon")
    parser.add_argument("--config", help="Path to the JSON config file")
    args = parser.parse_args(argv)

    logger.set_level(os.getenv("RUNETIME_LOG_LEVEL", "INFO"))

    try:
        daemon = CompressionDaemon(load_config(args.config))
        daemon.start()
    except RunetimeError as e:
        logger.error(f"Daemon failed to start: [{e.kind}] {e}")
        return e.exit_code
    return 0


if __name__ == "__main__":
    sys.exit(main())
