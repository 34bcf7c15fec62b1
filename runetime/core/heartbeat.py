"""
Heartbeat - cooperative interval loop that runs registered background tasks.
"""

import threading
import time
from typing import Callable, Dict, List, Optional

from ..util.logging import logger


class Heartbeat:
    """
    Registry of periodic tasks plus the loop that runs them.

    Each task is {func, interval, last_run}; last_run is a time.monotonic() value.
    A failing task is logged and the loop carries on with the others.
    """

    def __init__(self, tick_sec: float = 0.1):
        self.tasks: Dict[str, Dict] = {}
        self.tick_sec = tick_sec
        self.running = False
        self.shutdown_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started_at: Optional[float] = None

    def register_task(self, name: str, interval_sec: int, func: Callable):
        """
        Register a task to be executed periodically.

        Args:
            name: Unique task identifier (re-registering replaces the task)
            interval_sec: How often to run this task in seconds
            func: Function to call
        """
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")

        if interval_sec < 1:
            raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

        self.tasks[name] = {
            "func": func,
            "interval": interval_sec,
            "last_run": None
        }
        logger.info(f"Registered heartbeat task '{name}' (every {interval_sec}s)")

    def unregister_task(self, name: str):
        """Remove a task from the registry."""
        if name in self.tasks:
            del self.tasks[name]
            logger.info(f"Unregistered heartbeat task '{name}'")

    def list_tasks(self) -> List[str]:
        return list(self.tasks.keys())

    @staticmethod
    def should_run_task(task_info: Dict) -> bool:
        if task_info["last_run"] is None:
            return True

        elapsed = time.monotonic() - task_info["last_run"]
        return elapsed >= task_info["interval"]

    def run_task(self, name: str, task_info: Dict):
        """
        Execute a task and record timing.

        last_run is stamped whether or not the task succeeds, so a failing task
        waits a full interval before it is retried.

        Raises:
            RuntimeError: the task raised
        """
        start_time = time.monotonic()

        try:
            task_info["func"]()
        except Exception as e:
            end_time = time.monotonic()
            logger.log_heartbeat_task(name, start_time, end_time, status="failed", details={"error": str(e)})
            raise RuntimeError(f"Task '{name}' failed after {end_time - start_time:.2f}s: {e}") from e
        finally:
            task_info["last_run"] = time.monotonic()

        logger.log_heartbeat_task(name, start_time, time.monotonic())

    def run_once(self) -> List[str]:
        """Run every due task once; returns the names of tasks that ran."""
        ran = []
        for name, task_info in list(self.tasks.items()):
            if self.should_run_task(task_info):
                ran.append(name)
                try:
                    self.run_task(name, task_info)
                except RuntimeError as e:
                    logger.error(f"Heartbeat task '{name}' failed: {e}")
        return ran

    def start(self, block: bool = True):
        """
        Start the heartbeat loop.

        With block=False the loop runs on a daemon thread and this returns immediately.
        """
        if self.running:
            raise RuntimeError("Heartbeat already running")

        self.running = True
        self.shutdown_event.clear()
        self._started_at = time.monotonic()
        logger.info(f"Starting heartbeat loop with tasks: {self.list_tasks()}")

        if block:
            self._loop()
        else:
            self._thread = threading.Thread(target=self._loop, name="runetime-heartbeat", daemon=True)
            self._thread.start()

    def _loop(self):
        try:
            while self.running and not self.shutdown_event.is_set():
                self.run_once()
                self.shutdown_event.wait(self.tick_sec)
        finally:
            self.running = False
            logger.info("Heartbeat loop stopped")

    def stop(self, timeout: float = 5.0):
        """Stop the heartbeat loop and wait for a background thread to finish."""
        if not self.running:
            logger.info("Heartbeat not running")
            return

        self.running = False
        self.shutdown_event.set()

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
            self._thread = None

    def get_status(self) -> Dict:
        """Return current heartbeat status for monitoring."""
        return {
            "status": "running" if self.running else "stopped",
            "tasks": {
                name: {
                    "interval_sec": info["interval"],
                    "last_run": info["last_run"],
                    "next_run": info["last_run"] + info["interval"] if info["last_run"] else None
                }
                for name, info in self.tasks.items()
            },
            "uptime_sec": time.monotonic() - self._started_at if self.running and self._started_at else 0.0
        }
