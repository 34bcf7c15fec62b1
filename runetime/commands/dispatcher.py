"""
Command dispatcher - maps a command name and its raw arguments to one store, scheduler or vector operation.

Store commands open a session for the duration of the command and release it
afterwards. Vector commands share the dispatcher's single VectorIndexManager,
so a long-lived dispatcher (the ``shell`` command) keeps one index handle
across many commands.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Union

from .schemas import InsertRequest, QueryRequest, VectorAddRequest, VectorSearchRequest, parse_request
from ..core.compression import count_buckets, purge
from ..core.config import AppConfig
from ..core.dao import count_readings, insert_reading, query_readings
from ..core.db import REQUIRED_TABLES, Database, get_db, init_db, list_tables
from ..core.errors import InvalidArgumentError
from ..core.lease import CompressionLease
from ..core.scheduler import daemon_status, run_compression, schedule_daemon, stop_daemon
from ..vector.manager import VectorIndexManager, create_index_manager

USAGE = {
    "init": "init",
    "insert": "insert <sensor_id> <timestamp> <value>",
    "query": "query <start> <end>",
    "compress": "compress",
    "purge": "purge",
    "status": "status",
    "daemon": "daemon",
    "daemon-status": "daemon-status",
    "daemon-stop": "daemon-stop",
    "vector-add": "vector-add <id> <x> [<y> ...]",
    "vector-search": "vector-search <x> [<y> ...] <top_k>",
    "vector-reset": "vector-reset [--discard-snapshot]",
}


def usage(command: str) -> str:
    return f"Usage: runetime-db {USAGE[command]}"


class CommandDispatcher:
    """
    Resolve and run one command at a time.

    Every handler returns the lines to print on success and raises a
    RunetimeError on failure.
    """

    def __init__(self, config: AppConfig, config_path: Union[str, Path],
                 vectors: Optional[VectorIndexManager] = None):
        self.config = config
        self.config_path = Path(config_path)
        self.vectors = vectors or create_index_manager(config.vector)
        self._handlers: Dict[str, Callable[[List[str]], List[str]]] = {
            "init": self.cmd_init,
            "insert": self.cmd_insert,
            "query": self.cmd_query,
            "compress": self.cmd_compress,
            "purge": self.cmd_purge,
            "status": self.cmd_status,
            "daemon": self.cmd_daemon,
            "daemon-status": self.cmd_daemon_status,
            "daemon-stop": self.cmd_daemon_stop,
            "vector-add": self.cmd_vector_add,
            "vector-search": self.cmd_vector_search,
            "vector-reset": self.cmd_vector_reset,
        }

    def commands(self) -> List[str]:
        return list(self._handlers.keys())

    def dispatch(self, command: str, args: List[str]) -> List[str]:
        handler = self._handlers.get(command)
        if handler is None:
            raise InvalidArgumentError(f"Unknown command: {command}")
        return handler(list(args))

    @contextmanager
    def _db(self) -> Generator[Database, None, None]:
        with get_db(self.config.database) as db:
            yield db

    @staticmethod
    def _arity(command: str, args: List[str], exact: Optional[int] = None, minimum: Optional[int] = None):
        if exact is not None and len(args) != exact:
            raise InvalidArgumentError(usage(command))
        if minimum is not None and len(args) < minimum:
            raise InvalidArgumentError(usage(command))

    # Store commands
    def cmd_init(self, args: List[str]) -> List[str]:
        self._arity("init", args, exact=0)
        with self._db() as db:
            init_db(db)
        return ["Database initialized successfully."]

    def cmd_insert(self, args: List[str]) -> List[str]:
        self._arity("insert", args, exact=3)
        request = parse_request(InsertRequest, sensor_id=args[0], timestamp=args[1], value=args[2])
        with self._db() as db:
            reading = insert_reading(db, request.sensor_id, request.timestamp, request.value)
        return [f"Data inserted: sensor_id={reading.sensor_id}, timestamp={reading.timestamp.isoformat()}, "
                f"value={reading.value}"]

    def cmd_query(self, args: List[str]) -> List[str]:
        self._arity("query", args, exact=2)
        request = parse_request(QueryRequest, start=args[0], end=args[1])
        with self._db() as db:
            readings = query_readings(db, request.start, request.end)
        if not readings:
            return ["No readings found."]
        return [
            f"Timestamp: {r.timestamp.isoformat()}, Sensor ID: {r.sensor_id}, Value: {r.value}"
            for r in readings
        ]

    def cmd_compress(self, args: List[str]) -> List[str]:
        self._arity("compress", args, exact=0)
        report = run_compression(self.config)
        return [f"Data compressed successfully: days={report.days_compressed}, "
                f"cutoff={report.cutoff.isoformat()}"]

    def cmd_purge(self, args: List[str]) -> List[str]:
        self._arity("purge", args, exact=0)
        with self._db() as db:
            with CompressionLease(db, ttl_sec=self.config.daemon.lease_ttl_sec) as lease:
                report = purge(db, retention_days=self.config.retention.retention_days, checkpoint=lease.renew)

        lines = [f"Data purged: days={len(report.purged_days)}, rows={report.rows_deleted}, "
                 f"cutoff={report.cutoff.isoformat()}"]
        for day in report.unconfirmed_days:
            lines.append(f"Skipped {day.isoformat()}: bucket does not cover the raw readings (run compress first)")
        return lines

    def cmd_status(self, args: List[str]) -> List[str]:
        self._arity("status", args, exact=0)
        lines = [f"Store: {self.config.database.describe()}"]
        with self._db() as db:
            missing = [t for t in REQUIRED_TABLES if t not in list_tables(db)]
            if missing:
                lines.append(f"Schema: not initialized (missing {', '.join(missing)})")
            else:
                holder = CompressionLease(db).current_holder()
                lines.append(f"Readings: {count_readings(db)}, Buckets: {count_buckets(db)}")
                lines.append(f"Compression lease: {'held by ' + holder if holder else 'free'}")

        dimension = self.vectors.dimension
        lines.append(f"Vector index: {self.vectors.state.value}, size={self.vectors.size()}, "
                     f"dimension={dimension if dimension is not None else '-'}")
        return lines

    # Scheduler commands
    def cmd_daemon(self, args: List[str]) -> List[str]:
        self._arity("daemon", args, exact=0)
        pid = schedule_daemon(self.config, self.config_path)
        return [f"Daemon started: PID={pid}"]

    def cmd_daemon_status(self, args: List[str]) -> List[str]:
        self._arity("daemon-status", args, exact=0)
        status = daemon_status(self.config)
        if status["running"]:
            return [f"Daemon running: PID={status['pid']}, log={status['log_file']}"]
        return ["Daemon not running."]

    def cmd_daemon_stop(self, args: List[str]) -> List[str]:
        self._arity("daemon-stop", args, exact=0)
        pid = stop_daemon(self.config)
        if pid is None:
            return ["Daemon not running."]
        return [f"Daemon stopped: PID={pid}"]

    # Vector commands
    def cmd_vector_add(self, args: List[str]) -> List[str]:
        self._arity("vector-add", args, minimum=2)
        request = parse_request(VectorAddRequest, id=args[0], vector=args[1:])
        record = self.vectors.add(request.id, request.vector)
        return [f"Vector added: ID={record.id}"]

    def cmd_vector_search(self, args: List[str]) -> List[str]:
        self._arity("vector-search", args, minimum=2)
        request = parse_request(VectorSearchRequest, vector=args[:-1], top_k=args[-1])
        results = self.vectors.search(request.vector, request.top_k)
        if not results:
            return ["No results."]
        return [f"Result {i}: ID={r.id}, Distance={r.distance}" for i, r in enumerate(results)]

    def cmd_vector_reset(self, args: List[str]) -> List[str]:
        if args not in ([], ["--discard-snapshot"]):
            raise InvalidArgumentError(usage("vector-reset"))
        discard = bool(args)
        self.vectors.reset(discard_snapshot=discard)
        return ["Vector index reset." + (" Snapshot removed." if discard else "")]
