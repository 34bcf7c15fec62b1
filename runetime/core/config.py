"""
Configuration - connection parameters from the JSON config file, tunables from the environment.
"""

import json
import os
from pathlib import Path
from typing import List, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import FatalError

load_dotenv()

# Config file location
CONFIG_PATH = os.getenv("RUNETIME_CONFIG", "config.json")

# Retention/compression defaults
RETENTION_DAYS = int(os.getenv("RUNETIME_RETENTION_DAYS", "30"))

# Background scheduler defaults
COMPRESSION_INTERVAL_SEC = int(os.getenv("RUNETIME_COMPRESSION_INTERVAL_SEC", "3600"))
LEASE_TTL_SEC = int(os.getenv("RUNETIME_LEASE_TTL_SEC", "900"))
DAEMON_STATE_DIR = os.getenv("RUNETIME_DAEMON_DIR", "./data/daemon")

# Vector index defaults
VECTOR_ENGINE = os.getenv("RUNETIME_VECTOR_ENGINE", "faiss")  # faiss|memory
VECTOR_SNAPSHOT_PATH = os.getenv("RUNETIME_VECTOR_SNAPSHOT") or None

SUPPORTED_BACKENDS = ["sqlite", "postgres"]
SUPPORTED_ENGINES = ["faiss", "memory"]

# Version string
VERSION = "0.3.0"


class DatabaseConfig(BaseModel):
    """Store connection parameters. For the sqlite backend ``dbname`` is the database file path."""
    model_config = ConfigDict(frozen=True)

    host: str
    dbname: str
    user: str
    password: str
    backend: str = "sqlite"
    port: int = Field(default=5432, ge=1, le=65535)

    @field_validator('dbname')
    @classmethod
    def dbname_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('dbname cannot be empty')
        return v

    @field_validator('backend')
    @classmethod
    def backend_must_be_supported(cls, v):
        if v not in SUPPORTED_BACKENDS:
            raise ValueError(f'backend must be one of: {SUPPORTED_BACKENDS}')
        return v

    def dsn(self) -> str:
        """libpq connection string."""
        return f"host={self.host} port={self.port} dbname={self.dbname} user={self.user} password={self.password}"

    def describe(self) -> str:
        """Connection summary safe to print (no password)."""
        if self.backend == "sqlite":
            return f"sqlite:{self.dbname}"
        return f"postgres://{self.user}@{self.host}:{self.port}/{self.dbname}"


class RetentionConfig(BaseModel):
    retention_days: int = Field(default_factory=lambda: RETENTION_DAYS, ge=1)


class DaemonConfig(BaseModel):
    interval_sec: int = Field(default_factory=lambda: COMPRESSION_INTERVAL_SEC, ge=1)
    lease_ttl_sec: int = Field(default_factory=lambda: LEASE_TTL_SEC, ge=1)
    state_dir: Path = Field(default_factory=lambda: Path(DAEMON_STATE_DIR))

    @property
    def pid_file(self) -> Path:
        return self.state_dir / "daemon.pid"

    @property
    def log_file(self) -> Path:
        return self.state_dir / "daemon.log"


class VectorConfig(BaseModel):
    engine: str = Field(default_factory=lambda: VECTOR_ENGINE)
    snapshot_path: Optional[Path] = Field(default_factory=lambda: Path(VECTOR_SNAPSHOT_PATH) if VECTOR_SNAPSHOT_PATH else None)

    @field_validator('engine')
    @classmethod
    def engine_must_be_supported(cls, v):
        if v not in SUPPORTED_ENGINES:
            raise ValueError(f'engine must be one of: {SUPPORTED_ENGINES}')
        return v


class AppConfig(BaseModel):
    database: DatabaseConfig
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    vector: VectorConfig = Field(default_factory=VectorConfig)


def get_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """Resolve the config file path (explicit argument wins over RUNETIME_CONFIG)."""
    if path:
        return Path(path)
    return Path(os.getenv("RUNETIME_CONFIG", CONFIG_PATH))


def load_config(path: Optional[Union[str, Path]] = None) -> AppConfig:
    """
    Load and validate the JSON config file.

    Raises:
        FatalError: file missing, unreadable, not JSON, or failing validation
    """
    config_path = get_config_path(path)
    if not config_path.is_file():
        raise FatalError(f"Config file not found: {config_path}")

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise FatalError(f"Cannot read config file {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise FatalError(f"Malformed config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise FatalError(f"Malformed config file {config_path}: top level must be an object")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise FatalError(f"Invalid config file {config_path}: {location}: {first['msg']}") from e


def validate_config(config: AppConfig) -> List[str]:
    """Validate cross-field settings and return any issues."""
    issues = []

    if config.database.backend == "postgres":
        if not config.database.host.strip():
            issues.append("postgres backend requires database.host")
        if not config.database.user.strip():
            issues.append("postgres backend requires database.user")

    if config.daemon.lease_ttl_sec < 60:
        issues.append("daemon.lease_ttl_sec should be at least 60 seconds")

    return issues
