"""
Configuration tests - JSON loading, validation and defaults.
"""

import json
from pathlib import Path

import pytest

from runetime.core.config import (
    AppConfig,
    DatabaseConfig,
    get_config_path,
    load_config,
    validate_config,
)
from runetime.core.errors import FatalError


def write_config(tmp_path, data) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return path


MINIMAL = {"database": {"host": "localhost", "dbname": "runetime.db", "user": "u", "password": "p"}}


def test_load_minimal_config(tmp_path):
    config = load_config(write_config(tmp_path, MINIMAL))

    assert config.database.backend == "sqlite"
    assert config.database.port == 5432
    assert config.vector.engine in ("faiss", "memory")
    assert config.daemon.pid_file.name == "daemon.pid"


def test_load_full_config(tmp_path):
    data = dict(MINIMAL)
    data.update({
        "retention": {"retention_days": 7},
        "daemon": {"interval_sec": 10, "lease_ttl_sec": 300, "state_dir": str(tmp_path / "d")},
        "vector": {"engine": "memory", "snapshot_path": str(tmp_path / "v.npz")},
    })
    config = load_config(write_config(tmp_path, data))

    assert config.retention.retention_days == 7
    assert config.daemon.interval_sec == 10
    assert config.daemon.log_file == tmp_path / "d" / "daemon.log"
    assert config.vector.snapshot_path == tmp_path / "v.npz"


def test_missing_file_is_fatal(tmp_path):
    with pytest.raises(FatalError, match="not found"):
        load_config(tmp_path / "nope.json")


def test_malformed_json_is_fatal(tmp_path):
    with pytest.raises(FatalError, match="Malformed"):
        load_config(write_config(tmp_path, "{not json"))


def test_non_object_is_fatal(tmp_path):
    with pytest.raises(FatalError, match="top level"):
        load_config(write_config(tmp_path, "[1, 2]"))


def test_missing_field_is_fatal(tmp_path):
    with pytest.raises(FatalError, match="database.password"):
        load_config(write_config(tmp_path, {"database": {"host": "h", "dbname": "d", "user": "u"}}))


def test_unknown_backend_is_fatal(tmp_path):
    data = {"database": dict(MINIMAL["database"], backend="oracle")}
    with pytest.raises(FatalError, match="backend"):
        load_config(write_config(tmp_path, data))


def test_invalid_retention_is_fatal(tmp_path):
    data = dict(MINIMAL, retention={"retention_days": 0})
    with pytest.raises(FatalError, match="retention"):
        load_config(write_config(tmp_path, data))


def test_config_path_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("RUNETIME_CONFIG", str(tmp_path / "env.json"))
    assert get_config_path() == tmp_path / "env.json"
    assert get_config_path("explicit.json") == Path("explicit.json")


def test_validate_config_postgres_needs_host():
    config = AppConfig(database=DatabaseConfig(host=" ", dbname="db", user="", password="x", backend="postgres"))
    issues = validate_config(config)

    assert "postgres backend requires database.host" in issues
    assert "postgres backend requires database.user" in issues


def test_validate_config_clean():
    config = AppConfig.model_validate(MINIMAL)
    config.daemon.lease_ttl_sec = 900
    assert validate_config(config) == []


def test_describe_hides_password():
    db = DatabaseConfig(host="db.local", dbname="metrics", user="svc", password="secret", backend="postgres")

    assert "secret" not in db.describe()
    assert db.describe() == "postgres://svc@db.local:5432/metrics"
    assert "password=secret" in db.dsn()
