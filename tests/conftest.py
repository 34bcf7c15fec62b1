"""
Shared fixtures: a throwaway SQLite store and config per test.
"""

import pytest

from runetime.core.config import AppConfig, DaemonConfig, DatabaseConfig, RetentionConfig, VectorConfig
from runetime.core.db import get_db, init_db


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        database=DatabaseConfig(host="localhost", dbname=str(tmp_path / "runetime.db"), user="test", password=""),
        retention=RetentionConfig(retention_days=30),
        daemon=DaemonConfig(interval_sec=60, lease_ttl_sec=120, state_dir=tmp_path / "daemon"),
        vector=VectorConfig(engine="memory", snapshot_path=None),
    )


@pytest.fixture
def config_file(tmp_path, app_config):
    path = tmp_path / "config.json"
    path.write_text(app_config.model_dump_json(), encoding="utf-8")
    return path


@pytest.fixture
def db(app_config):
    with get_db(app_config.database) as session:
        init_db(session)
        yield session
