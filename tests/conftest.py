from __future__ import annotations

from collections.abc import Iterator
import logging
import os
from pathlib import Path
import sqlite3

import pytest

from tiergate.readiness.policy import ReadinessPolicy
from tiergate.services.config_service import AppSettings
from tiergate.services.connection_manager import DatabaseConnectionManager


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("TIERGATE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _fresh_manager() -> Iterator[None]:
    DatabaseConnectionManager.reset_instance()
    yield
    DatabaseConnectionManager.reset_instance()


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        db_host="127.0.0.1",
        db_port=5432,
        db_name="app",
        db_user="app",
        db_password="secret",
        app_port=3000,
    )


@pytest.fixture
def sqlite_db(tmp_path: Path) -> Path:
    """File-backed sqlite database with a three-row users table."""
    path = tmp_path / "app.db"
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE users(id INTEGER PRIMARY KEY, name TEXT)")
        conn.executemany("INSERT INTO users(name) VALUES (?)", [("Alice",), ("Bob",), ("Charlie",)])
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def fast_connect_policy() -> ReadinessPolicy:
    return ReadinessPolicy(name="initial-connect", interval=0.0, attempt_timeout=5.0, max_attempts=3)


@pytest.fixture
def fast_background_policy() -> ReadinessPolicy:
    return ReadinessPolicy(name="background-reconnect", interval=0.02, attempt_timeout=5.0)


@pytest.fixture
def fastmcp_logs(caplog: pytest.LogCaptureFixture) -> Iterator[pytest.LogCaptureFixture]:
    """Capture records from the `fastmcp` logger tree, which does not propagate."""
    logger = logging.getLogger("fastmcp")
    previous = logger.level
    logger.addHandler(caplog.handler)
    logger.setLevel(logging.DEBUG)
    yield caplog
    logger.removeHandler(caplog.handler)
    logger.setLevel(previous)
