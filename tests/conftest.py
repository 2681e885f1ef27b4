# tests/conftest.py
"""
Pytest fixtures shared by the test suite.

The environment is pointed at an in-memory SQLite database before any
application module is imported. Configuration files live in a per-test
temporary directory and reloads go to a recording strategy, so no test needs
a running Asterisk.
"""

import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["API_KEY"] = "test-api-key"
os.environ["AUTO_SYNC_ON_STARTUP"] = "false"
os.environ["AMI_ENABLED"] = "false"
os.environ["SIP_REALM"] = "asterisk"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="pbx-reconcile-logs-")

import logging
from typing import List

import pytest

from shared.database import Base, engine, SessionLocal, init_database
from shared.exceptions import EngineUnreachable
from apps.reconcile.config_store import ConfigStore
from apps.reconcile.orchestrator import ReconcileOrchestrator
from apps.reconcile.reload import ReloadCoordinator, ReloadResult
from apps.reconcile.throttle import Throttle

log = logging.getLogger(__name__)

API_KEY = "test-api-key"


class RecordingReloadStrategy:
    """Reload strategy that records scopes instead of talking to Asterisk"""

    def __init__(self, name: str = "fake", succeed: bool = True, reachable: bool = True):
        self.name = name
        self.succeed = succeed
        self.reachable = reachable
        self.calls: List[str] = []

    def available(self) -> bool:
        return True

    def reload(self, scope: str) -> ReloadResult:
        self.calls.append(scope)
        if not self.reachable:
            raise EngineUnreachable(f"{self.name} cannot reach Asterisk")
        if self.succeed:
            return ReloadResult(success=True, scope=scope, method=self.name, output=f"{scope} reloaded")
        return ReloadResult(success=False, scope=scope, method=self.name, error="rejected")


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---- Database Fixtures ----

@pytest.fixture(scope='function')
def db():
    """Fresh schema and session for every test"""
    Base.metadata.drop_all(bind=engine)
    assert init_database(), "database initialization failed"
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


# ---- Config File Fixtures ----

@pytest.fixture
def backup_dir(tmp_path):
    return str(tmp_path / "backups")


@pytest.fixture
def pjsip_store(tmp_path, backup_dir):
    return ConfigStore(str(tmp_path / "pjsip.conf"), backup_dir=backup_dir)


@pytest.fixture
def dialplan_store(tmp_path, backup_dir):
    return ConfigStore(str(tmp_path / "extensions.conf"), backup_dir=backup_dir)


@pytest.fixture
def reload_strategy():
    return RecordingReloadStrategy()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def orchestrator(pjsip_store, dialplan_store, reload_strategy, clock):
    reloader = ReloadCoordinator(
        strategies=[reload_strategy],
        scope_paths={
            "pjsip": [pjsip_store.path],
            "dialplan": [dialplan_store.path],
            "all": [pjsip_store.path, dialplan_store.path],
        },
    )
    return ReconcileOrchestrator(
        pjsip_store=pjsip_store,
        dialplan_store=dialplan_store,
        reloader=reloader,
        throttle=Throttle(60, clock=clock),
        realm="asterisk",
        outbound_context="from-internal",
    )


# ---- API Fixtures ----

@pytest.fixture
def client(db, orchestrator):
    """TestClient bound to the test session and orchestrator"""
    from fastapi.testclient import TestClient
    from main import app
    from shared.database import get_db
    from apps.reconcile import get_orchestrator

    def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {API_KEY}"}
