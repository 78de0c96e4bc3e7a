import os

# Must be set before newsroom_admin.config builds its Settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CRON_SYNC_ON_STARTUP", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from newsroom_admin.config import settings
from newsroom_admin.db import get_db
from newsroom_admin.main import app
from newsroom_admin.models import Base
from newsroom_admin.routes.admin import get_cron_backend

ADMIN_PASSWORD = "test-admin-password"


class RecordingCronBackend:
    """Stands in for pg_cron/APScheduler and remembers every call."""
    name = "recording"

    def __init__(self):
        self.calls = []
        self.jobs = {}
        self.fail_schedule = False
        self.fail_schedule_times = 0
        self.fail_unschedule = False

    def schedule(self, job_name, expression, request):
        self.calls.append(("schedule", job_name, expression))
        if self.fail_schedule_times:
            self.fail_schedule_times -= 1
            raise RuntimeError("cron.schedule failed")
        if self.fail_schedule:
            raise RuntimeError("cron.schedule failed")
        self.jobs[job_name] = (expression, request)

    def unschedule(self, job_name):
        self.calls.append(("unschedule", job_name))
        if self.fail_unschedule:
            raise RuntimeError("cron.unschedule failed")
        return self.jobs.pop(job_name, None) is not None

    def list_jobs(self):
        return [{"name": name, "schedule": expr} for name, (expr, _) in sorted(self.jobs.items())]


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def cron_backend():
    return RecordingCronBackend()


@pytest.fixture
def admin_password(monkeypatch):
    monkeypatch.setattr(settings, "admin_password", ADMIN_PASSWORD)
    return ADMIN_PASSWORD


@pytest.fixture
def client(session_factory, cron_backend, admin_password):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cron_backend] = lambda: cron_backend
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def call(client, admin_password):
    """POSTs one admin action and returns the response."""
    def _call(action, data=None, password=admin_password):
        body = {"action": action, "password": password}
        if data is not None:
            body["data"] = data
        return client.post("/admin", json=body)
    return _call
