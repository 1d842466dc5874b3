from __future__ import annotations

import os
import tempfile

# Loggers are created at import time; keep test runs from writing into ./logs.
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="company_registry_logs_"))

from dataclasses import dataclass  # noqa: E402
from typing import Generator  # noqa: E402

import pytest  # noqa: E402
from flask import Flask  # noqa: E402
from flask.testing import FlaskClient  # noqa: E402

from api.companies import SERVICE_EXTENSION  # noqa: E402
from api.services.company_service import CompanyService  # noqa: E402
from api.services.company_store import InMemoryCompanyStore  # noqa: E402
from api.services.response_cache import ResponseCache  # noqa: E402
from app import create_app  # noqa: E402
from pytests.common import FakeVatVerifier, create_empty_sqlite_db, patch_app_db  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep startup side effects out of tests."""

    monkeypatch.setenv("INIT_DB_ON_STARTUP", "0")
    monkeypatch.setenv("SLOW_REQUEST_MS", "0")


@pytest.fixture()
def verifier() -> FakeVatVerifier:
    return FakeVatVerifier()


@pytest.fixture()
def service(verifier) -> CompanyService:
    """CompanyService over an in-memory store and a fresh cache."""

    return CompanyService(InMemoryCompanyStore(), verifier, ResponseCache())


@dataclass
class AppHarness:
    app: Flask
    client: FlaskClient
    verifier: FakeVatVerifier

    @property
    def service(self) -> CompanyService:
        return self.app.extensions[SERVICE_EXTENSION]


@pytest.fixture()
def harness(tmp_path, monkeypatch, verifier) -> Generator[AppHarness, None, None]:
    """Flask app backed by a temp SQLite DB and a fake VAT verifier."""

    session, engine = create_empty_sqlite_db(tmp_path / "test.sqlite")
    session.close()
    patch_app_db(monkeypatch, engine)

    app = create_app({"TESTING": True}, verifier=verifier)

    with app.test_client() as c:
        yield AppHarness(app=app, client=c, verifier=verifier)

    engine.dispose()


@pytest.fixture()
def client(harness) -> FlaskClient:
    return harness.client
