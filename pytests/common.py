"""Shared helpers for tests.

Intended usage:
- spin up a temporary SQLite database
- create all SQLAlchemy tables
- point the app's `db` module at it
- stand in for the VIES registry without network access
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

import db
from api.schemas.companies import CheckVatResult
from models import Base
from models.companies import Company
from utils.vies_client import VatVerificationError, VatVerifier

__all__ = [
    "make_sqlite_engine",
    "create_empty_sqlite_db",
    "patch_app_db",
    "add_companies",
    "FakeVatVerifier",
]


def make_sqlite_engine(db_path: Path | str) -> Engine:
    """Create a SQLite engine suitable for tests (same setup as the app)."""

    return db.make_engine(f"sqlite:///{db_path}")


def create_empty_sqlite_db(db_path: Path) -> tuple[Session, Engine]:
    """Create an empty SQLite DB file and initialize all models.

    Returns (session, engine).
    """

    engine = make_sqlite_engine(db_path)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    return SessionLocal(), engine


def patch_app_db(monkeypatch, engine: Engine) -> sessionmaker:
    """Point `db.engine`/`db.SessionLocal` at `engine` for the rest of the test."""

    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "SessionLocal", session_factory)
    return session_factory


def add_companies(session: Session, rows: Iterable[dict[str, Any]]) -> list[Company]:
    """Insert companies from dicts using ORM attribute names; returns the rows."""

    objs = [Company(**row) for row in rows]
    session.add_all(objs)
    session.commit()
    return objs


class FakeVatVerifier(VatVerifier):
    """Records calls; answers `valid=True` unless told to fail."""

    def __init__(self, *, error: str | None = None, name: str | None = "ACME SP. Z O.O."):
        self.error = error
        self.name = name
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def verify(self, country_code: str, vat_number: str) -> CheckVatResult:
        with self._lock:
            self.calls.append((country_code, vat_number))
        if self.error is not None:
            raise VatVerificationError(self.error)
        return CheckVatResult(
            country_code=country_code,
            vat_number=vat_number,
            valid=True,
            name=self.name,
            address=None,
        )
