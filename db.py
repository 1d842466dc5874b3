from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
import os


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Configure SQLite for better concurrent read/write behavior."""
    cursor = dbapi_connection.cursor()
    try:
        # Wait for locks instead of failing immediately.
        cursor.execute("PRAGMA busy_timeout=5000")
        # Better concurrency (readers not blocked by writers).
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()


DB_PATH = os.path.join(os.path.dirname(__file__), "data", "companies.db")


def database_url() -> str:
    """Return $DATABASE_URL, or the local SQLite file under data/."""

    url = (os.getenv("DATABASE_URL") or "").strip()
    return url or f"sqlite:///{DB_PATH}"


def make_engine(url: str) -> Engine:
    """Create an engine; SQLite URLs get thread-friendly connect args and pragmas."""

    if url.startswith("sqlite"):
        if url.startswith("sqlite:///") and ":memory:" not in url:
            db_dir = os.path.dirname(url[len("sqlite:///"):])
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
        eng = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            pool_pre_ping=True,
        )
        event.listen(eng, "connect", _set_sqlite_pragmas)
        return eng
    return create_engine(url, pool_pre_ping=True)


SQLALCHEMY_DATABASE_URL = database_url()

engine = make_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
