"""Delete and recreate the local SQLite DB.

This is a destructive helper for local development.
It drops the `companies` table (and anything else registered on `Base.metadata`)
and recreates the schema from the SQLAlchemy models.

Usage:
    python utils/recreate_sqlite_db.py                       # with confirmation prompt
    python utils/recreate_sqlite_db.py --yes                 # skip confirmation
    python utils/recreate_sqlite_db.py --backup              # create backup before reset
    python utils/recreate_sqlite_db.py --db-path /tmp/x.db   # other database file
"""

from __future__ import annotations

import argparse
import os
import shutil
import sys
from datetime import datetime

# Allow running as: `python utils/recreate_sqlite_db.py`
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from sqlalchemy import inspect  # noqa: E402

import db  # noqa: E402
from models import Base  # noqa: E402


def _confirm_or_exit(db_path: str, assume_yes: bool) -> None:
    """Prompt user for confirmation before proceeding with destructive operation."""
    if assume_yes:
        return

    if os.path.exists(db_path):
        size_mb = os.path.getsize(db_path) / (1024 * 1024)
        print(f"\nWARNING: Database exists ({size_mb:.2f} MB)")

    resp = input(
        f"\nThis will DROP and RECREATE ALL TABLES in:\n  {db_path}\n\n"
        "ALL DATA WILL BE LOST!\n\n"
        "Continue? [y/N]: "
    ).strip()
    if resp.lower() not in {"y", "yes"}:
        print("Aborted.")
        raise SystemExit(1)


def _create_backup(db_path: str) -> str | None:
    """Create a timestamped copy of the database file; None if there is nothing to copy."""
    if not os.path.exists(db_path):
        return None

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = f"{db_path}.backup_{timestamp}"
    shutil.copy2(db_path, backup_path)
    print(f"Backup created: {backup_path}")
    return backup_path


def recreate(db_path: str, *, backup: bool = False) -> list[str]:
    """Drop and recreate all tables in the SQLite file at `db_path`.

    Returns the sorted table names after the reset.
    """

    db_dir = os.path.dirname(db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    if backup:
        _create_backup(db_path)

    # Leftovers from a crashed process can block writes.
    for suffix in ("-wal", "-shm"):
        p = db_path + suffix
        if os.path.exists(p):
            os.remove(p)

    engine = db.make_engine(f"sqlite:///{db_path}")
    try:
        Base.metadata.drop_all(engine)
        Base.metadata.create_all(engine)
        return sorted(inspect(engine).get_table_names())
    finally:
        engine.dispose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Reset the local SQLite database by dropping and recreating all tables."
    )
    parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Do not prompt for confirmation.",
    )
    parser.add_argument(
        "--backup",
        "-b",
        action="store_true",
        help="Create a timestamped backup before resetting.",
    )
    parser.add_argument(
        "--db-path",
        default=db.DB_PATH,
        help=f"SQLite database file (default: {db.DB_PATH}).",
    )
    args = parser.parse_args(argv)

    _confirm_or_exit(args.db_path, args.yes)

    tables = recreate(args.db_path, backup=args.backup)

    print(f"\nDatabase reset complete: {args.db_path}")
    print(f"Tables ({len(tables)}):")
    for table in tables:
        print(f"  - {table}")


if __name__ == "__main__":
    main()
