"""
Apply SQL migrations from `api/migrations/` in filename order.

Usage:
    python -m core.migrate            # apply pending migrations
    python -m core.migrate --status   # list applied/pending files
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

import asyncpg

from . import db, log

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def migration_files(directory: Path = MIGRATIONS_DIR) -> list[Path]:
    return sorted(p for p in directory.glob("*.sql") if p.is_file())


def pending_migrations(files: list[Path], applied: set[str]) -> list[Path]:
    return [p for p in files if p.name not in applied]


async def _ensure_table(conn: asyncpg.Connection) -> None:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          filename TEXT PRIMARY KEY,
          applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )


async def _applied(conn: asyncpg.Connection) -> set[str]:
    rows = await conn.fetch("SELECT filename FROM schema_migrations")
    return {str(r["filename"]) for r in rows}


async def apply_migrations(dsn: str | None = None, directory: Path = MIGRATIONS_DIR) -> list[str]:
    conn = await asyncpg.connect(dsn or db.database_url())
    applied_now: list[str] = []
    try:
        await _ensure_table(conn)
        for path in pending_migrations(migration_files(directory), await _applied(conn)):
            sql = path.read_text(encoding="utf-8")
            # One transaction per file: a failing file leaves earlier ones applied.
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute("INSERT INTO schema_migrations (filename) VALUES ($1)", path.name)
            logger.info("migration_applied file=%s", path.name)
            applied_now.append(path.name)
    finally:
        await conn.close()
    return applied_now


async def migration_status(dsn: str | None = None, directory: Path = MIGRATIONS_DIR) -> dict[str, list[str]]:
    conn = await asyncpg.connect(dsn or db.database_url())
    try:
        await _ensure_table(conn)
        applied = await _applied(conn)
    finally:
        await conn.close()
    files = migration_files(directory)
    return {
        "applied": [p.name for p in files if p.name in applied],
        "pending": [p.name for p in pending_migrations(files, applied)],
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Apply database migrations.")
    parser.add_argument("--status", action="store_true", help="show applied and pending migrations")
    args = parser.parse_args(argv)

    log.configure()
    if args.status:
        status = asyncio.run(migration_status())
        for name in status["applied"]:
            print(f"applied  {name}")
        for name in status["pending"]:
            print(f"pending  {name}")
        return 0

    applied = asyncio.run(apply_migrations())
    print(f"Applied {len(applied)} migration(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
