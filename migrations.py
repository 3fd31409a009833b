#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import hashlib
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
MIGRATIONS_DIR = os.getenv("MIGRATIONS_DIR", os.path.join(BASE_DIR, "db", "migrations"))
MIGRATION_TABLE = os.getenv("MIGRATION_TABLE", "public.schema_migrations")
MIGRATION_LOCK_KEY = int(os.getenv("MIGRATION_LOCK_KEY", "424243"))
NO_TX_MARKER = "-- NO_TX"

logger = logging.getLogger(__name__)


def migrations_path(migrations_dir: Optional[str] = None) -> Path:
    path = Path(migrations_dir or MIGRATIONS_DIR)
    if not path.is_absolute():
        path = Path(BASE_DIR) / path
    return path


def checksum(sql_text: str) -> str:
    return hashlib.sha256(sql_text.encode("utf-8")).hexdigest()


def list_migration_files(migrations_dir: Optional[str] = None) -> List[str]:
    path = migrations_path(migrations_dir)
    if not path.is_dir():
        return []
    return sorted(p.name for p in path.glob("*.sql"))


def is_no_tx(sql_text: str) -> bool:
    lines = sql_text.splitlines()
    return bool(lines and lines[0].strip().upper() == NO_TX_MARKER)


def check_applied(applied: Dict[str, Optional[str]], migrations_dir: Optional[str] = None) -> Dict[str, str]:
    """
    Compares applied migrations against the files on disk.
    Returns {filename: checksum} for rows recorded without a checksum.
    Raises RuntimeError when an applied file is missing or was edited.
    """
    path = migrations_path(migrations_dir)
    backfill: Dict[str, str] = {}
    for fname, stored in sorted(applied.items()):
        file_path = path / fname
        if not file_path.exists():
            logger.error("Applied migration missing on disk: %s", fname)
            raise RuntimeError(f"Migration file missing: {fname}")
        current = checksum(file_path.read_text(encoding="utf-8"))
        if stored is None:
            backfill[fname] = current
        elif stored != current:
            logger.error("Migration checksum mismatch for %s (db=%s, disk=%s)", fname, stored, current)
            raise RuntimeError(f"Migration checksum mismatch: {fname}")
    return backfill


def pending_migrations(applied: Dict[str, Optional[str]], migrations_dir: Optional[str] = None) -> List[str]:
    return [f for f in list_migration_files(migrations_dir) if f not in applied]


def _ensure_table(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {MIGRATION_TABLE} (
              filename   text PRIMARY KEY,
              applied_at timestamptz NOT NULL DEFAULT now(),
              checksum   text NULL
            );
            """
        )
    conn.commit()


def _applied(conn) -> Dict[str, Optional[str]]:
    with conn.cursor() as cur:
        cur.execute(f"SELECT filename, checksum FROM {MIGRATION_TABLE};")
        return {row[0]: row[1] for row in cur.fetchall()}


def _record(conn, fname: str, digest: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO {MIGRATION_TABLE}(filename, checksum)
            VALUES (%s, %s)
            ON CONFLICT (filename) DO NOTHING;
            """,
            (fname, digest),
        )


def _apply(conn, fname: str, sql_text: str) -> None:
    """
    Runs one migration file and records it with its checksum.
    Files marked NO_TX run in autocommit mode (CREATE INDEX CONCURRENTLY);
    other files share one transaction with their bookkeeping row.
    """
    no_tx = is_no_tx(sql_text)
    original_autocommit = conn.autocommit
    try:
        if no_tx:
            conn.commit()
            conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute(sql_text)
        if no_tx:
            conn.autocommit = original_autocommit
        _record(conn, fname, checksum(sql_text))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if no_tx:
            conn.autocommit = original_autocommit


def run_migrations(conn, migrations_dir: Optional[str] = None) -> List[str]:
    path = migrations_path(migrations_dir)
    if not path.is_dir():
        logger.info("Migrations dir not found, skipping: %s", path)
        return []

    _ensure_table(conn)
    with conn.cursor() as cur:
        cur.execute("SELECT pg_advisory_lock(%s);", (MIGRATION_LOCK_KEY,))
    try:
        applied = _applied(conn)
        backfill = check_applied(applied, migrations_dir)
        if backfill:
            with conn.cursor() as cur:
                for fname, value in backfill.items():
                    cur.execute(
                        f"UPDATE {MIGRATION_TABLE} SET checksum = %s WHERE filename = %s;",
                        (value, fname),
                    )
            conn.commit()

        pending = pending_migrations(applied, migrations_dir)
        logger.info("Pending migrations: %s", pending)
        for fname in pending:
            _apply(conn, fname, (path / fname).read_text(encoding="utf-8"))
            logger.info("Applied migration %s", fname)
        return pending
    finally:
        with conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_unlock(%s);", (MIGRATION_LOCK_KEY,))
        conn.commit()
