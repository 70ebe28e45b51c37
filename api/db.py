from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Generator, Iterable

from pve_anonymizer.settings import get_settings

_DB_PATH = get_settings().mapping_db_path


@contextmanager
def _conn() -> Generator[sqlite3.Connection, None, None]:
    con = sqlite3.connect(_DB_PATH)
    con.row_factory = sqlite3.Row
    try:
        yield con
        con.commit()
    finally:
        con.close()


def init_db() -> None:
    with _conn() as con:
        con.executescript("""
            CREATE TABLE IF NOT EXISTS mappings (
                original_value TEXT PRIMARY KEY,
                pseudonym      TEXT UNIQUE NOT NULL,
                type           TEXT NOT NULL,
                category       TEXT NOT NULL DEFAULT '',
                created_at     TEXT NOT NULL
            );
        """)


def save_mappings(records: Iterable[dict[str, Any]]) -> int:
    """Upsert exported mapping records; returns the number written."""
    rows = [
        (
            r["originalValue"],
            r["pseudonym"],
            r.get("type", "custom"),
            r.get("category", ""),
            r["createdAt"],
        )
        for r in records
    ]
    with _conn() as con:
        con.executemany(
            """INSERT OR REPLACE INTO mappings
               (original_value, pseudonym, type, category, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            rows,
        )
    return len(rows)


def load_mappings() -> list[dict[str, str]]:
    """All stored mappings in the exchange format, oldest first."""
    with _conn() as con:
        rows = con.execute(
            """SELECT original_value, pseudonym, type, category, created_at
               FROM mappings ORDER BY created_at, original_value"""
        ).fetchall()
    return [
        {
            "originalValue": r["original_value"],
            "pseudonym": r["pseudonym"],
            "type": r["type"],
            "category": r["category"],
            "createdAt": r["created_at"],
        }
        for r in rows
    ]


def count_mappings() -> int:
    with _conn() as con:
        return int(con.execute("SELECT COUNT(*) FROM mappings").fetchone()[0])


def clear_mappings() -> None:
    with _conn() as con:
        con.execute("DELETE FROM mappings")
