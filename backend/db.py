import logging
import sqlite3
from datetime import datetime, timezone

from config import DB_PATH
from errors import StorageError

logger = logging.getLogger(__name__)


def get_connection() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL;")
    return conn


def create_tables() -> None:
    conn = get_connection()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS app_blobs (
            key             TEXT PRIMARY KEY,
            payload         TEXT NOT NULL,
            saved_at        TEXT NOT NULL
        );
    """)
    conn.close()


def load_blob(key: str) -> str | None:
    """
    Return the stored payload for key, or None when nothing was ever saved.
    Absence is not an error.
    """
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT payload FROM app_blobs WHERE key = ?", (key,)
        ).fetchone()
        return row["payload"] if row is not None else None
    finally:
        conn.close()


def save_blob(key: str, payload: str) -> None:
    save_blobs({key: payload})


def save_blobs(blobs: dict[str, str]) -> None:
    """
    Upsert every key in one transaction. Either all blobs are replaced or none.
    Raises StorageError on any sqlite failure (after rollback).
    """
    saved_at = datetime.now(timezone.utc).isoformat()
    conn = None
    try:
        conn = get_connection()
        conn.execute("BEGIN")
        for key, payload in blobs.items():
            conn.execute(
                "INSERT INTO app_blobs (key, payload, saved_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET payload = excluded.payload, "
                "saved_at = excluded.saved_at",
                (key, payload, saved_at),
            )
        conn.execute("COMMIT")
    except sqlite3.Error as exc:
        if conn is not None and conn.in_transaction:
            conn.execute("ROLLBACK")
        logger.error("Failed to save blobs %s: %s", sorted(blobs), exc)
        raise StorageError(f"Failed to save {', '.join(sorted(blobs))}: {exc}") from exc
    finally:
        if conn is not None:
            conn.close()


def list_blobs() -> list:
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT key, saved_at, LENGTH(payload) AS size
            FROM app_blobs
            ORDER BY key
        """).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()
