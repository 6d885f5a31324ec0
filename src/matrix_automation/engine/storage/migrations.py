"""Versioned schema migrations.

Each migration runs once, inside its own transaction, and is recorded in
``schema_migrations``. Append new entries; never edit applied ones.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime

logger = logging.getLogger(__name__)


class MigrationError(RuntimeError):
    pass


MIGRATIONS: list[tuple[int, str, str]] = [
    (
        1,
        "initial schema",
        """
        CREATE TABLE workflows (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            description TEXT NOT NULL DEFAULT '',
            active INTEGER NOT NULL DEFAULT 1
        );
        CREATE TABLE triggers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            kind TEXT NOT NULL,
            workflow_id INTEGER NOT NULL REFERENCES workflows(id),
            config TEXT NOT NULL DEFAULT '{}',
            active INTEGER NOT NULL DEFAULT 1
        );
        CREATE TABLE workflow_steps (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            workflow_id INTEGER NOT NULL REFERENCES workflows(id),
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            kind TEXT NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0,
            config TEXT NOT NULL DEFAULT '{}',
            active INTEGER NOT NULL DEFAULT 1
        );
        CREATE TABLE bots (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            password TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            is_primary INTEGER NOT NULL DEFAULT 0,
            active INTEGER NOT NULL DEFAULT 1
        );
        """,
    ),
    (
        2,
        "lookup indexes",
        """
        CREATE INDEX idx_triggers_workflow ON triggers(workflow_id);
        CREATE INDEX idx_workflow_steps_order ON workflow_steps(workflow_id, sort_order, id);
        """,
    ),
]


def _applied_versions(conn: sqlite3.Connection) -> set[int]:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations ("
        "version INTEGER PRIMARY KEY, description TEXT NOT NULL, applied_at TEXT NOT NULL)"
    )
    return {row[0] for row in conn.execute("SELECT version FROM schema_migrations")}


def apply_migrations(conn: sqlite3.Connection) -> list[int]:
    """Apply every pending migration in version order.

    Returns:
        The versions applied by this call (empty when the schema is current).
    """

    try:
        applied = _applied_versions(conn)
        conn.commit()
    except sqlite3.Error as e:
        raise MigrationError(f"Reading migration state failed: {e}") from e

    newly_applied: list[int] = []
    for version, description, script in sorted(MIGRATIONS):
        if version in applied:
            continue
        try:
            # executescript() commits any open transaction first, so wrap explicitly.
            conn.executescript(
                "BEGIN;\n"
                + script
                + "\nINSERT INTO schema_migrations (version, description, applied_at) "
                + f"VALUES ({version}, '{description}', '{datetime.now(tz=UTC).isoformat()}');\n"
                + "COMMIT;"
            )
        except sqlite3.Error as e:
            conn.rollback()
            raise MigrationError(f"Migrating database to version {version} failed: {e}") from e
        logger.info("Applied migration", extra={"version": version, "description": description})
        newly_applied.append(version)
    return newly_applied
