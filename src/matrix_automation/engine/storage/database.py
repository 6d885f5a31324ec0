"""SQLite-backed storage for triggers, workflows, workflow steps and bots.

Usage:
    storage = Storage.connect(Path("automation.db"))
    for record in storage.list_configured_workflows():
        ...
    storage.close()
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path

from .migrations import apply_migrations
from .models import BotRecord, TriggerRecord, WorkflowRecord, WorkflowStepRecord

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


def _load_config(raw: str | None, *, table: str, row_id: int) -> dict[str, object]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageError(f"{table} #{row_id} has invalid JSON config: {e}") from e
    if not isinstance(data, dict):
        raise StorageError(f"{table} #{row_id} config must be a JSON object")
    return data


class Storage:
    """Narrow query interface over the engine database.

    The connection is shared between threads; a lock serializes access.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    @classmethod
    def connect(cls, path: Path) -> Storage:
        """Apply pending migrations, then open the working connection.

        Raises:
            StorageError: The database cannot be opened.
            MigrationError: A migration failed.
        """

        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            migration_conn = sqlite3.connect(str(path))
        except sqlite3.Error as e:
            raise StorageError(f"Opening database {path} failed: {e}") from e
        try:
            apply_migrations(migration_conn)
        finally:
            migration_conn.close()

        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageError(f"Opening database {path} failed: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        logger.info("Database connection established", extra={"path": str(path)})
        return cls(conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _fetch(self, sql: str, params: tuple[object, ...] = ()) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e

    def _insert(self, sql: str, params: tuple[object, ...]) -> int:
        try:
            with self._lock:
                cursor = self._conn.execute(sql, params)
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Insert failed: {e}") from e
        if cursor.lastrowid is None:
            raise StorageError("Insert did not produce a row id")
        return cursor.lastrowid

    def list_configured_triggers(self) -> list[TriggerRecord]:
        rows = self._fetch(
            "SELECT id, name, description, kind, workflow_id, config, active "
            "FROM triggers WHERE active = 1 ORDER BY id"
        )
        return [
            TriggerRecord(
                id=row["id"],
                name=row["name"],
                description=row["description"],
                kind=row["kind"],
                workflow_id=row["workflow_id"],
                config=_load_config(row["config"], table="triggers", row_id=row["id"]),
                active=bool(row["active"]),
            )
            for row in rows
        ]

    def list_configured_workflows(self) -> list[WorkflowRecord]:
        rows = self._fetch(
            "SELECT id, name, description, active FROM workflows WHERE active = 1 ORDER BY id"
        )
        return [
            WorkflowRecord(
                id=row["id"],
                name=row["name"],
                description=row["description"],
                active=bool(row["active"]),
            )
            for row in rows
        ]

    def list_configured_workflow_steps(self) -> list[WorkflowStepRecord]:
        """Active steps, in execution order within each workflow."""

        rows = self._fetch(
            "SELECT id, workflow_id, name, description, kind, config, active "
            "FROM workflow_steps WHERE active = 1 ORDER BY workflow_id, sort_order, id"
        )
        return [
            WorkflowStepRecord(
                id=row["id"],
                workflow_id=row["workflow_id"],
                name=row["name"],
                description=row["description"],
                kind=row["kind"],
                config=_load_config(row["config"], table="workflow_steps", row_id=row["id"]),
                active=bool(row["active"]),
            )
            for row in rows
        ]

    def list_active_bots(self) -> list[BotRecord]:
        rows = self._fetch(
            "SELECT id, username, password, description, is_primary, active "
            "FROM bots WHERE active = 1 ORDER BY id"
        )
        return [
            BotRecord(
                id=row["id"],
                username=row["username"],
                password=row["password"],
                description=row["description"],
                is_primary=bool(row["is_primary"]),
                active=bool(row["active"]),
            )
            for row in rows
        ]

    def find_workflow_by_name(self, name: str) -> WorkflowRecord | None:
        rows = self._fetch(
            "SELECT id, name, description, active FROM workflows WHERE name = ?", (name,)
        )
        if not rows:
            return None
        row = rows[0]
        return WorkflowRecord(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            active=bool(row["active"]),
        )

    def save_workflow(self, *, name: str, description: str = "", active: bool = True) -> int:
        return self._insert(
            "INSERT INTO workflows (name, description, active) VALUES (?, ?, ?)",
            (name, description, int(active)),
        )

    def save_trigger(
        self,
        *,
        workflow_id: int,
        name: str,
        kind: str,
        config: dict[str, object],
        description: str = "",
        active: bool = True,
    ) -> int:
        return self._insert(
            "INSERT INTO triggers (name, description, kind, workflow_id, config, active) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (name, description, kind, workflow_id, json.dumps(config), int(active)),
        )

    def save_workflow_step(
        self,
        *,
        workflow_id: int,
        name: str,
        kind: str,
        config: dict[str, object],
        sort_order: int = 0,
        description: str = "",
        active: bool = True,
    ) -> int:
        return self._insert(
            "INSERT INTO workflow_steps "
            "(workflow_id, name, description, kind, sort_order, config, active) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (workflow_id, name, description, kind, sort_order, json.dumps(config), int(active)),
        )

    def save_bot(
        self,
        *,
        username: str,
        password: str,
        is_primary: bool = False,
        description: str = "",
        active: bool = True,
    ) -> int:
        return self._insert(
            "INSERT INTO bots (username, password, description, is_primary, active) "
            "VALUES (?, ?, ?, ?, ?)",
            (username, password, description, int(is_primary), int(active)),
        )
