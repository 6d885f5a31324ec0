"""Unit tests for SQLite storage and schema migrations."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from matrix_automation.engine.storage import migrations
from matrix_automation.engine.storage.database import Storage, StorageError
from matrix_automation.engine.storage.migrations import MIGRATIONS, MigrationError, apply_migrations


def test_apply_migrations_is_idempotent(tmp_path: Path) -> None:
    conn = sqlite3.connect(str(tmp_path / "db.sqlite"))
    try:
        first = apply_migrations(conn)
        second = apply_migrations(conn)
        versions = [row[0] for row in conn.execute("SELECT version FROM schema_migrations")]
    finally:
        conn.close()

    assert first == [v for v, _, _ in MIGRATIONS]
    assert second == []
    assert sorted(versions) == first


def test_failed_migration_is_rolled_back(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        migrations,
        "MIGRATIONS",
        [
            *MIGRATIONS,
            (99, "broken", "CREATE TABLE extra (id INTEGER); CREATE TABLE extra (id INTEGER);"),
        ],
    )
    conn = sqlite3.connect(str(tmp_path / "db.sqlite"))
    try:
        with pytest.raises(MigrationError, match="version 99"):
            migrations.apply_migrations(conn)
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        versions = {row[0] for row in conn.execute("SELECT version FROM schema_migrations")}
    finally:
        conn.close()

    assert "extra" not in tables
    assert 99 not in versions
    assert {v for v, _, _ in MIGRATIONS} <= versions


def test_connect_creates_parent_directory(db_path: Path) -> None:
    storage = Storage.connect(db_path)
    storage.close()
    assert db_path.exists()


def test_lists_only_active_records(storage: Storage) -> None:
    active = storage.save_workflow(name="active", description="on")
    storage.save_workflow(name="inactive", active=False)

    storage.save_trigger(
        workflow_id=active, name="hook", kind="webhook", config={"url_suffix": "deploy"}
    )
    storage.save_trigger(
        workflow_id=active, name="old", kind="webhook", config={"url_suffix": "old"}, active=False
    )

    workflows = storage.list_configured_workflows()
    triggers = storage.list_configured_triggers()

    assert [w.name for w in workflows] == ["active"]
    assert workflows[0].description == "on"
    assert [t.name for t in triggers] == ["hook"]
    assert triggers[0].config == {"url_suffix": "deploy"}
    assert triggers[0].workflow_id == active


def test_steps_are_listed_in_execution_order(storage: Storage) -> None:
    wf = storage.save_workflow(name="ordered")
    storage.save_workflow_step(workflow_id=wf, name="third", kind="stdout", config={}, sort_order=2)
    storage.save_workflow_step(workflow_id=wf, name="first", kind="stdout", config={}, sort_order=0)
    storage.save_workflow_step(
        workflow_id=wf, name="second", kind="postMessageMatrix", config={"room": "!r:x"}, sort_order=1
    )
    storage.save_workflow_step(
        workflow_id=wf, name="disabled", kind="stdout", config={}, sort_order=1, active=False
    )

    steps = storage.list_configured_workflow_steps()

    assert [s.name for s in steps] == ["first", "second", "third"]
    assert steps[1].config == {"room": "!r:x"}


def test_active_bots(storage: Storage) -> None:
    storage.save_bot(username="alice", password="pw", is_primary=True)
    storage.save_bot(username="bob", password="pw", active=False)

    bots = storage.list_active_bots()

    assert [(b.username, b.is_primary) for b in bots] == [("alice", True)]


def test_find_workflow_by_name(storage: Storage) -> None:
    wf = storage.save_workflow(name="deploy-notify")

    found = storage.find_workflow_by_name("deploy-notify")

    assert found is not None
    assert found.id == wf
    assert storage.find_workflow_by_name("missing") is None


def test_duplicate_workflow_name_is_a_storage_error(storage: Storage) -> None:
    storage.save_workflow(name="same")
    with pytest.raises(StorageError):
        storage.save_workflow(name="same")


def test_invalid_config_json_is_reported(storage: Storage, db_path: Path) -> None:
    wf = storage.save_workflow(name="wf")
    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute(
            "INSERT INTO triggers (name, kind, workflow_id, config) VALUES (?, ?, ?, ?)",
            ("broken", "webhook", wf, "{not json"),
        )
        conn.commit()
    finally:
        conn.close()

    with pytest.raises(StorageError, match="invalid JSON"):
        storage.list_configured_triggers()
