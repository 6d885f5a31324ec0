"""Relational storage (SQLite) for the engine's configuration records."""

from matrix_automation.engine.storage.database import Storage, StorageError
from matrix_automation.engine.storage.migrations import MigrationError, apply_migrations
from matrix_automation.engine.storage.models import (
    BotRecord,
    TriggerRecord,
    WorkflowRecord,
    WorkflowStepRecord,
)

__all__ = [
    "BotRecord",
    "MigrationError",
    "Storage",
    "StorageError",
    "TriggerRecord",
    "WorkflowRecord",
    "WorkflowStepRecord",
    "apply_migrations",
]
