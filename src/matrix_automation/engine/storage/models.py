"""Typed records returned by the storage layer."""

from __future__ import annotations

from pydantic import BaseModel, Field


class WorkflowRecord(BaseModel):
    id: int
    name: str
    description: str = ""
    active: bool = True


class TriggerRecord(BaseModel):
    id: int
    name: str
    description: str = ""
    kind: str
    workflow_id: int
    active: bool = True

    # Kind-specific settings (url_suffix, polling_interval, url, message, room).
    config: dict[str, object] = Field(default_factory=dict)


class WorkflowStepRecord(BaseModel):
    id: int
    workflow_id: int
    name: str
    description: str = ""
    kind: str
    active: bool = True

    # Kind-specific settings (room, bot, recipient, subject).
    config: dict[str, object] = Field(default_factory=dict)


class BotRecord(BaseModel):
    id: int
    username: str
    password: str
    description: str = ""
    is_primary: bool = False
    active: bool = True
