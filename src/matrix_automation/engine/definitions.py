"""Declarative workflow definitions (TOML).

A definitions file is imported into storage at startup, before the engine loads
its data, so file-defined and database-defined workflows are handled the same
way afterwards. Workflows are matched by name: one that already exists in
storage is left untouched.

Example:

    [[workflow]]
    name = "deploy-notify"
    description = "Announce deployments"

    [workflow.trigger]
    type = "webhook"
    url_suffix = "deploy"

    [[workflow.step]]
    type = "postMessageMatrix"
    name = "announce"
    room = "!ops:example.org"
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from matrix_automation.engine.storage.database import Storage
from matrix_automation.engine.workflow.steps import StepKind
from matrix_automation.engine.workflow.triggers import TriggerKind, parse_interval

logger = logging.getLogger(__name__)


class DefinitionError(ValueError):
    pass


class TriggerDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["webhook", "poll"]
    name: str = ""
    description: str = ""
    url_suffix: str = ""
    polling_interval: str | float | None = None
    url: str = ""
    message: str = ""
    room: str = ""

    @model_validator(mode="after")
    def _check_kind_settings(self) -> TriggerDefinition:
        if self.type == TriggerKind.WEBHOOK.value and not self.url_suffix.strip("/ "):
            raise ValueError("webhook triggers require url_suffix")
        if self.type == TriggerKind.POLL.value:
            parse_interval(self.polling_interval)
        return self

    def config(self) -> dict[str, object]:
        if self.type == TriggerKind.WEBHOOK.value:
            return {"url_suffix": self.url_suffix.strip("/ ")}
        return {
            "polling_interval": self.polling_interval,
            "url": self.url,
            "message": self.message,
            "room": self.room,
        }


class StepDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: StepKind
    name: str
    description: str = ""
    active: bool = True
    room: str = ""
    bot: str = ""
    recipient: str = ""
    subject: str = ""

    def config(self) -> dict[str, object]:
        if self.type is StepKind.POST_MESSAGE:
            return {"room": self.room, "bot": self.bot}
        if self.type is StepKind.SEND_EMAIL:
            return {"recipient": self.recipient, "subject": self.subject}
        return {}


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str = ""
    active: bool = True
    trigger: TriggerDefinition
    steps: list[StepDefinition] = Field(default_factory=list, alias="step")


class DefinitionsFile(BaseModel):
    workflows: list[WorkflowDefinition] = Field(default_factory=list, alias="workflow")


def parse_definitions(path: Path) -> list[WorkflowDefinition]:
    """Parse and validate a definitions file.

    Raises:
        DefinitionError: The file is missing, not TOML, or does not validate.
    """

    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise DefinitionError(f"Workflow definitions file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise DefinitionError(f"Workflow definitions file {path} is not valid TOML: {e}") from e

    try:
        parsed = DefinitionsFile.model_validate(raw)
    except ValidationError as e:
        raise DefinitionError(f"Invalid workflow definitions in {path}:\n{e}") from e

    names = [w.name for w in parsed.workflows]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise DefinitionError(f"Duplicate workflow names in {path}: {duplicates}")
    return parsed.workflows


def import_definitions(path: Path, storage: Storage) -> list[int]:
    """Persist the workflows defined in ``path`` that storage does not know yet.

    Returns:
        Ids of the newly created workflows.
    """

    created: list[int] = []
    for definition in parse_definitions(path):
        if storage.find_workflow_by_name(definition.name) is not None:
            logger.info(
                "Workflow definition already stored; skipping",
                extra={"workflow": definition.name, "path": str(path)},
            )
            continue

        workflow_id = storage.save_workflow(
            name=definition.name,
            description=definition.description,
            active=definition.active,
        )
        trigger = definition.trigger
        storage.save_trigger(
            workflow_id=workflow_id,
            name=trigger.name or definition.name,
            description=trigger.description,
            kind=trigger.type,
            config=trigger.config(),
        )
        for order, step in enumerate(definition.steps):
            storage.save_workflow_step(
                workflow_id=workflow_id,
                name=step.name,
                description=step.description,
                kind=step.type.value,
                sort_order=order,
                config=step.config(),
                active=step.active,
            )
        logger.info(
            "Imported workflow definition",
            extra={"workflow": definition.name, "workflow_id": workflow_id, "steps": len(definition.steps)},
        )
        created.append(workflow_id)
    return created
