"""Workflow steps.

A step is one unit of side-effecting work. Every kind shares the same capability,
``run(payload) -> Payload``; the set of kinds is closed (see :data:`AnyStep`).
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, TextIO

from matrix_automation.engine.storage.models import WorkflowStepRecord

from .payload import Payload

if TYPE_CHECKING:
    from matrix_automation.engine.bots.registry import BotRegistry
    from matrix_automation.engine.mailer import EmailSender

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    POST_MESSAGE = "postMessageMatrix"
    SEND_EMAIL = "sendEmail"
    STDOUT = "stdout"


class StepError(RuntimeError):
    """Raised by a step that cannot perform its side effect."""


@dataclass(frozen=True, slots=True, kw_only=True)
class PostMessageStep:
    """Post the payload message to a chat room.

    The payload's room wins over the configured one. Without a ``bot`` the primary
    bot speaks.
    """

    id: int
    name: str
    workflow_id: int
    description: str = ""
    room: str = ""
    bot: str = ""
    bots: BotRegistry = field(repr=False, compare=False)

    def run(self, payload: Payload) -> Payload:
        room = payload.room or self.room
        if not room:
            raise StepError(f"Step {self.name!r} has no room to post to")

        client = self.bots.get_client(self.bot) if self.bot else self.bots.get_primary_client()
        event_id = client.send_text(room, payload.message)
        logger.info(
            "Message posted",
            extra={"step": self.name, "room": room, "event_id": event_id},
        )
        return payload


@dataclass(frozen=True, slots=True, kw_only=True)
class SendEmailStep:
    id: int
    name: str
    workflow_id: int
    description: str = ""
    recipient: str
    subject: str = ""
    sender: EmailSender | None = field(default=None, repr=False, compare=False)

    def run(self, payload: Payload) -> Payload:
        if self.sender is None:
            raise StepError(f"Step {self.name!r} cannot send email: SMTP is not configured")
        if not self.recipient:
            raise StepError(f"Step {self.name!r} has no recipient")

        subject = self.subject or self.name
        self.sender.send(to=self.recipient, subject=subject, body=payload.message)
        logger.info("Email sent", extra={"step": self.name, "recipient": self.recipient})
        return payload


@dataclass(frozen=True, slots=True, kw_only=True)
class StdoutStep:
    id: int
    name: str
    workflow_id: int
    description: str = ""
    stream: TextIO | None = field(default=None, repr=False, compare=False)

    def run(self, payload: Payload) -> Payload:
        line = f"[{payload.room}] {payload.message}" if payload.room else payload.message
        print(line, file=self.stream or sys.stdout, flush=True)
        return payload


AnyStep = PostMessageStep | SendEmailStep | StdoutStep


def _config_str(record: WorkflowStepRecord, key: str) -> str:
    value = record.config.get(key, "")
    return value.strip() if isinstance(value, str) else ""


def build_step(
    record: WorkflowStepRecord,
    *,
    bots: BotRegistry,
    email_sender: EmailSender | None,
) -> AnyStep:
    """Instantiate the step kind selected by ``record.kind``.

    Raises:
        ValueError: If the kind is unknown.
    """

    try:
        kind = StepKind(record.kind)
    except ValueError:
        raise ValueError(
            f"Unsupported workflow step kind {record.kind!r} (step #{record.id})"
        ) from None

    if kind is StepKind.POST_MESSAGE:
        return PostMessageStep(
            id=record.id,
            name=record.name,
            workflow_id=record.workflow_id,
            description=record.description,
            room=_config_str(record, "room"),
            bot=_config_str(record, "bot"),
            bots=bots,
        )
    if kind is StepKind.SEND_EMAIL:
        return SendEmailStep(
            id=record.id,
            name=record.name,
            workflow_id=record.workflow_id,
            description=record.description,
            recipient=_config_str(record, "recipient"),
            subject=_config_str(record, "subject"),
            sender=email_sender,
        )
    return StdoutStep(
        id=record.id,
        name=record.name,
        workflow_id=record.workflow_id,
        description=record.description,
    )
