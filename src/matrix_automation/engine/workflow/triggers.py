"""Triggers bind an external event source to exactly one workflow.

A trigger turns its raw event into a :class:`Payload` (``activate``) and then asks
the engine to run its workflow (``process``). The engine is held through a weak
reference: triggers look workflows up, they never keep the engine alive.
"""

from __future__ import annotations

import logging
import re
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import requests

from matrix_automation.engine.storage.models import TriggerRecord

from .events import PollTick, WebhookEvent
from .payload import Payload

logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


class TriggerKind(str, Enum):
    WEBHOOK = "webhook"
    POLL = "poll"


class InvalidEvent(ValueError):
    """The event does not carry a usable message."""


class TriggerNotBound(RuntimeError):
    pass


class WorkflowRunner(Protocol):
    def run_workflow(self, workflow_id: int, payload: Payload) -> Payload: ...


def parse_interval(value: object) -> float:
    """Parse a polling interval into seconds.

    Accepts plain numbers (seconds) and duration strings such as ``"90s"``, ``"5m"``
    or ``"1h30m"``.
    """

    if isinstance(value, bool):
        raise ValueError(f"Invalid polling interval: {value!r}")
    if isinstance(value, int | float):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                raise ValueError(f"Invalid polling interval: {value!r}") from None
            seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)
    else:
        raise ValueError(f"Invalid polling interval: {value!r}")

    if seconds <= 0:
        raise ValueError(f"Polling interval must be positive: {value!r}")
    return seconds


@dataclass(slots=True, kw_only=True)
class _BoundTrigger:
    id: int
    name: str
    workflow_id: int
    description: str = ""
    _runner: weakref.ReferenceType[WorkflowRunner] | None = field(
        default=None, init=False, repr=False, compare=False
    )

    def bind(self, runner: WorkflowRunner) -> None:
        self._runner = weakref.ref(runner)

    def _run(self, payload: Payload) -> Payload:
        runner = self._runner() if self._runner is not None else None
        if runner is None:
            raise TriggerNotBound(f"Trigger {self.name!r} is not bound to a running engine")
        logger.debug(
            "Trigger activated",
            extra={"trigger": self.name, "workflow_id": self.workflow_id},
        )
        return runner.run_workflow(self.workflow_id, payload)


@dataclass(slots=True, kw_only=True)
class WebhookTrigger(_BoundTrigger):
    url_suffix: str

    def activate(self, event: WebhookEvent) -> Payload:
        if not event.message:
            raise InvalidEvent("No message to post")
        return Payload(message=event.message, room=event.room)

    def process(self, event: WebhookEvent) -> Payload:
        return self._run(self.activate(event))


@dataclass(slots=True, kw_only=True)
class PollTrigger(_BoundTrigger):
    """Fires every ``polling_interval`` seconds.

    With a ``url`` each tick fetches it and posts the response body; otherwise the
    configured static ``message`` is used.
    """

    polling_interval: float
    url: str = ""
    message: str = ""
    room: str = ""
    request_timeout: float | None = None

    def activate(self, event: PollTick) -> Payload:
        message = self.message
        if self.url:
            response = requests.get(self.url, timeout=self.request_timeout)
            response.raise_for_status()
            message = response.text.strip()
        if not message:
            raise InvalidEvent(f"Poll trigger {self.name!r} produced no message at {event.at}")
        return Payload(message=message, room=self.room)

    def process(self, event: PollTick) -> Payload:
        return self._run(self.activate(event))


AnyTrigger = WebhookTrigger | PollTrigger


def _config_str(record: TriggerRecord, key: str) -> str:
    value = record.config.get(key, "")
    return value.strip() if isinstance(value, str) else ""


def build_trigger(record: TriggerRecord) -> AnyTrigger:
    """Instantiate the trigger kind selected by ``record.kind``.

    Raises:
        ValueError: If the kind is unknown or its settings are invalid.
    """

    try:
        kind = TriggerKind(record.kind)
    except ValueError:
        raise ValueError(f"Unsupported trigger kind {record.kind!r} (trigger #{record.id})") from None

    if kind is TriggerKind.WEBHOOK:
        suffix = _config_str(record, "url_suffix").strip("/")
        if not suffix:
            raise ValueError(f"Webhook trigger {record.name!r} has no url_suffix")
        return WebhookTrigger(
            id=record.id,
            name=record.name,
            description=record.description,
            workflow_id=record.workflow_id,
            url_suffix=suffix,
        )

    return PollTrigger(
        id=record.id,
        name=record.name,
        description=record.description,
        workflow_id=record.workflow_id,
        polling_interval=parse_interval(record.config.get("polling_interval")),
        url=_config_str(record, "url"),
        message=_config_str(record, "message"),
        room=_config_str(record, "room"),
    )
