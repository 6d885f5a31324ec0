from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class WebhookEvent:
    """What a webhook caller sent, already decoded from query/body."""

    message: str
    room: str = ""


@dataclass(frozen=True, slots=True)
class PollTick:
    """Emitted by the poll scheduler each time an interval elapses."""

    at: datetime
