from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Payload:
    """The data threaded through a workflow run.

    Payloads are values: every step receives one and returns a (possibly new) one.
    An empty ``room`` means "use the step's configured destination".
    """

    message: str
    room: str = ""
