"""Background scheduler for poll triggers.

Each poll trigger runs on its own daemon thread for the life of the process.
A failed tick is logged and the loop carries on; nothing is retried early and a
thread that dies is not restarted.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import UTC, datetime

from matrix_automation.engine.workflow.events import PollTick
from matrix_automation.engine.workflow.triggers import PollTrigger

logger = logging.getLogger(__name__)


class PollScheduler:
    def __init__(self) -> None:
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def threads(self) -> list[threading.Thread]:
        return list(self._threads)

    def start(self, triggers: Iterable[PollTrigger]) -> None:
        for trigger in triggers:
            thread = threading.Thread(
                target=self._run_trigger,
                args=(trigger,),
                name=f"poll-{trigger.name}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.info("Poll scheduler started", extra={"triggers": len(self._threads)})

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)

    def _run_trigger(self, trigger: PollTrigger) -> None:
        while not self._stop.wait(trigger.polling_interval):
            tick = PollTick(at=datetime.now(tz=UTC))
            try:
                trigger.process(tick)
            except Exception:
                logger.exception(
                    "Poll trigger failed",
                    extra={"trigger": trigger.name, "workflow_id": trigger.workflow_id},
                )
