from __future__ import annotations

import logging
from dataclasses import dataclass, field

from matrix_automation.engine.config import StepErrorPolicy

from .payload import Payload
from .steps import AnyStep

logger = logging.getLogger(__name__)


class WorkflowNotFound(LookupError):
    pass


class WorkflowHalted(RuntimeError):
    """A step failed and the engine runs with the ``halt`` policy."""

    def __init__(self, workflow_id: int, step_name: str, payload: Payload) -> None:
        super().__init__(f"Workflow #{workflow_id} halted at step {step_name!r}")
        self.workflow_id = workflow_id
        self.step_name = step_name
        self.payload = payload


@dataclass(slots=True)
class Workflow:
    """An ordered chain of steps.

    Steps are appended once while loading; their order is execution order.
    """

    id: int
    name: str
    description: str = ""
    steps: list[AnyStep] = field(default_factory=list)

    def add_step(self, step: AnyStep) -> None:
        self.steps.append(step)

    def run(
        self, payload: Payload, *, policy: StepErrorPolicy = StepErrorPolicy.CONTINUE
    ) -> Payload:
        """Fold ``payload`` through every step and return the final payload.

        A failed step is always logged. With ``continue`` the next step receives the
        payload the failed step was given; with ``halt`` :class:`WorkflowHalted` is
        raised. Side effects of earlier steps are never undone.
        """

        logger.info(
            "Running workflow",
            extra={"workflow_id": self.id, "workflow": self.name, "steps": len(self.steps)},
        )

        current = payload
        for index, step in enumerate(self.steps):
            try:
                current = step.run(current)
            except Exception as e:
                logger.exception(
                    "Workflow step failed",
                    extra={
                        "workflow_id": self.id,
                        "step": step.name,
                        "step_index": index,
                        "policy": policy.value,
                    },
                )
                if policy is StepErrorPolicy.HALT:
                    raise WorkflowHalted(self.id, step.name, current) from e
        return current
