"""Workflow domain concepts.

This package holds first-class types for:
- Payloads threaded through a run
- Steps (post a chat message, send an email, write to stdout)
- Workflows (ordered step chains)
- Triggers (webhook, poll) and the registry that resolves them
"""

from matrix_automation.engine.workflow.payload import Payload
from matrix_automation.engine.workflow.registry import (
    DuplicateRegistrationError,
    TriggerNotFound,
    TriggerRegistry,
)
from matrix_automation.engine.workflow.workflow import Workflow, WorkflowHalted, WorkflowNotFound

__all__ = [
    "DuplicateRegistrationError",
    "Payload",
    "TriggerNotFound",
    "TriggerRegistry",
    "Workflow",
    "WorkflowHalted",
    "WorkflowNotFound",
]
