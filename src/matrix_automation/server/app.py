"""FastAPI app factory for the webhook listener.

The only routes live under ``/webhooks-listener/``; everything else is a 404.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from matrix_automation import __version__
from matrix_automation.engine.workflow.registry import TriggerNotFound, TriggerRegistry
from matrix_automation.engine.workflow.triggers import InvalidEvent, TriggerNotBound
from matrix_automation.engine.workflow.workflow import WorkflowHalted, WorkflowNotFound
from matrix_automation.server.webhooks import LISTENER_PREFIX, event_from_body, event_from_query

logger = logging.getLogger(__name__)


def create_app(triggers: TriggerRegistry) -> FastAPI:
    app = FastAPI(
        title="Matrix Automation webhook listener",
        version=__version__,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
        redirect_slashes=False,
    )

    app.state.triggers = triggers

    @app.api_route(LISTENER_PREFIX + "{suffix:path}", methods=["GET", "POST"])
    async def webhook(suffix: str, request: Request) -> dict[str, str]:
        suffix = suffix.removesuffix("/")
        logger.debug(
            "Request received on webhook listener",
            extra={"path": request.url.path, "method": request.method, "suffix": suffix},
        )

        try:
            trigger = triggers.get_webhook(suffix)
        except TriggerNotFound as e:
            raise HTTPException(status_code=404, detail="Not Found") from e

        if request.method == "GET":
            event = event_from_query(request)
        else:
            event = await event_from_body(request)

        # Workflows block on network I/O; keep them off the event loop.
        try:
            await run_in_threadpool(trigger.process, event)
        except InvalidEvent as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except (WorkflowHalted, WorkflowNotFound, TriggerNotBound) as e:
            logger.error(
                "Webhook workflow did not complete",
                extra={"suffix": suffix, "workflow_id": trigger.workflow_id, "error": str(e)},
            )
            raise HTTPException(status_code=500, detail="Workflow did not complete") from e

        return {"status": "ok"}

    return app
