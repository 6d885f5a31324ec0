"""Webhook request decoding.

Turns an inbound request into a :class:`WebhookEvent`. Rejections are raised as
``HTTPException(400)`` so the route never reaches a workflow with a bad event.
"""

from __future__ import annotations

import json
import logging

from fastapi import HTTPException, Request

from matrix_automation.engine.workflow.events import WebhookEvent

logger = logging.getLogger(__name__)

LISTENER_PREFIX = "/webhooks-listener/"

_JSON = "application/json"
_FORM = "application/x-www-form-urlencoded"


def _as_str(value: object) -> str:
    return value if isinstance(value, str) else ""


def _content_type(request: Request) -> str:
    raw = request.headers.get("content-type", "")
    return raw.split(";", 1)[0].strip().lower()


def event_from_query(request: Request) -> WebhookEvent:
    params = request.query_params

    messages = params.getlist("message")
    if not messages or not messages[0]:
        raise HTTPException(status_code=400, detail="No message parameter provided")

    room = ""
    rooms = params.getlist("room")
    if rooms:
        if not rooms[0]:
            raise HTTPException(status_code=400, detail="No room value specified")
        room = rooms[0]

    return WebhookEvent(message=messages[0], room=room)


async def event_from_body(request: Request) -> WebhookEvent:
    content_type = _content_type(request)

    if content_type == _JSON:
        raw = await request.body()
        try:
            data = json.loads(raw or b"null")
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise HTTPException(status_code=400, detail="Malformed JSON body") from e
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="JSON body must be an object")
        message, room = _as_str(data.get("message")), _as_str(data.get("room"))
    elif content_type == _FORM:
        form = await request.form()
        message, room = _as_str(form.get("message")), _as_str(form.get("room"))
    else:
        logger.info("Unsupported webhook content type", extra={"content_type": content_type})
        message, room = "", ""

    if not message:
        raise HTTPException(status_code=400, detail="No message to post")
    return WebhookEvent(message=message, room=room)
