"""Matrix client-server API wrapper.

The engine only needs a narrow slice of the protocol: password login, sending
text messages, joining rooms, and being told about invites while syncing. This
module keeps those calls behind :class:`ChatClient` so the rest of the engine
(and its tests) never touch HTTP.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from typing import Any, Protocol
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

InviteCallback = Callable[[str], None]

_CLIENT_API = "/_matrix/client/v3"


class ChatClientError(RuntimeError):
    """A homeserver request failed."""

    def __init__(self, message: str, *, errcode: str | None = None) -> None:
        super().__init__(message)
        self.errcode = errcode


class ChatClient(Protocol):
    """The chat capabilities a bot session must provide."""

    def login(self, username: str, password: str) -> None: ...

    def send_text(self, room_id: str, text: str) -> str: ...

    def join_room(self, room_id: str) -> None: ...

    def on_room_invite(self, callback: InviteCallback) -> None: ...

    def sync(self) -> None: ...

    def close(self) -> None: ...


def room_homeserver_domain(room_id: str) -> str:
    """Return the server part of a room id (``!opaque:example.org`` -> ``example.org``)."""

    _, sep, domain = room_id.partition(":")
    return domain if sep else ""


class MatrixClient:
    """Small wrapper around the Matrix client-server REST API using requests."""

    def __init__(
        self,
        *,
        homeserver_url: str,
        request_timeout: float | None = None,
        sync_timeout_ms: int = 30000,
        session: requests.Session | None = None,
    ) -> None:
        if not homeserver_url:
            raise ValueError("Matrix homeserver URL is required")

        self._base_url = homeserver_url.rstrip("/") + _CLIENT_API
        self._request_timeout = request_timeout
        self._sync_timeout_ms = sync_timeout_ms
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "matrix-automation"})

        self._user_id: str | None = None
        self._invite_callbacks: list[InviteCallback] = []
        self._stop = threading.Event()
        self._close_lock = threading.Lock()

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        timeout = kwargs.pop("timeout", self._request_timeout)
        resp = self._session.request(method, self._url(path), timeout=timeout, **kwargs)
        if resp.status_code >= 400:
            errcode: str | None = None
            detail = resp.text
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                errcode = body.get("errcode") if isinstance(body.get("errcode"), str) else None
                detail = str(body.get("error", detail))
            raise ChatClientError(
                f"{method} {path} failed with HTTP {resp.status_code}: {detail}",
                errcode=errcode,
            )
        data = resp.json() if resp.content else {}
        return data if isinstance(data, dict) else {}

    def login(self, username: str, password: str) -> None:
        data = self._request(
            "POST",
            "login",
            json={
                "type": "m.login.password",
                "identifier": {"type": "m.id.user", "user": username},
                "password": password,
            },
        )
        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            raise ChatClientError("Unexpected login response: missing access_token")

        self._session.headers["Authorization"] = f"Bearer {token}"
        user_id = data.get("user_id")
        self._user_id = user_id if isinstance(user_id, str) else None
        logger.info("Logged into homeserver", extra={"user_id": self._user_id})

    def send_text(self, room_id: str, text: str) -> str:
        txn_id = uuid.uuid4().hex
        data = self._request(
            "PUT",
            f"rooms/{quote(room_id, safe='')}/send/m.room.message/{txn_id}",
            json={"msgtype": "m.text", "body": text},
        )
        event_id = data.get("event_id")
        if not isinstance(event_id, str):
            raise ChatClientError("Unexpected send response: missing event_id")
        return event_id

    def join_room(self, room_id: str) -> None:
        self._request("POST", f"join/{quote(room_id, safe='')}", json={})
        logger.info("Joined room", extra={"user_id": self._user_id, "room": room_id})

    def on_room_invite(self, callback: InviteCallback) -> None:
        self._invite_callbacks.append(callback)

    def sync(self) -> None:
        """Long-poll the homeserver until :meth:`close` is called.

        Every room that shows up under ``rooms.invite`` is handed to the invite
        callbacks. Request errors end the loop by propagating.
        """

        since: str | None = None
        while not self._stop.is_set():
            params: dict[str, str] = {"timeout": str(self._sync_timeout_ms)}
            if since is not None:
                params["since"] = since

            # The long-poll itself must outlive the server-side timeout.
            timeout = None
            if self._request_timeout is not None:
                timeout = self._request_timeout + self._sync_timeout_ms / 1000
            data = self._request("GET", "sync", params=params, timeout=timeout)

            next_batch = data.get("next_batch")
            if isinstance(next_batch, str):
                since = next_batch

            rooms = data.get("rooms")
            invites = rooms.get("invite") if isinstance(rooms, dict) else None
            if isinstance(invites, dict):
                for room_id in invites:
                    if self._stop.is_set():
                        break
                    self._dispatch_invite(room_id)

    def _dispatch_invite(self, room_id: str) -> None:
        logger.debug("Received room invite", extra={"user_id": self._user_id, "room": room_id})
        for callback in list(self._invite_callbacks):
            if self._stop.is_set():
                return
            callback(room_id)

    def close(self) -> None:
        """Stop :meth:`sync` and release the HTTP session. Closing twice is a no-op."""

        with self._close_lock:
            if self._stop.is_set():
                return
            self._stop.set()
        self._session.close()
