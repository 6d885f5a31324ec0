"""Live chat sessions for every bot the engine can act as.

The registry is written concurrently while bots wake up, so every access to the
username -> client map goes through a lock. Logins run outside the lock; a
username is reserved first so a concurrent duplicate is still rejected.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from matrix_automation.engine.matrix.client import ChatClient, room_homeserver_domain

logger = logging.getLogger(__name__)

ClientFactory = Callable[["Bot"], ChatClient]


@dataclass(frozen=True, slots=True)
class Bot:
    """A chat identity the engine can act as."""

    id: int
    username: str
    password: str
    is_primary: bool = False


class BotAlreadyKnownError(ValueError):
    pass


class BotNotFoundError(LookupError):
    pass


class PrimaryBotNotSetError(LookupError):
    pass


class WakeUpAbandonedError(RuntimeError):
    """A login finished after its wake-up batch had already given up on it."""


class WakeUpError(RuntimeError):
    """One or more bots could not be brought online."""

    def __init__(self, failed_ids: list[int]) -> None:
        super().__init__(f"One or more bots could not wake up. ids: {failed_ids}")
        self.failed_ids = failed_ids


class BotRegistry:
    def __init__(self, homeserver_domain: str) -> None:
        self._homeserver_domain = homeserver_domain
        self._lock = threading.Lock()
        self._clients: dict[str, ChatClient] = {}
        self._pending: set[str] = set()
        self._primary_username: str | None = None

    def append(
        self,
        bot: Bot,
        client: ChatClient,
        *,
        abandoned: threading.Event | None = None,
    ) -> None:
        """Log ``bot`` in through ``client`` and register the session.

        ``abandoned`` is checked under the lock right before registering; once it
        is set the session is closed instead of registered.

        Raises:
            BotAlreadyKnownError: The username is registered (or being registered).
            WakeUpAbandonedError: ``abandoned`` was set before the login finished.
            Exception: Whatever the client's login raises; nothing is registered.
        """

        with self._lock:
            if bot.username in self._clients or bot.username in self._pending:
                raise BotAlreadyKnownError(f"Bot {bot.username} is already known")
            self._pending.add(bot.username)

        try:
            client.login(bot.username, bot.password)
            client.on_room_invite(self._invite_handler(bot, client))
        except Exception:
            with self._lock:
                self._pending.discard(bot.username)
            raise

        with self._lock:
            self._pending.discard(bot.username)
            too_late = abandoned is not None and abandoned.is_set()
            if not too_late:
                self._clients[bot.username] = client
                if bot.is_primary:
                    self._primary_username = bot.username

        if too_late:
            logger.warning(
                "Bot woke up after the deadline; discarding session",
                extra={"bot_id": bot.id, "username": bot.username},
            )
            client.close()
            raise WakeUpAbandonedError(f"Bot {bot.username} woke up after the deadline")

        logger.info(
            "Bot registered",
            extra={"bot_id": bot.id, "username": bot.username, "primary": bot.is_primary},
        )

    def _invite_handler(self, bot: Bot, client: ChatClient) -> Callable[[str], None]:
        def on_invite(room_id: str) -> None:
            # Only accept invitations to rooms on our own homeserver.
            domain = room_homeserver_domain(room_id)
            if domain != self._homeserver_domain:
                logger.info(
                    "Ignoring invitation to room on another homeserver",
                    extra={"username": bot.username, "room": room_id, "domain": domain},
                )
                return
            try:
                client.join_room(room_id)
            except Exception:
                logger.exception(
                    "Failed to join room", extra={"username": bot.username, "room": room_id}
                )

        return on_invite

    def get_primary_client(self) -> ChatClient:
        with self._lock:
            username = self._primary_username
            client = self._clients.get(username) if username is not None else None
        if client is None:
            raise PrimaryBotNotSetError("No primary matrix client was found")
        return client

    def get_client(self, identifier: str) -> ChatClient:
        with self._lock:
            client = self._clients.get(identifier)
        if client is None:
            raise BotNotFoundError(
                f"No matrix client was found for bot with identifier: {identifier}"
            )
        return client

    def clients(self) -> list[tuple[str, ChatClient]]:
        with self._lock:
            return list(self._clients.items())

    def wake_up_all(
        self,
        bots: Iterable[Bot],
        client_factory: ClientFactory,
        *,
        timeout: float | None = None,
    ) -> None:
        """Bring every bot online concurrently, one thread per bot.

        All threads are joined before returning. Failures do not stop the other
        wake-ups; they are collected and reported together. With a ``timeout``
        (seconds, for the whole batch) bots still logging in when it expires count
        as failed, and their sessions are closed if the login completes later.

        Raises:
            WakeUpError: Listing the ids of every bot that failed.
        """

        failed: list[int] = []
        failed_lock = threading.Lock()
        created: dict[int, ChatClient] = {}

        def wake_up(index: int, bot: Bot, abandoned: threading.Event) -> None:
            try:
                created[index] = client = client_factory(bot)
                self.append(bot, client, abandoned=abandoned)
            except Exception:
                logger.exception(
                    "Bot failed to wake up", extra={"bot_id": bot.id, "username": bot.username}
                )
                with failed_lock:
                    failed.append(bot.id)

        threads: list[tuple[Bot, threading.Thread, threading.Event]] = []
        for index, bot in enumerate(bots):
            abandoned = threading.Event()
            thread = threading.Thread(
                target=wake_up,
                args=(index, bot, abandoned),
                name=f"wake-up-{bot.username}",
                daemon=True,
            )
            thread.start()
            threads.append((bot, thread, abandoned))

        deadline = None if timeout is None else time.monotonic() + timeout
        for index, (bot, thread, abandoned) in enumerate(threads):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
            if thread.is_alive():
                # Same lock as the commit in append: either it registered already or it never will.
                with self._lock:
                    abandoned.set()
                    client = created.get(index)
                    woke_up = client is not None and self._clients.get(bot.username) is client
                if woke_up:
                    continue
                logger.error(
                    "Bot did not wake up in time",
                    extra={"bot_id": bot.id, "username": bot.username, "timeout": timeout},
                )
                with failed_lock:
                    failed.append(bot.id)

        if failed:
            raise WakeUpError(sorted(set(failed)))

        logger.info("All bots woke up", extra={"count": len(threads)})
