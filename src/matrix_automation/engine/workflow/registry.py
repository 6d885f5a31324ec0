from __future__ import annotations

import logging
import threading

from .triggers import PollTrigger, WebhookTrigger

logger = logging.getLogger(__name__)


class DuplicateRegistrationError(ValueError):
    pass


class TriggerNotFound(LookupError):
    pass


class TriggerRegistry:
    """Webhook triggers keyed by URL suffix, poll triggers keyed by name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._webhooks: dict[str, WebhookTrigger] = {}
        self._polls: dict[str, PollTrigger] = {}

    def register_webhook(self, trigger: WebhookTrigger) -> None:
        with self._lock:
            if trigger.url_suffix in self._webhooks:
                raise DuplicateRegistrationError(
                    f"Webhook url suffix {trigger.url_suffix!r} is already registered"
                )
            self._webhooks[trigger.url_suffix] = trigger
        logger.info(
            "Registered webhook trigger",
            extra={"trigger": trigger.name, "url_suffix": trigger.url_suffix},
        )

    def register_poll(self, trigger: PollTrigger) -> None:
        with self._lock:
            if trigger.name in self._polls:
                raise DuplicateRegistrationError(
                    f"Poll trigger {trigger.name!r} is already registered"
                )
            self._polls[trigger.name] = trigger
        logger.info(
            "Registered poll trigger",
            extra={"trigger": trigger.name, "polling_interval": trigger.polling_interval},
        )

    def get_webhook(self, url_suffix: str) -> WebhookTrigger:
        with self._lock:
            trigger = self._webhooks.get(url_suffix)
        if trigger is None:
            raise TriggerNotFound(f"No webhook trigger registered for {url_suffix!r}")
        return trigger

    def webhook_triggers(self) -> list[WebhookTrigger]:
        with self._lock:
            return list(self._webhooks.values())

    def poll_triggers(self) -> list[PollTrigger]:
        with self._lock:
            return list(self._polls.values())
