"""Bot identities and their live chat sessions."""

from matrix_automation.engine.bots.registry import (
    Bot,
    BotAlreadyKnownError,
    BotNotFoundError,
    BotRegistry,
    PrimaryBotNotSetError,
    WakeUpAbandonedError,
    WakeUpError,
)

__all__ = [
    "Bot",
    "BotAlreadyKnownError",
    "BotNotFoundError",
    "BotRegistry",
    "PrimaryBotNotSetError",
    "WakeUpAbandonedError",
    "WakeUpError",
]
