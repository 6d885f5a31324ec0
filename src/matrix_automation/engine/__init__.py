"""Engine components.

- Settings loaded from .env
- Structured logging
- SQLite storage with migrations
- Trigger, workflow and bot registries
- The start-up state machine and the process entrypoint
"""
