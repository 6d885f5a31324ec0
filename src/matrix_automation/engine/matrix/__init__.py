"""Chat-protocol (Matrix) client sessions."""

from matrix_automation.engine.matrix.client import (
    ChatClient,
    ChatClientError,
    MatrixClient,
    room_homeserver_domain,
)

__all__ = ["ChatClient", "ChatClientError", "MatrixClient", "room_homeserver_domain"]
