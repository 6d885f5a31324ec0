"""FastAPI webhook listener for matrix-automation.

Design intent:
- Keep workflow logic in `matrix_automation.engine.*`
- Keep HTTP concerns (routing, request decoding, status codes) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from matrix_automation.server.app import create_app
