"""Matrix Automation.

A trigger-driven automation engine:
- webhooks and polls trigger named workflows
- workflows run ordered steps (post to Matrix, send email, print to stdout)
- bots are Matrix accounts the engine can speak as
"""

__version__ = "0.1.0"

from matrix_automation.engine.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
