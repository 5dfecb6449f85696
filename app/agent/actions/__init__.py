"""
Agent Actions
=============

Dispatching parsed actions to the device.

This package contains:
    - handler: ActionHandler and the ActionResult reported per round
"""

from app.agent.actions.handler import ActionHandler, ActionResult

__all__ = [
    "ActionHandler",
    "ActionResult",
]
