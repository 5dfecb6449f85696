"""
Action Handler
==============

Dispatches parsed actions to the GestureSink and reports what happened.

A gesture the platform cancels is logged as a warning and does not fail the
round. Terminal actions (finish, cancelled, error) are not dispatched.

Usage:
    from app.agent.actions import ActionHandler

    handler = ActionHandler(gesture_sink)
    result = await handler.execute(action, round_index=3)
"""

from dataclasses import dataclass
from typing import Optional

from app.agent.action_parser import (
    Action,
    Cancelled,
    Error,
    Finish,
    LongPress,
    Swipe,
    Tap,
    Text,
    format_action_for_log,
)
from app.device.interfaces import GestureResult, GestureSink
from app.utils.logger import get_logger

logger = get_logger(__name__)

LONG_PRESS_DURATION_MS = 1000
SWIPE_DURATION_MS = 500


@dataclass
class ActionResult:
    """
    Outcome of one round's action, reported to progress callbacks.

    Attributes:
        round_index: 1-based round number.
        action: The parsed action.
        description: Human-readable form of the action.
        success: The action was dispatched (or is a clean terminal action).
        dispatched: A gesture or text injection was attempted.
        gesture_cancelled: The platform cancelled the gesture.
        error: Error message, if any.
        thought: Thought section of the reply.
        summary: Summary section of the reply.
        duration_ms: Dispatch duration.
    """

    round_index: int
    action: Action
    description: str
    success: bool
    dispatched: bool = False
    gesture_cancelled: bool = False
    error: Optional[str] = None
    thought: str = ""
    summary: str = ""
    duration_ms: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "round": self.round_index,
            "action": self.description,
            "success": self.success,
            "dispatched": self.dispatched,
            "gesture_cancelled": self.gesture_cancelled,
            "error": self.error,
            "thought": self.thought,
            "summary": self.summary,
            "duration_ms": self.duration_ms,
        }


class ActionHandler:
    """Routes typed actions to the gesture sink."""

    def __init__(self, gesture_sink: GestureSink) -> None:
        self.gesture_sink = gesture_sink

    async def _dispatch(self, action: Action) -> Optional[GestureResult]:
        sink = self.gesture_sink
        if isinstance(action, Tap):
            return await sink.tap(*action.point)
        if isinstance(action, LongPress):
            return await sink.long_press(*action.point, duration_ms=LONG_PRESS_DURATION_MS)
        if isinstance(action, Swipe):
            return await sink.swipe(*action.start, *action.end, duration_ms=SWIPE_DURATION_MS)
        if isinstance(action, Text):
            return await sink.set_text(action.value)
        return None

    async def execute(
        self,
        action: Action,
        round_index: int = 0,
        thought: str = "",
        summary: str = "",
    ) -> ActionResult:
        """
        Execute an action.

        Args:
            action: Parsed action.
            round_index: Round the action belongs to.
            thought: Thought section, echoed in the result.
            summary: Summary section, echoed in the result.

        Returns:
            ActionResult describing the dispatch.
        """
        description = format_action_for_log(action)
        result = ActionResult(
            round_index=round_index,
            action=action,
            description=description,
            success=isinstance(action, Finish),
            thought=thought,
            summary=summary,
        )

        if isinstance(action, (Finish, Cancelled, Error)):
            if isinstance(action, Error):
                result.error = action.reason
            return result

        logger.info("Executing action", round=round_index, action=description)
        result.dispatched = True
        try:
            gesture = await self._dispatch(action)
        except Exception as e:
            logger.error("Action dispatch failed", action=description, error=str(e))
            result.error = str(e)
            return result

        if gesture is None:
            result.error = f"Unsupported action: {type(action).__name__}"
            return result

        result.duration_ms = gesture.duration_ms
        if gesture.cancelled:
            logger.warning("Gesture cancelled by the platform", action=description)
            result.gesture_cancelled = True
            result.success = True
        elif gesture.completed:
            result.success = True
        else:
            logger.warning("Gesture not completed", action=description, error=gesture.error)
            result.error = gesture.error or "Gesture not completed"

        return result
