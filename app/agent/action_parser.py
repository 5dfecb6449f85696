"""
Action Parser
=============

Parse the model's Observation / Thought / Action / Summary reply into a
typed action bound to the round's element list.

Action grammar (first match wins):
    - FINISH anywhere in the Action section (any casing)
    - tap(N)
    - text("...")
    - long_press(N)
    - swipe(N, "direction", "distance")

Element numbers are 1-based and must lie within the element list; anything
else yields ``Error("cannot parse action")``.

Usage:
    from app.agent.action_parser import parse_action

    action = parse_action(reply_text, elements)
    if isinstance(action, Tap):
        x, y = action.point
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Union

from app.perception.element_extractor import UIElement
from app.utils.logger import get_logger

logger = get_logger(__name__)

PARSE_ERROR = "cannot parse action"

_TAP_RE = re.compile(r"tap\s*\(\s*(\d+)\s*\)")
_TEXT_RE = re.compile(r'text\s*\(\s*"([^"]+)"\s*\)')
_LONG_PRESS_RE = re.compile(r"long_press\s*\(\s*(\d+)\s*\)")
_SWIPE_RE = re.compile(r'swipe\(\s*(\d+)\s*,\s*"([^"]+)"\s*,\s*"([^"]+)"\s*\)')


class SwipeDirection(Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class SwipeDistance(Enum):
    """Swipe length keyword and its magnitude in pixels."""

    SHORT = 100
    MEDIUM = 300
    LONG = 500


DEFAULT_SWIPE_DISTANCE = SwipeDistance.MEDIUM


@dataclass(frozen=True)
class Tap:
    element: int
    point: tuple[int, int] = (0, 0)


@dataclass(frozen=True)
class LongPress:
    element: int
    point: tuple[int, int] = (0, 0)


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Swipe:
    """
    Swipe anchored at an element's center.

    ``direction`` is None for an unrecognised direction token, in which case
    ``end`` equals ``start``.
    """

    element: int
    direction: Optional[SwipeDirection]
    distance: SwipeDistance
    start: tuple[int, int] = (0, 0)
    end: tuple[int, int] = (0, 0)


@dataclass(frozen=True)
class Finish:
    pass


@dataclass(frozen=True)
class Cancelled:
    pass


@dataclass(frozen=True)
class Error:
    reason: str = PARSE_ERROR


Action = Union[Tap, LongPress, Text, Swipe, Finish, Cancelled, Error]


@dataclass
class DecisionReply:
    """
    The four sections of a model reply.

    Attributes:
        observation: What the model saw.
        thought: Its reasoning.
        action: The raw function call or FINISH.
        summary: Running summary carried into the next round.
        raw: The full reply.
    """

    observation: str = ""
    thought: str = ""
    action: str = ""
    summary: str = ""
    raw: str = field(default="", repr=False)


def extract_section(text: str, name: str) -> str:
    """
    Extract ``Name: ...`` up to the next ``Capitalized:`` line or the end.

    Args:
        text: Full model reply.
        name: Section name, e.g. "Action".

    Returns:
        The stripped section body, or "" when the section is missing.
    """
    pattern = rf"{re.escape(name)}:\s*(.+?)(?=\n[A-Z][a-z]+:|$)"
    match = re.search(pattern, text or "", re.DOTALL)
    return match.group(1).strip() if match else ""


def parse_reply(text: str) -> DecisionReply:
    """Split a model reply into its sections."""
    return DecisionReply(
        observation=extract_section(text, "Observation"),
        thought=extract_section(text, "Thought"),
        action=extract_section(text, "Action"),
        summary=extract_section(text, "Summary"),
        raw=text or "",
    )


def _element_index(raw: str, elements: Sequence[UIElement]) -> Optional[int]:
    """Return the 1-based index if it addresses an element, else None."""
    try:
        index = int(raw)
    except (TypeError, ValueError):
        return None
    if 1 <= index <= len(elements):
        return index
    return None


def swipe_end(
    start: tuple[int, int],
    direction: Optional[SwipeDirection],
    distance: SwipeDistance,
) -> tuple[int, int]:
    """
    Offset ``start`` along one axis.

    Args:
        start: Anchor point.
        direction: Swipe direction, None for no offset.
        distance: Swipe magnitude.

    Returns:
        End point of the swipe.
    """
    x, y = start
    d = distance.value
    if direction == SwipeDirection.UP:
        return x, y - d
    if direction == SwipeDirection.DOWN:
        return x, y + d
    if direction == SwipeDirection.LEFT:
        return x - d, y
    if direction == SwipeDirection.RIGHT:
        return x + d, y
    return x, y


def _parse_direction(token: str) -> Optional[SwipeDirection]:
    try:
        return SwipeDirection(token.strip().lower())
    except ValueError:
        logger.warning("Unknown swipe direction, swipe has no offset", direction=token)
        return None


def _parse_distance(token: str) -> SwipeDistance:
    try:
        return SwipeDistance[token.strip().upper()]
    except KeyError:
        logger.warning("Unknown swipe distance, using medium", distance=token)
        return DEFAULT_SWIPE_DISTANCE


def parse_action_text(action_text: str, elements: Sequence[UIElement]) -> Action:
    """
    Parse the body of the Action section.

    Args:
        action_text: Action section content.
        elements: The round's element list.

    Returns:
        The typed action; Error when nothing matches.
    """
    if "FINISH" in action_text.upper():
        return Finish()

    if "tap(" in action_text:
        match = _TAP_RE.search(action_text)
        if match:
            index = _element_index(match.group(1), elements)
            if index is not None:
                return Tap(element=index, point=elements[index - 1].center)

    elif "text(" in action_text:
        match = _TEXT_RE.search(action_text)
        if match:
            return Text(value=match.group(1))

    elif "long_press(" in action_text:
        match = _LONG_PRESS_RE.search(action_text)
        if match:
            index = _element_index(match.group(1), elements)
            if index is not None:
                return LongPress(element=index, point=elements[index - 1].center)

    elif "swipe(" in action_text:
        match = _SWIPE_RE.search(action_text)
        if match:
            index = _element_index(match.group(1), elements)
            if index is not None:
                direction = _parse_direction(match.group(2))
                distance = _parse_distance(match.group(3))
                start = elements[index - 1].center
                return Swipe(
                    element=index,
                    direction=direction,
                    distance=distance,
                    start=start,
                    end=swipe_end(start, direction, distance),
                )

    logger.warning("Could not parse action", action=action_text[:120])
    return Error(PARSE_ERROR)


def parse_action(
    text: str,
    elements: Sequence[UIElement],
    cancelled: bool = False,
) -> Action:
    """
    Parse a full model reply.

    Args:
        text: Raw model reply.
        elements: The round's element list.
        cancelled: Task cancellation flag; wins over anything in the text.

    Returns:
        The typed action.
    """
    if cancelled:
        return Cancelled()
    return parse_action_text(extract_section(text, "Action"), elements)


def format_action_for_log(action: Action) -> str:
    """Short human-readable form of an action."""
    if isinstance(action, Tap):
        return f"tap({action.element}) at {action.point}"
    if isinstance(action, LongPress):
        return f"long_press({action.element}) at {action.point}"
    if isinstance(action, Text):
        preview = action.value if len(action.value) <= 30 else action.value[:30] + "..."
        return f'text("{preview}")'
    if isinstance(action, Swipe):
        direction = action.direction.value if action.direction else "?"
        return (
            f"swipe({action.element}, {direction}, {action.distance.name.lower()}) "
            f"{action.start} -> {action.end}"
        )
    if isinstance(action, Finish):
        return "FINISH"
    if isinstance(action, Cancelled):
        return "CANCELLED"
    return f"ERROR: {action.reason}"
