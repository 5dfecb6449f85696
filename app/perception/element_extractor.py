"""
Element Extractor
=================

Turns the accessibility tree into the numbered action space shown to the
model.

Two depth-first passes collect clickable and focusable nodes that are
visible and enabled. All clickable elements are kept; a focusable element is
kept only when its center is farther than ``min_distance`` from every
clickable element, so a focusable container wrapping a button does not get a
second label.

Usage:
    from app.perception.element_extractor import collect_elements

    root = await ui_tree.root()
    elements = collect_elements(root, min_distance=30)
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from app.device.interfaces import Bounds, UiNode
from app.utils.logger import get_logger

logger = get_logger(__name__)

# Content descriptions at least this long are left out of the id
_MAX_DESC_IN_ID = 20


class ElementKind(Enum):
    """Why an element was selected."""

    CLICKABLE = "clickable"
    FOCUSABLE = "focusable"


@dataclass(frozen=True)
class UIElement:
    """
    An interactive element offered to the model.

    Attributes:
        id: Content-derived identifier, unique within one round.
        bbox: On-screen bounds.
        kind: Clickable or focusable.
        class_name: Android widget class.
        text: Visible text.
        content_description: Accessibility description.
        resource_id: Raw resource id.
    """

    id: str
    bbox: Bounds
    kind: ElementKind
    class_name: str = ""
    text: str = ""
    content_description: str = ""
    resource_id: str = ""

    @property
    def center(self) -> tuple[int, int]:
        return self.bbox.center

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "bbox": [self.bbox.left, self.bbox.top, self.bbox.right, self.bbox.bottom],
            "kind": self.kind.value,
            "class_name": self.class_name,
            "text": self.text,
            "content_description": self.content_description,
            "resource_id": self.resource_id,
        }


NodePredicate = Callable[[UiNode], bool]


def is_clickable(node: UiNode) -> bool:
    return node.is_clickable


def is_focusable(node: UiNode) -> bool:
    return node.is_focusable


def element_id(node: UiNode) -> str:
    """
    Build the id of a node.

    Uses the resource id with ``:`` → ``.`` and ``/`` → ``_``; without one,
    ``{class}_{width}_{height}``. A short content description is appended so
    otherwise identical widgets stay distinguishable.

    Args:
        node: Accessibility node.

    Returns:
        The element id.
    """
    bounds = node.bounds
    resource_id = node.resource_id or ""
    if resource_id:
        elem_id = resource_id.replace(":", ".").replace("/", "_")
    else:
        elem_id = f"{node.class_name}_{bounds.width}_{bounds.height}"

    desc = node.content_description or ""
    if desc and len(desc) < _MAX_DESC_IN_ID:
        cleaned = desc.replace("/", "_").replace(" ", "").replace(":", "_")
        elem_id += f"_{cleaned}"

    return elem_id


def extract_elements(
    root: Optional[UiNode],
    predicate: NodePredicate,
    kind: ElementKind,
    useless_ids: Iterable[str] = (),
) -> list[UIElement]:
    """
    Collect qualifying nodes in depth-first pre-order.

    A node qualifies when ``predicate(node)`` holds and it is visible and
    enabled. Zero-area bounds are kept. Errors raised while reading a single
    node are logged and skipped; the rest of the tree is still visited.

    Args:
        root: Root node, or None.
        predicate: Selection predicate (clickable / focusable).
        kind: Kind recorded on the produced elements.
        useless_ids: Element ids to leave out.

    Returns:
        Elements in traversal order.
    """
    if root is None:
        return []

    skip = set(useless_ids)
    elements: list[UIElement] = []
    stack: list[UiNode] = [root]

    while stack:
        node = stack.pop()
        try:
            if predicate(node) and node.is_visible_to_user and node.is_enabled:
                elem_id = element_id(node)
                if elem_id not in skip:
                    elements.append(
                        UIElement(
                            id=elem_id,
                            bbox=node.bounds,
                            kind=kind,
                            class_name=node.class_name or "",
                            text=node.text or "",
                            content_description=node.content_description or "",
                            resource_id=node.resource_id or "",
                        )
                    )
        except Exception as e:
            logger.warning("Skipping unreadable node", kind=kind.value, error=str(e))

        try:
            children = list(node.children)
        except Exception as e:
            logger.warning("Failed to read node children", error=str(e))
            continue
        # Reverse so the first child is popped first (pre-order)
        stack.extend(reversed(children))

    return elements


def center_distance(a: UIElement, b: UIElement) -> float:
    """Euclidean distance between two element centers."""
    ax, ay = a.center
    bx, by = b.center
    return math.hypot(ax - bx, ay - by)


def merge_elements(
    clickable: list[UIElement],
    focusable: list[UIElement],
    min_distance: float,
) -> list[UIElement]:
    """
    Merge the two passes.

    Args:
        clickable: Clickable elements, all kept.
        focusable: Focusable candidates.
        min_distance: Minimum center distance to every clickable element.

    Returns:
        Clickable elements followed by the surviving focusable ones.
    """
    merged = list(clickable)
    for candidate in focusable:
        if all(center_distance(candidate, c) > min_distance for c in clickable):
            merged.append(candidate)
    return merged


def collect_elements(
    root: Optional[UiNode],
    min_distance: float = 30.0,
    useless_ids: Iterable[str] = (),
) -> list[UIElement]:
    """
    Run both passes and merge them.

    Args:
        root: Root node of the active window.
        min_distance: Dedup radius in pixels.
        useless_ids: Element ids to leave out.

    Returns:
        The round's element list (0-based here, 1-based on screen).
    """
    useless_ids = tuple(useless_ids)
    clickable = extract_elements(root, is_clickable, ElementKind.CLICKABLE, useless_ids)
    focusable = extract_elements(root, is_focusable, ElementKind.FOCUSABLE, useless_ids)
    merged = merge_elements(clickable, focusable, min_distance)

    logger.debug(
        "Elements collected",
        clickable=len(clickable),
        focusable=len(focusable),
        merged=len(merged),
    )
    return merged
