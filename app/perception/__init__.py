"""
Perception Module
=================

Turning the accessibility tree and a screenshot into labeled elements.

This package contains:
    - element_extractor: Interactive element extraction and dedup
    - annotator: Numeric labels drawn on the screenshot
"""

from app.perception.annotator import AnnotatedScreen, ScreenAnnotator
from app.perception.element_extractor import (
    ElementKind,
    UIElement,
    collect_elements,
    extract_elements,
    merge_elements,
)

__all__ = [
    "AnnotatedScreen",
    "ScreenAnnotator",
    "ElementKind",
    "UIElement",
    "collect_elements",
    "extract_elements",
    "merge_elements",
]
