"""
Device Console
==============

Manual inspection and control of the device outside any task.

Shows what the agent would see (display geometry, the raw hierarchy, the
labeled elements and annotated screenshot) and sends single gestures, so a
device setup can be checked before a task runs.

Usage:
    from app.agent.console import DeviceConsole

    console = DeviceConsole.from_settings(settings)
    await console.connect()
    screen = await console.inspect()
    print(screen.annotated.path, len(screen.elements))
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from app.config import Settings
from app.device.adb import AdbBridge, AdbGestureSink, AdbUiTree, DisplayInfo
from app.device.interfaces import GestureResult
from app.perception.annotator import AnnotatedScreen, ScreenAnnotator
from app.perception.element_extractor import UIElement, collect_elements
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class InspectedScreen:
    """
    The current screen as the model would receive it.

    Attributes:
        elements: Labeled elements; label ``n`` is ``elements[n - 1]``.
        annotated: The labeled screenshot.
    """

    elements: list[UIElement]
    annotated: AnnotatedScreen


class DeviceConsole:
    """
    One-off device operations over ADB.

    Gestures go through the same sink the task loop uses.
    """

    def __init__(
        self,
        bridge: AdbBridge,
        annotator: ScreenAnnotator,
        min_distance: float = 30.0,
        useless_ids: Iterable[str] = (),
    ) -> None:
        self.bridge = bridge
        self.annotator = annotator
        self.min_distance = min_distance
        self.useless_ids = frozenset(useless_ids)

        self.ui_tree = AdbUiTree(bridge)
        self.gestures = AdbGestureSink(bridge)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeviceConsole":
        bridge = AdbBridge(
            serial=settings.device.adb_device_serial or None,
            adb_path=settings.device.adb_path or None,
        )
        return cls(
            bridge,
            ScreenAnnotator(settings.agent.screenshot_dir, dark_mode=settings.agent.dark_mode_annotation),
            min_distance=settings.agent.min_element_distance,
            useless_ids=settings.agent.get_useless_ids(),
        )

    @property
    def is_connected(self) -> bool:
        return self.bridge.connected

    async def connect(self) -> bool:
        if self.bridge.connected:
            return True
        if not self.bridge.available:
            return False
        return await self.bridge.connect()

    async def display_info(self) -> DisplayInfo:
        return await self.bridge.read_display_info()

    async def ui_dump(self) -> Optional[str]:
        return await self.ui_tree.dump_xml()

    async def elements(self) -> list[UIElement]:
        """Extract the labeled elements of the current screen."""
        root = await self.ui_tree.root()
        if root is None:
            return []
        return collect_elements(
            root,
            min_distance=self.min_distance,
            useless_ids=self.useless_ids,
        )

    async def inspect(self) -> InspectedScreen:
        """
        Label the current screen and save it as ``inspect_<time>_labeled.png``.

        Raises:
            RuntimeError: If the screenshot could not be taken.
        """
        elements = await self.elements()
        frame_png = await self.bridge.screenshot()
        annotated = await asyncio.to_thread(
            self.annotator.annotate,
            frame_png,
            elements,
            f"inspect_{time.strftime('%Y%m%d_%H%M%S')}",
        )
        logger.info("Screen inspected", elements=len(elements), path=str(annotated.path))
        return InspectedScreen(elements=elements, annotated=annotated)

    async def tap(self, x: int, y: int) -> GestureResult:
        return await self.gestures.tap(x, y)

    async def long_press(self, x: int, y: int, duration_ms: int = 1000) -> GestureResult:
        return await self.gestures.long_press(x, y, duration_ms)

    async def swipe(
        self,
        start_x: int,
        start_y: int,
        end_x: int,
        end_y: int,
        duration_ms: int = 500,
    ) -> GestureResult:
        return await self.gestures.swipe(start_x, start_y, end_x, end_y, duration_ms)

    async def set_text(self, value: str) -> GestureResult:
        return await self.gestures.set_text(value)

    async def back(self) -> GestureResult:
        return await self.gestures.back()
