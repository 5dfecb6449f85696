"""
ADB Device Backend
==================

Device collaborators for a local Android emulator or USB device via ADB.

ADB (Android Debug Bridge) ships with the Android SDK platform-tools and
gives us everything the agent needs:
- Screenshots (``exec-out screencap -p``)
- The accessibility hierarchy (``uiautomator dump``)
- Tap, swipe and text input (``input``)

Components:
    - AdbBridge: locates adb, runs commands, picks the device
    - AdbUiTree: UiTree over uiautomator XML dumps
    - AdbGestureSink: GestureSink over ``adb shell input``
    - AdbCaptureSession: CaptureSession fed by a background screencap loop

Prerequisites:
    1. Android SDK installed with platform-tools (adb)
    2. Android Emulator running OR physical device connected via USB
    3. ADB available in PATH or ANDROID_HOME set

Usage:
    from app.device.adb import AdbBridge, AdbCaptureSession, AdbGestureSink, AdbUiTree

    bridge = AdbBridge()
    await bridge.connect()
    sink = AdbGestureSink(bridge)
    await sink.tap(500, 300)
"""

import asyncio
import io
import os
import re
import shutil
import subprocess
import time
import xml.etree.ElementTree as ET
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from PIL import Image

from app.device.interfaces import (
    Bounds,
    CaptureSession,
    GestureResult,
    GestureSink,
    RawFrame,
    UiTree,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)

_BOUNDS_PATTERN = re.compile(r"\[(-?\d+),(-?\d+)\]")

# Device-side path for uiautomator dumps
_UI_DUMP_PATH = "/sdcard/window_dump.xml"

# Key events used to clear a focused field when select-all is unsupported
_CLEAR_DELETE_COUNT = 64

# Characters `adb shell input text` needs escaped
_TEXT_ESCAPES = {
    " ": "%s",
    "'": "\\'",
    '"': '\\"',
    "&": "\\&",
    "<": "\\<",
    ">": "\\>",
    "|": "\\|",
    ";": "\\;",
    "(": "\\(",
    ")": "\\)",
    "$": "\\$",
    "`": "\\`",
}

# Android's baseline density (mdpi)
BASELINE_DPI = 160


@dataclass
class DisplayInfo:
    """
    Screen geometry of a device.

    Attributes:
        serial: Device serial.
        physical_size: Panel size in pixels.
        override_size: Size set with ``wm size``, if any.
        physical_dpi: Panel density.
        override_dpi: Density set with ``wm density``, if any.
    """

    serial: Optional[str] = None
    physical_size: tuple[int, int] = (0, 0)
    override_size: Optional[tuple[int, int]] = None
    physical_dpi: int = 0
    override_dpi: Optional[int] = None

    @property
    def size(self) -> tuple[int, int]:
        return self.override_size or self.physical_size

    @property
    def dpi(self) -> int:
        return self.override_dpi or self.physical_dpi

    @property
    def density(self) -> float:
        return self.dpi / BASELINE_DPI if self.dpi else 0.0

    def to_dict(self) -> dict:
        return {
            "serial": self.serial,
            "width": self.size[0],
            "height": self.size[1],
            "physical_width": self.physical_size[0],
            "physical_height": self.physical_size[1],
            "dpi": self.dpi,
            "density": self.density,
        }


class AdbBridge:
    """
    Runs ADB commands against one device.

    Uses subprocess in worker threads so the event loop never blocks.
    """

    def __init__(
        self,
        serial: Optional[str] = None,
        adb_path: Optional[str] = None,
    ) -> None:
        """
        Initialize the bridge.

        Args:
            serial: Device serial (from 'adb devices'). If None, the first
                available device is used.
            adb_path: Path to the adb executable. If None, searches PATH and
                ANDROID_HOME.
        """
        self.adb_path = adb_path or self._find_adb()
        self.serial: Optional[str] = serial
        self.connected = False
        self.screen_size: tuple[int, int] = (0, 0)

        if not self.adb_path:
            logger.warning(
                "ADB not found. Install Android SDK platform-tools "
                "and make sure 'adb' is in PATH or ANDROID_HOME is set."
            )

    @staticmethod
    def _find_adb() -> Optional[str]:
        """Find the adb executable."""
        adb_in_path = shutil.which("adb")
        if adb_in_path:
            return adb_in_path

        android_home = os.environ.get("ANDROID_HOME") or os.environ.get("ANDROID_SDK_ROOT")
        if android_home:
            for name in ("adb", "adb.exe"):
                candidate = Path(android_home) / "platform-tools" / name
                if candidate.exists():
                    return str(candidate)

        for path in (
            Path.home() / "Android" / "Sdk" / "platform-tools" / "adb",
            Path("/usr/local/android-sdk/platform-tools/adb"),
            Path("/opt/android-sdk/platform-tools/adb"),
        ):
            if path.exists():
                return str(path)

        return None

    @property
    def available(self) -> bool:
        return bool(self.adb_path)

    def _command(self, args: Sequence[str]) -> list[str]:
        if not self.adb_path:
            raise RuntimeError("ADB not found. Please install Android SDK platform-tools.")
        cmd = [self.adb_path]
        if self.serial:
            cmd.extend(["-s", self.serial])
        cmd.extend(args)
        return cmd

    async def run(self, *args: str, timeout: float = 30.0) -> subprocess.CompletedProcess:
        """
        Run an ADB command and capture text output.

        Raises:
            RuntimeError: If adb is missing or the command times out.
        """
        cmd = self._command(args)
        logger.debug("Running ADB command", cmd=" ".join(cmd))
        try:
            return await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                timeout=timeout,
                text=True,
            )
        except subprocess.TimeoutExpired as e:
            raise RuntimeError(f"ADB command timed out after {timeout}s") from e

    async def run_bytes(self, *args: str, timeout: float = 30.0) -> bytes:
        """Run an ADB command and return raw stdout (for screenshots)."""
        cmd = self._command(args)
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise RuntimeError(f"ADB command timed out after {timeout}s") from e
        if result.returncode != 0:
            raise RuntimeError(f"ADB command failed: {result.stderr!r}")
        return result.stdout

    async def connect(self) -> bool:
        """
        Pick the device and read its screen size.

        Returns:
            True if a matching device is online.
        """
        logger.info("Connecting to ADB device", serial=self.serial)
        try:
            result = await self.run("devices")
            if result.returncode != 0:
                logger.error("Failed to list devices", error=result.stderr)
                return False

            serials = []
            for line in result.stdout.strip().splitlines()[1:]:
                parts = line.split()
                if len(parts) >= 2 and parts[1] == "device":
                    serials.append(parts[0])

            if not serials:
                logger.error("No Android devices found. Start an emulator or connect a device.")
                return False

            if self.serial:
                if self.serial not in serials:
                    logger.error("Specified device not found", serial=self.serial, available=serials)
                    return False
            else:
                self.serial = serials[0]

            self.screen_size = await self._read_screen_size()
            self.connected = True
            logger.info(
                "Connected to ADB device",
                serial=self.serial,
                screen_size=f"{self.screen_size[0]}x{self.screen_size[1]}",
            )
            return True

        except Exception as e:
            logger.error("Failed to connect to ADB device", error=str(e))
            self.connected = False
            return False

    async def _read_screen_size(self) -> tuple[int, int]:
        result = await self.run("shell", "wm", "size")
        if result.returncode == 0:
            # "Physical size: 1080x2340", possibly followed by "Override size"
            matches = re.findall(r"(\d+)x(\d+)", result.stdout)
            if matches:
                width, height = matches[-1]
                return int(width), int(height)
        return 0, 0

    async def screenshot(self) -> bytes:
        """Capture the screen as PNG bytes."""
        return await self.run_bytes("exec-out", "screencap", "-p")

    async def read_display_info(self) -> DisplayInfo:
        """
        Read screen size and density.

        ``wm`` reports the physical value and, when one is set, an override
        that the device actually renders with.
        """
        info = DisplayInfo(serial=self.serial)

        size = await self.run("shell", "wm", "size")
        if size.returncode == 0:
            for kind, width, height in re.findall(r"(\w+) size: (\d+)x(\d+)", size.stdout):
                value = (int(width), int(height))
                if kind == "Physical":
                    info.physical_size = value
                elif kind == "Override":
                    info.override_size = value

        density = await self.run("shell", "wm", "density")
        if density.returncode == 0:
            for kind, dpi in re.findall(r"(\w+) density: (\d+)", density.stdout):
                if kind == "Physical":
                    info.physical_dpi = int(dpi)
                elif kind == "Override":
                    info.override_dpi = int(dpi)

        return info


# ----------------------------------------------------------------------
# Accessibility tree
# ----------------------------------------------------------------------


def parse_bounds(raw: str) -> Bounds:
    """Parse uiautomator bounds ``[x1,y1][x2,y2]``; malformed input yields an empty box."""
    matches = _BOUNDS_PATTERN.findall(raw or "")
    if len(matches) < 2:
        return Bounds(0, 0, 0, 0)
    (left, top), (right, bottom) = matches[0], matches[1]
    return Bounds(int(left), int(top), int(right), int(bottom))


def _flag(element: ET.Element, name: str, default: bool = False) -> bool:
    value = element.get(name)
    if value is None:
        return default
    return value == "true"


class XmlUiNode:
    """UiNode view over one element of a uiautomator dump."""

    def __init__(self, element: ET.Element) -> None:
        self._element = element
        self._children: Optional[list["XmlUiNode"]] = None
        self._bounds: Optional[Bounds] = None

    @property
    def children(self) -> list["XmlUiNode"]:
        if self._children is None:
            self._children = [XmlUiNode(child) for child in self._element.findall("node")]
        return self._children

    @property
    def bounds(self) -> Bounds:
        if self._bounds is None:
            self._bounds = parse_bounds(self._element.get("bounds", ""))
        return self._bounds

    @property
    def is_clickable(self) -> bool:
        return _flag(self._element, "clickable")

    @property
    def is_focusable(self) -> bool:
        return _flag(self._element, "focusable")

    @property
    def is_visible_to_user(self) -> bool:
        # Older dumps omit the attribute; everything dumped is on screen there
        return _flag(self._element, "visible-to-user", default=True)

    @property
    def is_enabled(self) -> bool:
        return _flag(self._element, "enabled", default=True)

    @property
    def class_name(self) -> str:
        return self._element.get("class", "")

    @property
    def text(self) -> str:
        return self._element.get("text", "")

    @property
    def content_description(self) -> str:
        return self._element.get("content-desc", "")

    @property
    def resource_id(self) -> str:
        return self._element.get("resource-id", "")


def parse_hierarchy(xml_content: str) -> Optional[XmlUiNode]:
    """
    Parse a uiautomator dump.

    Returns:
        Node wrapping the ``<hierarchy>`` element, or None if the XML is invalid.
    """
    # adb may prefix the XML with status lines
    start = xml_content.find("<?xml")
    if start < 0:
        start = xml_content.find("<hierarchy")
    if start < 0:
        return None
    try:
        return XmlUiNode(ET.fromstring(xml_content[start:]))
    except ET.ParseError as e:
        logger.error("Failed to parse UI XML", error=str(e))
        return None


class AdbUiTree(UiTree):
    """UiTree backed by ``uiautomator dump``."""

    def __init__(self, bridge: AdbBridge) -> None:
        self.bridge = bridge

    async def dump_xml(self) -> Optional[str]:
        """Return the raw uiautomator XML, or None when it could not be read."""
        if not self.bridge.connected:
            return None

        dump = await self.bridge.run("shell", "uiautomator", "dump", _UI_DUMP_PATH)
        if dump.returncode != 0:
            logger.warning("uiautomator dump failed", error=dump.stderr.strip())
            return None

        result = await self.bridge.run("shell", "cat", _UI_DUMP_PATH)
        if result.returncode != 0:
            logger.warning("Failed to read UI dump", error=result.stderr.strip())
            return None

        return result.stdout

    async def root(self) -> Optional[XmlUiNode]:
        xml_content = await self.dump_xml()
        if xml_content is None:
            return None
        return parse_hierarchy(xml_content)


# ----------------------------------------------------------------------
# Gestures
# ----------------------------------------------------------------------


def escape_input_text(text: str) -> str:
    """Escape text for ``adb shell input text``."""
    return "".join(_TEXT_ESCAPES.get(ch, ch) for ch in text)


class AdbGestureSink(GestureSink):
    """GestureSink over ``adb shell input``."""

    def __init__(self, bridge: AdbBridge) -> None:
        self.bridge = bridge

    @property
    def is_connected(self) -> bool:
        return self.bridge.connected

    async def _input(self, *args: str) -> GestureResult:
        if not self.is_connected:
            return GestureResult(completed=False, error="Device not connected")

        start_time = time.monotonic()
        try:
            result = await self.bridge.run("shell", "input", *args)
        except RuntimeError as e:
            return GestureResult(completed=False, error=str(e))

        duration_ms = int((time.monotonic() - start_time) * 1000)
        if result.returncode != 0:
            return GestureResult(
                completed=False,
                error=f"input {args[0]} failed: {result.stderr.strip()}",
                duration_ms=duration_ms,
            )
        return GestureResult(completed=True, duration_ms=duration_ms)

    async def tap(self, x: int, y: int) -> GestureResult:
        result = await self._input("tap", str(x), str(y))
        logger.debug("Tap performed", x=x, y=y, completed=result.completed)
        return result

    async def long_press(self, x: int, y: int, duration_ms: int = 1000) -> GestureResult:
        # A swipe that does not move is a long press
        result = await self._input("swipe", str(x), str(y), str(x), str(y), str(duration_ms))
        logger.debug("Long press performed", x=x, y=y, duration_ms=duration_ms)
        return result

    async def swipe(
        self,
        start_x: int,
        start_y: int,
        end_x: int,
        end_y: int,
        duration_ms: int = 500,
    ) -> GestureResult:
        result = await self._input(
            "swipe",
            str(start_x),
            str(start_y),
            str(end_x),
            str(end_y),
            str(duration_ms),
        )
        logger.debug("Swipe performed", start=(start_x, start_y), end=(end_x, end_y))
        return result

    async def back(self) -> GestureResult:
        """Press the system back key."""
        result = await self._input("keyevent", "KEYCODE_BACK")
        logger.debug("Back pressed", completed=result.completed)
        return result

    async def _clear_focused(self) -> GestureResult:
        # Select all + delete (Android 12+), else delete from the end
        result = await self._input("keycombination", "KEYCODE_CTRL_LEFT", "KEYCODE_A")
        if result.completed:
            return await self._input("keyevent", "KEYCODE_DEL")
        return await self._input(
            "keyevent",
            "KEYCODE_MOVE_END",
            *["KEYCODE_DEL"] * _CLEAR_DELETE_COUNT,
        )

    async def set_text(self, value: str) -> GestureResult:
        """
        Replace the content of the focused field.

        Args:
            value: New field content.
        """
        start_time = time.monotonic()
        cleared = await self._clear_focused()
        if not cleared.completed:
            return cleared

        if value:
            result = await self._input("text", escape_input_text(value))
            if not result.completed:
                return result

        logger.debug("Text set", length=len(value))
        return GestureResult(
            completed=True,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )


# ----------------------------------------------------------------------
# Capture
# ----------------------------------------------------------------------


class AdbCaptureSession(CaptureSession):
    """
    CaptureSession fed by repeated ``screencap`` calls.

    A background task takes a screenshot every ``frame_interval`` seconds
    into a small ring buffer and fires the one-shot listener when a frame
    lands.
    """

    def __init__(
        self,
        bridge: AdbBridge,
        frame_interval: float = 0.5,
        buffer_size: int = 2,
    ) -> None:
        self.bridge = bridge
        self.frame_interval = frame_interval
        self._frames: deque[RawFrame] = deque(maxlen=buffer_size)
        self._listener: Optional[Callable[[], None]] = None
        self._producer: Optional[asyncio.Task] = None
        self._reader_open = False
        self._running = False

    @property
    def is_available(self) -> bool:
        return self.bridge.available

    async def start_session(self) -> None:
        if self._running:
            return
        if not self.bridge.connected and not await self.bridge.connect():
            raise RuntimeError("No ADB device available for screen capture")
        self._running = True
        self._reader_open = True
        self._producer = asyncio.create_task(self._produce())
        logger.info("ADB capture session started", interval=self.frame_interval)

    async def _produce(self) -> None:
        while self._running:
            try:
                data = await self.bridge.screenshot()
                if data:
                    self._push(data)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Screencap failed", error=str(e))
            await asyncio.sleep(self.frame_interval)

    def _push(self, data: bytes) -> None:
        if not self._reader_open:
            return
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
        if len(self._frames) == self._frames.maxlen:
            self._frames.popleft().close()
        self._frames.append(RawFrame(data, width, height, time.monotonic()))

        listener, self._listener = self._listener, None
        if listener is not None:
            listener()

    def acquire_latest_frame(self) -> Optional[RawFrame]:
        if not self._frames:
            return None
        latest = self._frames.pop()
        while self._frames:
            self._frames.popleft().close()
        return latest

    def release_frame(self, frame: RawFrame) -> None:
        frame.close()

    def register_one_shot_available_listener(self, callback: Callable[[], None]) -> None:
        self._listener = callback

    def unregister_listener(self) -> None:
        self._listener = None

    async def release_surface(self) -> None:
        """Stop the screencap producer."""
        self._running = False
        if self._producer is not None:
            self._producer.cancel()
            await asyncio.gather(self._producer, return_exceptions=True)
            self._producer = None

    async def close_reader(self) -> None:
        self._reader_open = False
        self._listener = None
        while self._frames:
            self._frames.popleft().close()

    async def stop_session(self) -> None:
        self._running = False
        logger.info("ADB capture session stopped")
