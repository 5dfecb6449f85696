"""
Shared Test Fixtures
====================

Pytest fixtures used across all test modules.
Provides in-memory fakes for the device and model collaborators.
"""

import os

# Set env vars BEFORE any app.* imports so settings load predictably
os.environ.setdefault("LLM_API_KEY", "test-llm-key-for-testing")
os.environ.setdefault("GROQ_API_KEY", "gsk_test-groq-key-for-testing")
os.environ.setdefault("GEMINI_API_KEY", "test-api-key-for-testing")

import asyncio
import io
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import pytest
from PIL import Image

from app.agent.decision import DecisionClient
from app.agent.task_loop import LoopConfig, TaskLoop
from app.capture.coordinator import CaptureConfig, CaptureCoordinator
from app.device.interfaces import (
    Bounds,
    CaptureSession,
    GestureResult,
    GestureSink,
    RawFrame,
    UiTree,
    VisionLanguageModel,
)
from app.perception.annotator import ScreenAnnotator

SCREEN_SIZE = (400, 800)


def make_png(size: tuple[int, int] = SCREEN_SIZE, color: str = "white") -> bytes:
    """Encode a plain image as PNG bytes."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


# Trimmed uiautomator dump of a settings screen
SAMPLE_DUMP = """UI hierchary dumped to: /sdcard/window_dump.xml
<?xml version='1.0' encoding='UTF-8' standalone='yes' ?>
<hierarchy rotation="0">
  <node index="0" text="" resource-id="" class="android.widget.FrameLayout" content-desc=""
        clickable="false" focusable="false" enabled="true" visible-to-user="true"
        bounds="[0,0][1080,2340]">
    <node index="0" text="Wi-Fi" resource-id="com.android.settings:id/title"
          class="android.widget.TextView" content-desc="" clickable="true" focusable="true"
          enabled="true" visible-to-user="true" bounds="[0,200][1080,400]" />
    <node index="1" text="" resource-id="com.android.settings:id/search"
          class="android.widget.EditText" content-desc="Search" clickable="false"
          focusable="true" enabled="true" bounds="[0,1000][1080,1200]" />
    <node index="2" text="Hidden" resource-id="" class="android.widget.Button"
          clickable="true" focusable="false" enabled="true" visible-to-user="false"
          bounds="[0,2000][100,2100]" />
  </node>
</hierarchy>"""


# ---------------------------------------------------------------------------
# Accessibility tree fakes
# ---------------------------------------------------------------------------


@dataclass
class FakeNode:
    """Plain-attribute UiNode."""

    bounds: Bounds = field(default_factory=lambda: Bounds(0, 0, 0, 0))
    children: list = field(default_factory=list)
    is_clickable: bool = False
    is_focusable: bool = False
    is_visible_to_user: bool = True
    is_enabled: bool = True
    class_name: str = "android.view.View"
    text: str = ""
    content_description: str = ""
    resource_id: str = ""


def make_node(
    left: int,
    top: int,
    right: int,
    bottom: int,
    *children: FakeNode,
    **attrs,
) -> FakeNode:
    """Helper to build a FakeNode from a rectangle."""
    return FakeNode(bounds=Bounds(left, top, right, bottom), children=list(children), **attrs)


class FakeUiTree(UiTree):
    def __init__(self, root_node: Optional[FakeNode]) -> None:
        self.root_node = root_node
        self.calls = 0

    async def root(self) -> Optional[FakeNode]:
        self.calls += 1
        return self.root_node


# ---------------------------------------------------------------------------
# Capture fake
# ---------------------------------------------------------------------------


class FakeCaptureSession(CaptureSession):
    """
    In-memory capture session.

    Args:
        png: Bytes of every produced frame.
        supports_listener: Raise NotImplementedError on listener registration when False.
        produce_on_listener: Deliver a frame as soon as a listener registers.
        frame_after_empty: Produce a frame on the acquisition following this
            many empty ones (polling path). None never produces.
    """

    def __init__(
        self,
        png: bytes,
        supports_listener: bool = True,
        produce_on_listener: bool = True,
        frame_after_empty: Optional[int] = None,
        available: bool = True,
    ) -> None:
        self.png = png
        self.supports_listener = supports_listener
        self.produce_on_listener = produce_on_listener
        self.frame_after_empty = frame_after_empty
        self.available = available

        self.frames: deque[RawFrame] = deque()
        self.listener: Optional[Callable[[], None]] = None
        self.released: list[RawFrame] = []
        self.lifecycle: list[str] = []
        self.unregister_calls = 0
        self.acquire_calls = 0
        self._empty_acquires = 0

    @property
    def is_available(self) -> bool:
        return self.available

    def push_frame(self) -> RawFrame:
        frame = RawFrame(self.png, SCREEN_SIZE[0], SCREEN_SIZE[1], time.monotonic())
        self.frames.append(frame)
        return frame

    async def start_session(self) -> None:
        self.lifecycle.append("start_session")

    def acquire_latest_frame(self) -> Optional[RawFrame]:
        self.acquire_calls += 1
        if not self.frames:
            self._empty_acquires += 1
            if self.frame_after_empty is None or self._empty_acquires <= self.frame_after_empty:
                return None
            self._empty_acquires = 0
            self.push_frame()
        latest = self.frames.pop()
        while self.frames:
            self.frames.popleft().close()
        return latest

    def release_frame(self, frame: RawFrame) -> None:
        frame.close()
        self.released.append(frame)

    def register_one_shot_available_listener(self, callback: Callable[[], None]) -> None:
        if not self.supports_listener:
            raise NotImplementedError("listener unsupported")
        self.listener = callback
        if self.produce_on_listener:
            self.push_frame()
            listener, self.listener = self.listener, None
            listener()

    def unregister_listener(self) -> None:
        self.unregister_calls += 1
        self.listener = None

    async def release_surface(self) -> None:
        self.lifecycle.append("release_surface")

    async def close_reader(self) -> None:
        self.lifecycle.append("close_reader")

    async def stop_session(self) -> None:
        self.lifecycle.append("stop_session")


# ---------------------------------------------------------------------------
# Gesture and model fakes
# ---------------------------------------------------------------------------


class FakeGestureSink(GestureSink):
    def __init__(self, connected: bool = True, result: Optional[GestureResult] = None) -> None:
        self.connected = connected
        self.result = result or GestureResult(completed=True)
        self.calls: list[tuple] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def tap(self, x: int, y: int) -> GestureResult:
        self.calls.append(("tap", x, y))
        return self.result

    async def long_press(self, x: int, y: int, duration_ms: int = 1000) -> GestureResult:
        self.calls.append(("long_press", x, y, duration_ms))
        return self.result

    async def swipe(
        self,
        start_x: int,
        start_y: int,
        end_x: int,
        end_y: int,
        duration_ms: int = 500,
    ) -> GestureResult:
        self.calls.append(("swipe", start_x, start_y, end_x, end_y, duration_ms))
        return self.result

    async def set_text(self, value: str) -> GestureResult:
        self.calls.append(("set_text", value))
        return self.result


Reply = Union[str, Exception]


class FakeVisionModel(VisionLanguageModel):
    """
    Scripted model. Replies are returned in order; the last one repeats.
    An Exception in the script is raised instead of returned.
    """

    def __init__(self, *replies: Reply, delay: float = 0.0) -> None:
        self.replies = list(replies) or ["Action: FINISH"]
        self.delay = delay
        self.prompts: list[str] = []
        self.images: list[bytes] = []
        self.closed = False

    async def complete(self, prompt: str, image_png: bytes) -> str:
        self.prompts.append(prompt)
        self.images.append(image_png)
        if self.delay:
            await asyncio.sleep(self.delay)
        index = min(len(self.prompts) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def close(self) -> None:
        self.closed = True


def reply(action: str, summary: str = "", thought: str = "Next step.") -> str:
    """Build a well-formed model reply."""
    return (
        "Observation: A settings screen.\n"
        f"Thought: {thought}\n"
        f"Action: {action}\n"
        f"Summary: {summary}"
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def sample_root() -> FakeNode:
    """
    Window with two buttons, a focusable wrapper around the first button and
    a distant focusable text field.
    """
    ok_button = make_node(
        10, 10, 50, 30,
        is_clickable=True,
        class_name="android.widget.Button",
        text="OK",
        resource_id="com.app:id/ok",
    )
    wrapper = make_node(0, 0, 60, 40, ok_button, is_focusable=True)
    cancel_button = make_node(
        100, 100, 300, 160,
        is_clickable=True,
        class_name="android.widget.Button",
        text="Cancel",
        content_description="Cancel",
    )
    field_node = make_node(
        20, 500, 380, 560,
        is_focusable=True,
        class_name="android.widget.EditText",
        resource_id="com.app:id/search_box",
    )
    return make_node(0, 0, 400, 800, wrapper, cancel_button, field_node)


@pytest.fixture
def fast_capture_config() -> CaptureConfig:
    return CaptureConfig(
        settle_delay=0.0,
        callback_timeout=0.05,
        poll_attempts=3,
        poll_delay=0.01,
        teardown_wait=0.2,
    )


@pytest.fixture
def fast_loop_config() -> LoopConfig:
    return LoopConfig(
        max_rounds=3,
        request_interval=0.0,
        settle_delay=0.0,
    )


@pytest.fixture
def build_loop(png_bytes, sample_root, fast_capture_config, fast_loop_config, tmp_path):
    """
    Factory building a TaskLoop over fakes.

    Returns a function accepting overrides and returning
    ``(loop, session, sink, model)``.
    """

    def _build(
        *replies: Reply,
        session: Optional[FakeCaptureSession] = None,
        sink: Optional[FakeGestureSink] = None,
        root: Optional[FakeNode] = sample_root,
        config: Optional[LoopConfig] = None,
        model_delay: float = 0.0,
        with_model: bool = True,
        on_progress=None,
    ):
        session = session or FakeCaptureSession(png_bytes)
        sink = sink or FakeGestureSink()
        model = FakeVisionModel(*replies, delay=model_delay)
        loop = TaskLoop(
            capture=CaptureCoordinator(session, fast_capture_config),
            ui_tree=FakeUiTree(root),
            gesture_sink=sink,
            decision=DecisionClient(model) if with_model else None,
            annotator=ScreenAnnotator(tmp_path / "shots"),
            config=config or fast_loop_config,
            on_progress=on_progress,
        )
        return loop, session, sink, model

    return _build
