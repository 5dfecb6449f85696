"""
Device Collaborator Interfaces
==============================

Abstract capabilities the agent core depends on. Concrete implementations
(ADB, test fakes) are injected into the task loop at construction time.

    - CaptureSession: buffered screen frames plus a one-shot "frame available"
      notification
    - UiTree / UiNode: read-only view of the accessibility hierarchy
    - GestureSink: tap, long press, swipe and text entry
    - VisionLanguageModel: prompt + PNG in, free text out

Usage:
    from app.device.interfaces import GestureSink

    class MySink(GestureSink):
        ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class Bounds:
    """
    On-screen rectangle in pixels.

    Attributes:
        left: Left edge.
        top: Top edge.
        right: Right edge (>= left).
        bottom: Bottom edge (>= top).
    """

    left: int
    top: int
    right: int
    bottom: int

    def __post_init__(self) -> None:
        # Normalise inverted rectangles reported by some views
        if self.right < self.left:
            left, right = self.right, self.left
            object.__setattr__(self, "left", left)
            object.__setattr__(self, "right", right)
        if self.bottom < self.top:
            top, bottom = self.bottom, self.top
            object.__setattr__(self, "top", top)
            object.__setattr__(self, "bottom", bottom)

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def center(self) -> tuple[int, int]:
        """Integer midpoint of the rectangle."""
        return (self.left + self.right) // 2, (self.top + self.bottom) // 2


@dataclass
class RawFrame:
    """
    A frame buffered by a capture session.

    Attributes:
        data: Encoded PNG bytes.
        width: Frame width in pixels.
        height: Frame height in pixels.
        timestamp: Monotonic time the frame was produced.
    """

    data: bytes
    width: int = 0
    height: int = 0
    timestamp: float = 0.0
    closed: bool = False

    def close(self) -> None:
        self.closed = True


@dataclass
class GestureResult:
    """
    Outcome of a gesture or text injection.

    Attributes:
        completed: The platform reported the gesture as dispatched.
        cancelled: The platform cancelled the gesture (not a round failure).
        error: Error message if dispatch failed outright.
        duration_ms: How long the dispatch took.
    """

    completed: bool
    cancelled: bool = False
    error: Optional[str] = None
    duration_ms: int = 0


@runtime_checkable
class UiNode(Protocol):
    """Read-only accessibility node."""

    @property
    def children(self) -> Sequence["UiNode"]: ...

    @property
    def bounds(self) -> Bounds: ...

    @property
    def is_clickable(self) -> bool: ...

    @property
    def is_focusable(self) -> bool: ...

    @property
    def is_visible_to_user(self) -> bool: ...

    @property
    def is_enabled(self) -> bool: ...

    @property
    def class_name(self) -> str: ...

    @property
    def text(self) -> str: ...

    @property
    def content_description(self) -> str: ...

    @property
    def resource_id(self) -> str: ...


class UiTree(ABC):
    """Source of the current accessibility hierarchy."""

    @abstractmethod
    async def root(self) -> Optional[UiNode]:
        """
        Return the root of the active window, or None when unavailable.
        """
        pass


class CaptureSession(ABC):
    """
    Platform screen capture stream.

    Frames accumulate in a small buffer; ``acquire_latest_frame`` never
    blocks. Teardown order is ``release_surface`` → ``close_reader`` →
    ``stop_session``.
    """

    @property
    def is_available(self) -> bool:
        """Whether the session can deliver frames at all."""
        return True

    @abstractmethod
    async def start_session(self) -> None:
        """Start producing frames."""
        pass

    @abstractmethod
    def acquire_latest_frame(self) -> Optional[RawFrame]:
        """
        Take the newest buffered frame, discarding older ones.

        Returns:
            The frame, or None if nothing is buffered.
        """
        pass

    @abstractmethod
    def release_frame(self, frame: RawFrame) -> None:
        """Return a frame's buffer to the session."""
        pass

    @abstractmethod
    def register_one_shot_available_listener(self, callback: Callable[[], None]) -> None:
        """
        Register a callback fired once when the next frame becomes available.

        Raises:
            NotImplementedError: If the session has no listener mechanism.
        """
        pass

    @abstractmethod
    def unregister_listener(self) -> None:
        """Remove any registered listener. Safe to call when none is set."""
        pass

    @abstractmethod
    async def release_surface(self) -> None:
        """Release the virtual display / render surface bound to the stream."""
        pass

    @abstractmethod
    async def close_reader(self) -> None:
        """Close the frame buffer reader."""
        pass

    @abstractmethod
    async def stop_session(self) -> None:
        """Stop the underlying capture session."""
        pass


class GestureSink(ABC):
    """Injects gestures and text into the device."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether gestures can currently be dispatched."""
        pass

    @abstractmethod
    async def tap(self, x: int, y: int) -> GestureResult:
        pass

    @abstractmethod
    async def long_press(self, x: int, y: int, duration_ms: int = 1000) -> GestureResult:
        pass

    @abstractmethod
    async def swipe(
        self,
        start_x: int,
        start_y: int,
        end_x: int,
        end_y: int,
        duration_ms: int = 500,
    ) -> GestureResult:
        pass

    @abstractmethod
    async def set_text(self, value: str) -> GestureResult:
        """Replace the content of the focused input field."""
        pass


class VisionLanguageModel(ABC):
    """Prompt plus screenshot in, free text out."""

    @abstractmethod
    async def complete(self, prompt: str, image_png: bytes) -> str:
        """
        Ask the model about a screenshot.

        Args:
            prompt: Full task prompt.
            image_png: PNG-encoded annotated screenshot.

        Returns:
            Raw model reply.

        Raises:
            LLMError: On transport or API failure.
        """
        pass

    async def close(self) -> None:
        """Release client resources."""
        return None
