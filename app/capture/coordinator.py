"""
Capture Coordinator
===================

Owns the capture session lifecycle and hands out exactly one fresh frame per
request.

Each acquisition:
1. Rejects the request with BUSY if another capture is in flight
2. Drains frames buffered before the last UI action
3. Waits a short settle delay so the render surface repaints
4. Tries each retrieval strategy in order (callback, then polling)
5. Copies the frame out and releases the session buffer

Usage:
    from app.capture import CaptureCoordinator, CaptureConfig

    coordinator = CaptureCoordinator(session, CaptureConfig())
    await coordinator.start()
    result = await coordinator.acquire_frame()
    if result.ok:
        png = result.frame.png
    await coordinator.teardown()
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Sequence

from app.capture.strategies import CallbackStrategy, FrameRetrievalStrategy, PollingStrategy
from app.device.interfaces import CaptureSession, RawFrame
from app.utils.logger import get_logger

logger = get_logger(__name__)


class CaptureError(Exception):
    """Raised when the capture session cannot be used."""

    pass


class CaptureStatus(Enum):
    """Outcome of a frame acquisition."""

    FRAME = auto()
    TIMEOUT = auto()
    BUSY = auto()
    ERROR = auto()


@dataclass
class Frame:
    """
    A captured screen frame.

    Attributes:
        png: PNG-encoded image bytes.
        width: Width in pixels.
        height: Height in pixels.
        sequence: Per-coordinator sequence number, increasing.
    """

    png: bytes
    width: int
    height: int
    sequence: int


@dataclass
class CaptureResult:
    """
    Result of ``acquire_frame``.

    Attributes:
        status: What happened.
        frame: The frame when status is FRAME.
        error: Message for TIMEOUT / BUSY / ERROR.
    """

    status: CaptureStatus
    frame: Optional[Frame] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == CaptureStatus.FRAME and self.frame is not None


@dataclass
class CaptureConfig:
    """
    Timing and bounds of the capture pipeline.

    Attributes:
        settle_delay: Seconds between draining and sampling.
        callback_timeout: Seconds the callback strategy waits.
        poll_attempts: Attempts made by the polling strategy.
        poll_delay: Seconds between polling attempts.
        teardown_wait: Seconds teardown waits for an in-flight capture.
        max_drain: Upper bound on stale frames discarded per capture.
    """

    settle_delay: float = 0.2
    callback_timeout: float = 3.0
    poll_attempts: int = 10
    poll_delay: float = 0.1
    teardown_wait: float = 5.0
    max_drain: int = 64

    @classmethod
    def from_settings(cls, settings) -> "CaptureConfig":
        """Build from ``Settings.capture``."""
        return cls(
            settle_delay=settings.capture_settle_delay,
            callback_timeout=settings.capture_callback_timeout,
            poll_attempts=settings.capture_poll_attempts,
            poll_delay=settings.capture_poll_delay,
            teardown_wait=settings.capture_teardown_wait,
        )


class CaptureCoordinator:
    """
    Single-flight frame acquisition over a CaptureSession.
    """

    def __init__(
        self,
        session: CaptureSession,
        config: Optional[CaptureConfig] = None,
        strategies: Optional[Sequence[FrameRetrievalStrategy]] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            session: Capture session to read frames from.
            config: Timing configuration.
            strategies: Retrieval strategies in the order they are tried.
                Defaults to callback then polling.
        """
        self.session = session
        self.config = config or CaptureConfig()
        self.strategies: list[FrameRetrievalStrategy] = list(
            strategies
            if strategies is not None
            else (
                CallbackStrategy(timeout=self.config.callback_timeout),
                PollingStrategy(
                    attempts=self.config.poll_attempts,
                    delay=self.config.poll_delay,
                ),
            )
        )

        self.is_capturing = False
        self._lock = asyncio.Lock()
        self._sequence = 0
        self._started = False
        self._torn_down = False

    @property
    def is_available(self) -> bool:
        return not self._torn_down and self.session.is_available

    async def start(self) -> None:
        """Start the capture session. Calling it again is a no-op."""
        if self._started:
            return
        if self._torn_down:
            raise CaptureError("Capture coordinator already torn down")
        await self.session.start_session()
        self._started = True
        logger.info("Capture session started")

    async def acquire_frame(self, timeout: Optional[float] = None) -> CaptureResult:
        """
        Capture one fresh frame.

        Args:
            timeout: Optional overall bound in seconds on top of the
                strategies' own budgets.

        Returns:
            CaptureResult with FRAME, TIMEOUT, BUSY or ERROR.
        """
        if not self.is_available:
            return CaptureResult(CaptureStatus.ERROR, error="Capture session unavailable")

        if self.is_capturing:
            logger.debug("Capture rejected, another capture is in flight")
            return CaptureResult(CaptureStatus.BUSY, error="Capture already in progress")

        self.is_capturing = True
        start_time = time.monotonic()
        try:
            async with self._lock:
                if timeout is not None:
                    result = await asyncio.wait_for(self._capture(), timeout=timeout)
                else:
                    result = await self._capture()
        except asyncio.TimeoutError:
            result = CaptureResult(
                CaptureStatus.TIMEOUT,
                error=f"No frame within {timeout}s",
            )
        except Exception as e:
            logger.error("Capture failed", error=str(e))
            result = CaptureResult(CaptureStatus.ERROR, error=str(e))
        finally:
            self.is_capturing = False

        logger.debug(
            "Capture finished",
            status=result.status.name,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return result

    async def _capture(self) -> CaptureResult:
        drained = self._drain()
        if drained:
            logger.debug("Discarded stale frames", count=drained)

        await asyncio.sleep(self.config.settle_delay)

        for strategy in self.strategies:
            try:
                raw = await strategy.retrieve(self.session)
            except NotImplementedError:
                logger.debug("Retrieval strategy unsupported", strategy=strategy.name)
                continue

            if raw is not None:
                return CaptureResult(CaptureStatus.FRAME, frame=self._convert(raw))

            logger.info("Retrieval strategy produced no frame", strategy=strategy.name)

        return CaptureResult(
            CaptureStatus.TIMEOUT,
            error="No frame from any retrieval strategy",
        )

    def _drain(self) -> int:
        count = 0
        while count < self.config.max_drain:
            stale = self.session.acquire_latest_frame()
            if stale is None:
                break
            self.session.release_frame(stale)
            count += 1
        return count

    def _convert(self, raw: RawFrame) -> Frame:
        try:
            self._sequence += 1
            return Frame(
                png=bytes(raw.data),
                width=raw.width,
                height=raw.height,
                sequence=self._sequence,
            )
        finally:
            self.session.release_frame(raw)

    async def teardown(self) -> None:
        """
        Stop capturing and release the session.

        Waits up to ``teardown_wait`` seconds for an in-flight capture, then
        releases the render surface, closes the reader and stops the session,
        in that order. Safe to call more than once.
        """
        if self._torn_down:
            return
        self._torn_down = True

        deadline = time.monotonic() + self.config.teardown_wait
        while self.is_capturing and time.monotonic() < deadline:
            await asyncio.sleep(0.05)
        if self.is_capturing:
            logger.warning(
                "Tearing down while a capture is still in flight",
                waited_seconds=self.config.teardown_wait,
            )

        for step in (
            self.session.release_surface,
            self.session.close_reader,
            self.session.stop_session,
        ):
            try:
                await step()
            except Exception as e:
                logger.warning("Capture teardown step failed", step=step.__name__, error=str(e))

        logger.info("Capture session torn down")
