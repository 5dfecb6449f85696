"""
Frame Retrieval Strategies
==========================

Ways of getting one fresh frame out of a CaptureSession, tried in order by
the CaptureCoordinator:

    - CallbackStrategy: wait on a one-shot "frame available" listener
    - PollingStrategy: ask for the latest frame a bounded number of times

Each strategy returns the frame or None when its budget runs out. A strategy
that cannot run on a given session raises NotImplementedError so the
coordinator moves on to the next one.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from app.device.interfaces import CaptureSession, RawFrame
from app.utils.logger import get_logger

logger = get_logger(__name__)


class FrameRetrievalStrategy(ABC):
    """Obtains a single frame from a capture session."""

    name: str = "strategy"

    @abstractmethod
    async def retrieve(self, session: CaptureSession) -> Optional[RawFrame]:
        """
        Try to obtain a frame.

        Args:
            session: Capture session to read from.

        Returns:
            The frame, or None if none arrived within the strategy's budget.

        Raises:
            NotImplementedError: If the session does not support this strategy.
        """
        pass


class CallbackStrategy(FrameRetrievalStrategy):
    """
    Wait for the session's frame-available notification.

    The listener is removed as soon as the wait ends, whatever the outcome,
    so it cannot consume frames meant for a later capture.
    """

    name = "callback"

    def __init__(self, timeout: float = 3.0) -> None:
        self.timeout = timeout

    async def retrieve(self, session: CaptureSession) -> Optional[RawFrame]:
        loop = asyncio.get_running_loop()
        available = asyncio.Event()

        def _on_available() -> None:
            # May fire from the session's producer thread
            loop.call_soon_threadsafe(available.set)

        session.register_one_shot_available_listener(_on_available)
        try:
            await asyncio.wait_for(available.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.debug("Frame callback timed out", timeout=self.timeout)
            return None
        finally:
            session.unregister_listener()

        return session.acquire_latest_frame()


class PollingStrategy(FrameRetrievalStrategy):
    """Poll ``acquire_latest_frame`` with a fixed delay between attempts."""

    name = "polling"

    def __init__(self, attempts: int = 10, delay: float = 0.1) -> None:
        self.attempts = attempts
        self.delay = delay

    async def retrieve(self, session: CaptureSession) -> Optional[RawFrame]:
        for attempt in range(1, self.attempts + 1):
            frame = session.acquire_latest_frame()
            if frame is not None:
                logger.debug("Frame acquired by polling", attempt=attempt)
                return frame
            if attempt < self.attempts:
                await asyncio.sleep(self.delay)
        return None
