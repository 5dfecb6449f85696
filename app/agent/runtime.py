"""
Task Runtime
============

Builds a TaskLoop over the ADB device and the configured model, and tears
everything down afterwards.

Usage:
    from app.agent.runtime import AdbTaskRuntime

    async with AdbTaskRuntime(get_settings()) as loop:
        result = await loop.run("open the clock app")
"""

from typing import Optional

from app.agent.decision import DecisionClient
from app.agent.task_loop import LoopConfig, ProgressCallback, TaskLoop
from app.capture.coordinator import CaptureConfig, CaptureCoordinator
from app.config import Settings
from app.device.adb import AdbBridge, AdbCaptureSession, AdbGestureSink, AdbUiTree
from app.device.interfaces import VisionLanguageModel
from app.llm.factory import create_vision_model
from app.perception.annotator import ScreenAnnotator
from app.utils.logger import get_logger

logger = get_logger(__name__)


class AdbTaskRuntime:
    """
    Async context manager yielding a ready TaskLoop.

    Missing credentials or an unreachable device do not raise here; the loop
    reports them as a failed precondition when it runs.
    """

    def __init__(
        self,
        settings: Settings,
        on_progress: Optional[ProgressCallback] = None,
        max_rounds: Optional[int] = None,
        dark_mode: Optional[bool] = None,
    ) -> None:
        self.settings = settings
        self.on_progress = on_progress
        self.max_rounds = max_rounds
        self.dark_mode = dark_mode

        self.coordinator: Optional[CaptureCoordinator] = None
        self.model: Optional[VisionLanguageModel] = None

    async def __aenter__(self) -> TaskLoop:
        try:
            return await self._build()
        except BaseException:
            # __aexit__ does not run when entering fails
            await self._close()
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._close()

    async def _build(self) -> TaskLoop:
        settings = self.settings

        bridge = AdbBridge(
            serial=settings.device.adb_device_serial or None,
            adb_path=settings.device.adb_path or None,
        )
        if bridge.available:
            await bridge.connect()

        session = AdbCaptureSession(bridge, frame_interval=settings.capture.capture_frame_interval)
        self.coordinator = CaptureCoordinator(session, CaptureConfig.from_settings(settings.capture))
        if bridge.connected:
            await self.coordinator.start()

        decision = None
        if settings.llm.has_credentials():
            self.model = create_vision_model(settings.llm)
            decision = DecisionClient(self.model)
        else:
            logger.warning("No model credentials configured", provider=settings.llm.llm_provider)

        config = LoopConfig.from_settings(settings.agent)
        if self.max_rounds is not None:
            config.max_rounds = self.max_rounds

        dark_mode = settings.agent.dark_mode_annotation if self.dark_mode is None else self.dark_mode
        annotator = ScreenAnnotator(settings.agent.screenshot_dir, dark_mode=dark_mode)

        return TaskLoop(
            capture=self.coordinator,
            ui_tree=AdbUiTree(bridge),
            gesture_sink=AdbGestureSink(bridge),
            decision=decision,
            annotator=annotator,
            config=config,
            on_progress=self.on_progress,
        )

    async def _close(self) -> None:
        if self.coordinator is not None:
            await self.coordinator.teardown()
        if self.model is not None:
            await self.model.close()
