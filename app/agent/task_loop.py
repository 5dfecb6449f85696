"""
Task Loop
=========

Round-by-round perceive → decide → act loop.

Each round:
1. Capture a fresh frame
2. Let the screen settle
3. Extract and label the interactive elements
4. Ask the model for the next action
5. Parse and dispatch it, report progress
6. Stop on FINISH / cancellation / error, otherwise wait and repeat

The loop ends in COMPLETED, CANCELLED, FAILED or ROUND_LIMIT_REACHED and
always returns a TaskResult; collaborator failures never escape ``run``.

Usage:
    from app.agent import TaskLoop, LoopConfig

    loop = TaskLoop(
        capture=coordinator,
        ui_tree=ui_tree,
        gesture_sink=sink,
        decision=DecisionClient(model),
        annotator=ScreenAnnotator("./screenshots"),
        config=LoopConfig(max_rounds=20),
    )
    result = await loop.run("open the settings app and turn on wifi")
"""

import asyncio
import inspect
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from app.agent.action_parser import Cancelled, Error, Finish, parse_action, parse_reply
from app.agent.actions.handler import ActionHandler, ActionResult
from app.agent.cancellation import CancellationToken, interruptible_sleep
from app.agent.decision import DecisionClient, DecisionError
from app.agent.state import RoundOutcome, TaskRound, TaskState, TaskStatus
from app.capture.coordinator import CaptureCoordinator, Frame
from app.device.interfaces import GestureSink, UiTree
from app.perception.annotator import AnnotatedScreen, ScreenAnnotator
from app.perception.element_extractor import UIElement, collect_elements
from app.utils.logger import LogContext, get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[ActionResult], Any]


@dataclass
class LoopConfig:
    """
    Configuration for the task loop.

    Attributes:
        max_rounds: Maximum decision rounds.
        request_interval: Seconds between rounds.
        min_element_distance: Dedup radius for focusable elements.
        settle_delay: Seconds to wait after a capture.
        settle_step: Slice of the settle wait (cancellation granularity).
        interval_step: Slice of the inter-round wait.
        capture_timeout: Optional overall bound on one capture.
        useless_ids: Element ids never offered to the model.
    """

    max_rounds: int = 20
    request_interval: float = 10.0
    min_element_distance: float = 30.0
    settle_delay: float = 1.0
    settle_step: float = 0.1
    interval_step: float = 0.5
    capture_timeout: Optional[float] = None
    useless_ids: frozenset = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls, settings) -> "LoopConfig":
        """Build from ``Settings.agent``."""
        return cls(
            max_rounds=settings.max_rounds,
            request_interval=settings.request_interval,
            min_element_distance=settings.min_element_distance,
            settle_delay=settings.settle_delay,
            useless_ids=frozenset(settings.get_useless_ids()),
        )


@dataclass
class TaskResult:
    """
    Final result of a task.

    Attributes:
        success: False only for failures and cancellation.
        completed: The model declared the task finished.
        message: Human-readable outcome.
        status: Terminal status.
        rounds: Rounds started.
        error: Error detail when failed.
        duration_seconds: Wall time of the run.
    """

    success: bool
    completed: bool
    message: str
    status: TaskStatus
    rounds: int = 0
    error: Optional[str] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "completed": self.completed,
            "message": self.message,
            "status": self.status.name,
            "rounds": self.rounds,
            "error": self.error,
            "duration_seconds": self.duration_seconds,
        }


class _Interrupted(Exception):
    """Internal signal: the token was cancelled while waiting."""


class TaskLoop:
    """
    Drives one task at a time over injected collaborators.
    """

    def __init__(
        self,
        capture: CaptureCoordinator,
        ui_tree: UiTree,
        gesture_sink: GestureSink,
        decision: Optional[DecisionClient],
        annotator: ScreenAnnotator,
        config: Optional[LoopConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Initialize the loop.

        Args:
            capture: Frame capture coordinator.
            ui_tree: Accessibility tree source.
            gesture_sink: Gesture and text injection.
            decision: Decision client; None when no model credentials exist.
            annotator: Screenshot labeler.
            config: Loop configuration.
            on_progress: Called with the ActionResult of every decided round.
        """
        self.capture = capture
        self.ui_tree = ui_tree
        self.gesture_sink = gesture_sink
        self.decision = decision
        self.annotator = annotator
        self.config = config or LoopConfig()
        self.on_progress = on_progress

        self.action_handler = ActionHandler(gesture_sink)
        self.state = TaskState()
        self.token = CancellationToken()
        self.task_id = uuid.uuid4().hex[:12]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self, reason: str = "Task cancelled") -> None:
        """Request cooperative cancellation. Safe from any thread."""
        logger.info("Cancellation requested", task_id=self.task_id, reason=reason)
        self.token.cancel(reason)

    async def run(self, task: str) -> TaskResult:
        """
        Execute a task.

        Args:
            task: Natural language task description.

        Returns:
            TaskResult; never raises for collaborator failures.
        """
        if self.state.is_running:
            return TaskResult(
                success=False,
                completed=False,
                message="A task is already running",
                status=self.state.status,
                error="busy",
            )
        if self.state.is_finished:
            # Fresh token for a new run on a reused loop
            self.token = CancellationToken()
            self.task_id = uuid.uuid4().hex[:12]

        self.state.start_task(task)

        with LogContext(task_id=self.task_id):
            logger.info("Starting task", task=task, max_rounds=self.config.max_rounds)

            problem = self._check_preconditions()
            if problem:
                logger.error("Task cannot start", reason=problem)
                self.state.fail(problem)
                return self._result()

            try:
                await self._run_rounds(task)
            except _Interrupted:
                self.state.cancel(self.token.reason or "Task cancelled")
            except asyncio.CancelledError:
                self.state.cancel()
                logger.info("Task cancelled")
            except Exception as e:
                logger.exception("Task failed with exception", error=str(e))
                self.state.fail(f"Unexpected error: {e}")

            if not self.state.is_finished:
                self.state.fail("Task loop stopped unexpectedly")

            result = self._result()
            logger.info(
                "Task finished",
                status=result.status.name,
                rounds=result.rounds,
                duration_seconds=round(result.duration_seconds, 1),
            )
            return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_preconditions(self) -> Optional[str]:
        if self.decision is None:
            return "Model credentials are not configured"
        if not self.gesture_sink.is_connected:
            return "Gesture service is not connected"
        if not self.capture.is_available:
            return "Screen capture is not available"
        return None

    def _result(self) -> TaskResult:
        status = self.state.status
        return TaskResult(
            success=status in (TaskStatus.COMPLETED, TaskStatus.ROUND_LIMIT_REACHED),
            completed=status == TaskStatus.COMPLETED,
            message=self.state.message,
            status=status,
            rounds=self.state.current_round,
            error=self.state.error,
            duration_seconds=self.state.duration_seconds,
        )

    def _check_cancelled(self) -> None:
        if self.token.is_cancelled:
            raise _Interrupted()

    async def _sleep(self, seconds: float, step: float) -> None:
        if not await interruptible_sleep(self.token, seconds, step):
            raise _Interrupted()

    async def _until_cancelled(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` but give up as soon as the token is cancelled."""
        inner = asyncio.ensure_future(awaitable)
        try:
            while True:
                done, _ = await asyncio.wait({inner}, timeout=self.config.settle_step)
                if done:
                    return inner.result()
                if self.token.is_cancelled:
                    raise _Interrupted()
        finally:
            if not inner.done():
                inner.cancel()
                await asyncio.gather(inner, return_exceptions=True)

    async def _perceive(
        self, frame: Frame, round_index: int
    ) -> tuple[list[UIElement], Optional[AnnotatedScreen]]:
        try:
            root = await self._until_cancelled(self.ui_tree.root())
        except _Interrupted:
            raise
        except Exception as e:
            logger.warning("Could not read the UI tree", round=round_index, error=str(e))
            return [], None

        elements = collect_elements(
            root,
            min_distance=self.config.min_element_distance,
            useless_ids=self.config.useless_ids,
        )
        if not elements:
            return [], None

        annotated = await asyncio.to_thread(
            self.annotator.annotate,
            frame.png,
            elements,
            f"{self.task_id}_round{round_index}",
        )
        return elements, annotated

    async def _notify(self, result: ActionResult) -> None:
        if not self.on_progress:
            return
        try:
            outcome = self.on_progress(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("Progress callback failed", error=str(e))

    async def _run_rounds(self, task: str) -> None:
        cfg = self.config

        while self.state.current_round < cfg.max_rounds:
            self._check_cancelled()
            index = self.state.begin_round()
            logger.info("Round started", round=index, max_rounds=cfg.max_rounds)

            capture = await self._until_cancelled(self.capture.acquire_frame(cfg.capture_timeout))
            if not capture.ok:
                self.state.fail(
                    f"Screen capture failed ({capture.status.name.lower()}): {capture.error}"
                )
                return

            await self._sleep(cfg.settle_delay, cfg.settle_step)

            elements, annotated = await self._perceive(capture.frame, index)
            if not elements:
                logger.warning("No interactive elements found, skipping round", round=index)
                self.state.record_round(TaskRound(index=index))
                await self._sleep(cfg.request_interval, cfg.interval_step)
                continue

            self._check_cancelled()
            try:
                reply = await self._until_cancelled(
                    self.decision.decide(
                        task,
                        self.state.last_action_summary,
                        elements,
                        annotated.png,
                    )
                )
            except DecisionError as e:
                self.state.fail(f"Model request failed: {e}")
                return

            sections = parse_reply(reply)
            action = parse_action(reply, elements, cancelled=self.token.is_cancelled)
            logger.info(
                "Model decided",
                round=index,
                thought=sections.thought[:200],
                action=sections.action[:120],
            )

            result = await self.action_handler.execute(
                action,
                round_index=index,
                thought=sections.thought,
                summary=sections.summary,
            )
            await self._notify(result)

            if isinstance(action, Finish):
                outcome = RoundOutcome.FINISH
            elif isinstance(action, Cancelled):
                outcome = RoundOutcome.CANCELLED
            elif isinstance(action, Error):
                outcome = RoundOutcome.ERROR
            else:
                outcome = RoundOutcome.CONTINUE

            self.state.record_round(
                TaskRound(
                    index=index,
                    elements=elements,
                    decision_text=reply,
                    parsed_action=action,
                    outcome=outcome,
                    summary=sections.summary,
                    annotated_path=str(annotated.path),
                )
            )

            if outcome == RoundOutcome.FINISH:
                self.state.complete(sections.summary or "Task completed")
                return
            if outcome == RoundOutcome.CANCELLED:
                self.state.cancel(self.token.reason or "Task cancelled")
                return
            if outcome == RoundOutcome.ERROR:
                self.state.fail(f"Could not parse the model's action: {sections.action or '<empty>'}")
                return

            if self.state.current_round < cfg.max_rounds:
                await self._sleep(cfg.request_interval, cfg.interval_step)

        # A cancel during the last dispatch still wins over the round limit
        self._check_cancelled()
        self.state.exhaust(cfg.max_rounds)
