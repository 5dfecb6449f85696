"""
Task Routes
===========

Endpoints for running automation tasks.

Provides:
- Task start (runs in the background)
- Task status with the latest round summary and result
- Cooperative cancellation
- Task listing

Only one task drives the device at a time.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from app.agent.actions.handler import ActionResult
from app.agent.runtime import AdbTaskRuntime
from app.agent.task_loop import ProgressCallback, TaskLoop, TaskResult
from app.config import Settings, get_settings
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/tasks", tags=["Tasks"])

# Finished task records kept for status queries
MAX_FINISHED_RECORDS = 100

# Progress entries kept per task
MAX_PROGRESS_ENTRIES = 50


# Request/Response Models
class StartTaskRequest(BaseModel):
    """Request to start a task."""

    task: str = Field(
        description="Natural language task description",
        min_length=1,
        max_length=1000,
    )
    max_rounds: Optional[int] = Field(
        default=None,
        ge=1,
        le=100,
        description="Round budget (defaults to MAX_ROUNDS)",
    )
    dark_mode: Optional[bool] = Field(
        default=None,
        description="Dark-on-light labels (defaults to DARK_MODE_ANNOTATION)",
    )

    @field_validator("task")
    @classmethod
    def task_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("task must not be blank")
        return v.strip()


class StartTaskResponse(BaseModel):
    """Response after starting a task."""

    task_id: str
    status: str


class TaskStatusResponse(BaseModel):
    """Current state of a task."""

    task_id: str
    task: str
    status: str
    current_round: int = 0
    last_action_summary: Optional[str] = None
    created_at: datetime
    progress: list[dict[str, Any]] = []
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None


LoopFactory = Callable[[StartTaskRequest, Settings, ProgressCallback], AsyncContextManager[TaskLoop]]


def default_loop_factory(
    request: StartTaskRequest,
    settings: Settings,
    on_progress: ProgressCallback,
) -> AsyncContextManager[TaskLoop]:
    return AdbTaskRuntime(
        settings,
        on_progress=on_progress,
        max_rounds=request.max_rounds,
        dark_mode=request.dark_mode,
    )


def get_loop_factory() -> LoopFactory:
    """Dependency returning how task loops are built (overridden in tests)."""
    return default_loop_factory


@dataclass
class TaskRecord:
    """Bookkeeping for one submitted task."""

    task_id: str
    task: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    loop: Optional[TaskLoop] = None
    runner: Optional[asyncio.Task] = None
    result: Optional[TaskResult] = None
    error: Optional[str] = None
    cancel_requested: bool = False
    progress: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_done(self) -> bool:
        return self.result is not None or self.error is not None

    @property
    def status(self) -> str:
        if self.result is not None:
            return self.result.status.name
        if self.error is not None:
            return "FAILED"
        if self.loop is not None:
            return self.loop.state.status.name
        return "PENDING"

    def record_progress(self, result: ActionResult) -> None:
        self.progress.append(result.to_dict())
        del self.progress[:-MAX_PROGRESS_ENTRIES]

    def to_response(self) -> TaskStatusResponse:
        state = self.loop.state if self.loop is not None else None
        return TaskStatusResponse(
            task_id=self.task_id,
            task=self.task,
            status=self.status,
            current_round=state.current_round if state else 0,
            last_action_summary=state.last_action_summary if state else None,
            created_at=self.created_at,
            progress=list(self.progress),
            result=self.result.to_dict() if self.result else None,
            error=self.error,
        )


# Task registry
_tasks: dict[str, TaskRecord] = {}


def get_task_record(task_id: str) -> TaskRecord:
    """
    Look up a task.

    Raises:
        HTTPException: 404 if the task is unknown.
    """
    record = _tasks.get(task_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task not found: {task_id}",
        )
    return record


def _prune_finished() -> None:
    finished = [r for r in _tasks.values() if r.is_done]
    for record in finished[:-MAX_FINISHED_RECORDS]:
        _tasks.pop(record.task_id, None)


async def _run_task(record: TaskRecord, runtime: AsyncContextManager[TaskLoop]) -> None:
    try:
        async with runtime as loop:
            record.loop = loop
            if record.cancel_requested:
                loop.cancel()
            record.result = await loop.run(record.task)
    except Exception as e:
        logger.exception("Task runtime failed", task_id=record.task_id, error=str(e))
        record.error = str(e)


@router.post(
    "",
    response_model=StartTaskResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a task",
)
async def start_task(
    request: StartTaskRequest,
    settings: Settings = Depends(get_settings),
    loop_factory: LoopFactory = Depends(get_loop_factory),
) -> StartTaskResponse:
    """
    Start a task in the background.

    Args:
        request: Task description and overrides.

    Returns:
        The new task id.

    Raises:
        HTTPException: 409 if another task is still running.
    """
    running = [r for r in _tasks.values() if not r.is_done]
    if running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Task {running[0].task_id} is still running",
        )

    _prune_finished()
    record = TaskRecord(task_id=uuid.uuid4().hex[:12], task=request.task)
    runtime = loop_factory(request, settings, record.record_progress)
    _tasks[record.task_id] = record
    record.runner = asyncio.create_task(_run_task(record, runtime))

    logger.info(
        "Task started",
        task_id=record.task_id,
        task=request.task[:50] + "..." if len(request.task) > 50 else request.task,
    )
    return StartTaskResponse(task_id=record.task_id, status=record.status)


@router.get(
    "",
    response_model=list[TaskStatusResponse],
    summary="List tasks",
)
async def list_tasks() -> list[TaskStatusResponse]:
    """List known tasks, newest first."""
    records = sorted(_tasks.values(), key=lambda r: r.created_at, reverse=True)
    return [r.to_response() for r in records]


@router.get(
    "/{task_id}",
    response_model=TaskStatusResponse,
    summary="Get task status",
)
async def get_task_status(task_id: str) -> TaskStatusResponse:
    """
    Get the status of a task.

    Args:
        task_id: The task identifier.
    """
    return get_task_record(task_id).to_response()


@router.post(
    "/{task_id}/cancel",
    response_model=TaskStatusResponse,
    summary="Cancel a task",
)
async def cancel_task(task_id: str) -> TaskStatusResponse:
    """
    Request cooperative cancellation.

    The loop stops at its next check point; cancelling a finished task is a
    no-op.
    """
    record = get_task_record(task_id)
    if not record.is_done:
        record.cancel_requested = True
        if record.loop is not None:
            record.loop.cancel("Cancelled via API")
        logger.info("Task cancellation requested", task_id=task_id)
    return record.to_response()
