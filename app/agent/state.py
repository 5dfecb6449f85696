"""
Task State Management
=====================

Tracks one task run across rounds.

Maintains:
- Task description and lifecycle status
- Round counter and the latest action summary
- A short log of finished rounds (counts and outcomes only)
- Final message and timings
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Optional

from app.agent.action_parser import Action, format_action_for_log
from app.agent.prompts import INITIAL_SUMMARY
from app.perception.element_extractor import UIElement

# Round records kept for status reporting
_MAX_ROUND_RECORDS = 50


class TaskStatus(Enum):
    """Lifecycle of a task."""

    IDLE = auto()
    RUNNING = auto()
    COMPLETED = auto()
    CANCELLED = auto()
    FAILED = auto()
    ROUND_LIMIT_REACHED = auto()

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskStatus.IDLE, TaskStatus.RUNNING)


class RoundOutcome(Enum):
    """How a round ended."""

    CONTINUE = auto()
    FINISH = auto()
    CANCELLED = auto()
    ERROR = auto()


@dataclass
class TaskRound:
    """
    One perceive → decide → act cycle.

    Attributes:
        index: 1-based round number.
        elements: Elements offered to the model this round.
        decision_text: Raw model reply.
        parsed_action: Action parsed from the reply.
        outcome: How the round ended.
        summary: Summary section of the reply.
        annotated_path: Where the labeled screenshot was written.
        timestamp: When the round finished.
    """

    index: int
    elements: list[UIElement] = field(default_factory=list)
    decision_text: str = ""
    parsed_action: Optional[Action] = None
    outcome: RoundOutcome = RoundOutcome.CONTINUE
    summary: str = ""
    annotated_path: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a compact dictionary (elements reduced to a count)."""
        return {
            "index": self.index,
            "element_count": len(self.elements),
            "action": format_action_for_log(self.parsed_action) if self.parsed_action else None,
            "outcome": self.outcome.name,
            "summary": self.summary,
            "annotated_path": self.annotated_path,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class TaskState:
    """
    State of a task loop.

    Only ``last_action_summary`` feeds the next prompt; earlier rounds are
    kept as compact records for status reporting.

    Attributes:
        task: The task description.
        status: Current lifecycle status.
        current_round: Number of rounds started.
        last_action_summary: Summary from the latest reply.
        rounds: Recent round records.
        message: Final human-readable message.
        error: Error detail for failed tasks.
        started_at: When the task started.
        completed_at: When the task reached a terminal state.
    """

    task: str = ""
    status: TaskStatus = TaskStatus.IDLE
    current_round: int = 0
    last_action_summary: str = INITIAL_SUMMARY
    rounds: deque = field(default_factory=lambda: deque(maxlen=_MAX_ROUND_RECORDS))
    message: str = ""
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def start_task(self, task: str) -> None:
        """Reset state and enter RUNNING."""
        self.task = task
        self.status = TaskStatus.RUNNING
        self.current_round = 0
        self.last_action_summary = INITIAL_SUMMARY
        self.rounds.clear()
        self.message = ""
        self.error = None
        self.started_at = datetime.now()
        self.completed_at = None

    def begin_round(self) -> int:
        self.current_round += 1
        return self.current_round

    def record_round(self, task_round: TaskRound) -> None:
        """Store a finished round and carry its summary forward."""
        self.rounds.append(task_round.to_dict())
        if task_round.outcome == RoundOutcome.CONTINUE and task_round.summary:
            self.last_action_summary = task_round.summary

    def _finish(self, status: TaskStatus, message: str, error: Optional[str] = None) -> None:
        if self.status.is_terminal:
            return
        self.status = status
        self.message = message
        self.error = error
        self.completed_at = datetime.now()

    def complete(self, message: str = "Task completed") -> None:
        self._finish(TaskStatus.COMPLETED, message)

    def fail(self, error: str) -> None:
        self._finish(TaskStatus.FAILED, error, error)

    def cancel(self, message: str = "Task cancelled") -> None:
        self._finish(TaskStatus.CANCELLED, message)

    def exhaust(self, max_rounds: int) -> None:
        """Round budget spent without a FINISH."""
        self._finish(
            TaskStatus.ROUND_LIMIT_REACHED,
            f"Reached the maximum of {max_rounds} rounds without completing the task",
        )

    @property
    def is_running(self) -> bool:
        return self.status == TaskStatus.RUNNING

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_seconds(self) -> float:
        if not self.started_at:
            return 0.0
        end_time = self.completed_at or datetime.now()
        return (end_time - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert state to dictionary for serialization."""
        return {
            "task": self.task,
            "status": self.status.name,
            "current_round": self.current_round,
            "last_action_summary": self.last_action_summary,
            "rounds": list(self.rounds),
            "message": self.message,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }
