"""
Agent Module
============

Perceive → decide → act loop for screen automation.

This package contains:
    - task_loop: Round-by-round control loop
    - state: Task state and round records
    - prompts: Prompt template for the vision model
    - action_parser: Reply sections and typed actions
    - decision: Model call for one round
    - cancellation: Cancellation token and sliced sleeps
    - actions/: Dispatch of actions to the device
"""

from app.agent.action_parser import Action, parse_action, parse_reply
from app.agent.cancellation import CancellationToken
from app.agent.decision import DecisionClient, DecisionError
from app.agent.prompts import build_task_prompt
from app.agent.state import TaskState, TaskStatus
from app.agent.task_loop import LoopConfig, TaskLoop, TaskResult

__all__ = [
    "Action",
    "parse_action",
    "parse_reply",
    "CancellationToken",
    "DecisionClient",
    "DecisionError",
    "build_task_prompt",
    "TaskState",
    "TaskStatus",
    "LoopConfig",
    "TaskLoop",
    "TaskResult",
]
