#!/usr/bin/env python3
"""
Run Task Script
===============

Run one task on a connected Android device from the command line.

Prerequisites:
    1. Set LLM_API_KEY (or LLM_PROVIDER=groq / gemini with its key) in .env
    2. Start an Android emulator or connect a device with USB debugging

Usage:
    python scripts/run_task.py --task "Open Settings and turn on Wi-Fi"

    # Fewer rounds, dark-on-light labels, debug logs
    python scripts/run_task.py --task "Open the clock app" --max-rounds 5 --dark-mode --debug

Press Ctrl+C once to stop the task after the current step, twice to quit.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.agent import TaskLoop, TaskResult
from app.agent.actions import ActionResult
from app.agent.runtime import AdbTaskRuntime
from app.config import get_settings
from app.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


class TaskRunner:
    """Runs one task and prints progress."""

    def __init__(self, settings, max_rounds: Optional[int], dark_mode: bool) -> None:
        self.settings = settings
        self.max_rounds = max_rounds
        self.dark_mode = dark_mode
        self.loop: Optional[TaskLoop] = None
        self._interrupts = 0

    def handle_signal(self, sig, frame) -> None:
        """First Ctrl+C cancels cooperatively, the second one quits."""
        self._interrupts += 1
        if self._interrupts > 1:
            sys.exit(1)
        print("\n\n⚠️  Interrupted, stopping after the current step…")
        if self.loop is not None:
            self.loop.cancel("Interrupted by user")

    def on_progress(self, result: ActionResult) -> None:
        """Display each round to the user."""
        status = "✓" if result.success else "✗"
        print(f"\n{status} Round {result.round_index}: {result.description}")

        if result.thought:
            thought = result.thought[:120] + "…" if len(result.thought) > 120 else result.thought
            print(f"   💭 {thought}")
        if result.summary:
            print(f"   📝 {result.summary}")
        if result.gesture_cancelled:
            print("   ⚠️  Gesture was cancelled by the device")
        if result.error:
            error = result.error[:200] + "…" if len(result.error) > 200 else result.error
            print(f"   ❌ Error: {error}")

    async def run(self, task: str) -> TaskResult:
        runtime = AdbTaskRuntime(
            self.settings,
            on_progress=self.on_progress,
            max_rounds=self.max_rounds,
            dark_mode=self.dark_mode or None,
        )
        async with runtime as loop:
            self.loop = loop
            if self._interrupts:
                loop.cancel("Interrupted by user")
            return await loop.run(task)


def print_result(result: TaskResult) -> None:
    print("\n" + "=" * 50)
    if result.completed:
        print("✅ TASK COMPLETED")
    elif result.success:
        print("⏹️  ROUND LIMIT REACHED")
    elif result.status.name == "CANCELLED":
        print("⚠️  TASK CANCELLED")
    else:
        print("❌ TASK FAILED")
    print(f"   {result.message}")
    print(f"   Rounds: {result.rounds}")
    print(f"   Duration: {result.duration_seconds:.1f}s")
    print("=" * 50)


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Screen Pilot Agent: run one task on an Android device via ADB",
    )
    parser.add_argument("--task", required=True, help="Task to execute")
    parser.add_argument("--max-rounds", type=int, default=None, help="Round budget (default: MAX_ROUNDS)")
    parser.add_argument("--dark-mode", action="store_true", help="Draw dark-on-light labels")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    setup_logging(level="DEBUG" if args.debug else "INFO", json_logs=False)

    try:
        settings = get_settings()
    except Exception as e:
        print(f"❌ Configuration error: {e}")
        return 1

    if not settings.llm.has_credentials():
        print(f"❌ No API key configured for provider '{settings.llm.llm_provider}'")
        print("\n💡 Set LLM_API_KEY (or GROQ_API_KEY / GEMINI_API_KEY) in your .env file.")
        return 1

    runner = TaskRunner(settings, args.max_rounds, args.dark_mode)
    signal.signal(signal.SIGINT, runner.handle_signal)
    signal.signal(signal.SIGTERM, runner.handle_signal)

    print(f"\n📋 Task: {args.task}")
    print("─" * 50)

    try:
        result = await runner.run(args.task)
    except Exception as e:
        logger.error("Task runner failed", error=str(e))
        print(f"\n❌ Unexpected error: {e}")
        return 1

    print_result(result)
    return 0 if result.completed else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
