"""
Decision Client
===============

Asks the vision model for the next action of a round.

Any model or transport failure is raised as DecisionError; the task loop
turns it into a failed task. Retrying, where any, happens inside the model
client and is bounded there.

Usage:
    from app.agent.decision import DecisionClient

    decision = DecisionClient(model)
    reply = await decision.decide(task, last_summary, elements, annotated_png)
"""

import time
from typing import Sequence

from app.agent.prompts import build_task_prompt
from app.device.interfaces import VisionLanguageModel
from app.llm.models import LLMError
from app.perception.element_extractor import UIElement
from app.utils.logger import get_logger

logger = get_logger(__name__)


class DecisionError(Exception):
    """Raised when the model could not produce a decision."""

    pass


class DecisionClient:
    """Builds the round prompt and sends it with the labeled screenshot."""

    def __init__(self, model: VisionLanguageModel) -> None:
        self.model = model

    async def decide(
        self,
        task: str,
        last_summary: str,
        elements: Sequence[UIElement],
        image_png: bytes,
    ) -> str:
        """
        Get the model's reply for one round.

        Args:
            task: Task description.
            last_summary: Summary carried over from the previous round.
            elements: Labeled elements of this round.
            image_png: Annotated screenshot.

        Returns:
            The raw model reply.

        Raises:
            DecisionError: On any model failure or an empty reply.
        """
        prompt = build_task_prompt(task, last_summary, elements)
        start_time = time.monotonic()

        try:
            reply = await self.model.complete(prompt, image_png)
        except LLMError as e:
            logger.error("Model call failed", error=str(e))
            raise DecisionError(str(e)) from e
        except Exception as e:
            logger.exception("Unexpected model failure", error=str(e))
            raise DecisionError(f"Unexpected model failure: {e}") from e

        if not reply or not reply.strip():
            raise DecisionError("Model returned an empty reply")

        logger.debug(
            "Decision received",
            duration_ms=int((time.monotonic() - start_time) * 1000),
            reply_chars=len(reply),
        )
        return reply
