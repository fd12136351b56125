"""
Interactive handlers: how a clarification reaches a human.

The executor only awaits `handle_clarification(request)`. It places no
timeout around the call, so a handler may block for as long as the human
takes to answer.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from .schemas import ClarificationRequest, ClarificationResponse
from . import ui

logger = logging.getLogger(__name__)


class InteractiveHandler(ABC):
    """Answers clarification requests raised by the lookup tools."""

    @abstractmethod
    async def handle_clarification(self, request: ClarificationRequest) -> ClarificationResponse:
        pass


class ConsoleInteractiveHandler(InteractiveHandler):
    """
    Runs the rich wizard prompts in the terminal.

    The prompts block on stdin, so they run in a worker thread via
    `asyncio.to_thread`; the event loop is free while the human types.
    """

    async def handle_clarification(self, request: ClarificationRequest) -> ClarificationResponse:
        return await asyncio.to_thread(self._ask, request)

    def _ask(self, request: ClarificationRequest) -> ClarificationResponse:
        if request.type == "new_person":
            answer, wizard = ui.prompt_person_wizard(request)
        elif request.type == "new_project":
            answer, wizard = ui.prompt_project_wizard(request)
        else:
            answer, wizard = ui.prompt_spelling(request), None

        logger.debug(
            f"Clarification for '{request.term}': answer={answer!r} "
            f"action={getattr(wizard, 'action', None)}"
        )

        return ClarificationResponse(
            type=request.type,
            term=request.term,
            response=answer,
            should_remember=wizard is not None and getattr(wizard, "action", "skip") != "skip",
            additional_info=wizard,
        )
