"""Turn dispatcher -- one asyncio task per turn, fire-and-forget.

The webhook acknowledges Telegram immediately and hands the turn here.
Turns for different chats run concurrently and share nothing but pooled
HTTP clients and the database engine.
"""

from __future__ import annotations

import asyncio
import logging

from streamrelay.streaming.orchestrator import TurnOrchestrator

logger = logging.getLogger(__name__)


class TurnDispatcher:
    """Spawns turns as background tasks and drains them on shutdown."""

    def __init__(self, orchestrator: TurnOrchestrator, grace_seconds: float = 10.0) -> None:
        self._orchestrator = orchestrator
        self._grace_seconds = grace_seconds
        self._tasks: set[asyncio.Task] = set()
        self._closing = False

    @property
    def active(self) -> int:
        """Number of turns still running."""
        return len(self._tasks)

    def spawn(
        self,
        conversation_id: int | str,
        user_id: int | str,
        user_name: str,
        prompt_text: str,
    ) -> asyncio.Task:
        """Start a turn in the background and return its task."""
        if self._closing:
            raise RuntimeError("dispatcher is shutting down")
        task = asyncio.create_task(
            self._orchestrator.run_turn(conversation_id, user_id, user_name, prompt_text),
            name=f"turn-{conversation_id}",
        )
        # Keep a strong reference until done, the loop only holds weak ones
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Turn task %s crashed: %s", task.get_name(), exc, exc_info=exc)

    async def shutdown(self) -> None:
        """Wait for running turns up to the grace period, then cancel the rest."""
        self._closing = True
        if not self._tasks:
            return
        logger.info("Waiting for %d running turn(s)", len(self._tasks))
        _done, pending = await asyncio.wait(set(self._tasks), timeout=self._grace_seconds)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d turn(s) still running at shutdown", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
