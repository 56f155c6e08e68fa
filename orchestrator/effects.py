"""
Detached side effects of the pipeline.

Notifications and upload cleanup run as tasks next to the main pipeline. Each
effect runs inside its own error boundary, so a failing effect is logged and
never reaches the pipeline's results.
"""

import asyncio
from typing import Awaitable

from loguru import logger


class BackgroundEffects:
    """A queue of fire-and-forget tasks that can be drained on demand."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self.failures: int = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, effect: Awaitable) -> asyncio.Task:
        """Schedule an effect and return its task."""
        task = asyncio.create_task(self._run(name, effect), name=f"effect:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, effect: Awaitable) -> None:
        try:
            await effect
            logger.debug("Background effect completed", effect=name)
        except Exception as e:
            self.failures += 1
            logger.warning(
                "Background effect failed",
                effect=name,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait until every scheduled effect, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
