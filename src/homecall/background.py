"""Process-wide registry for fire-and-forget work.

Emergency alerts must reach the ops webhook even when Retell drops the LLM
socket straight after a transfer, so they are not owned by the call that
fired them.  The app lifespan drains the registry on shutdown.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class BackgroundTasks:
    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro, *, name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float) -> int:
        """Wait up to ``timeout`` for outstanding work, then cancel what is left.

        Returns the number of tasks that had to be cancelled.
        """
        if not self._tasks:
            return 0
        _, unfinished = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in unfinished:
            logger.warning("Cancelling unfinished background task %s", task.get_name())
            task.cancel()
        if unfinished:
            await asyncio.gather(*unfinished, return_exceptions=True)
        return len(unfinished)
