import asyncio
import logging
from typing import Awaitable, Callable

log = logging.getLogger("funnel.detached")


class DetachedTaskRunner:
    """
    Runs best-effort side calls (patient pre-registration, WhatsApp confirmations)
    outside the request's control flow. A failing task is logged and otherwise ignored.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, name: str, factory: Callable[[], Awaitable[object]]) -> asyncio.Task:
        task = asyncio.create_task(self._run(name, factory), name=name)
        # keep a strong reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, factory: Callable[[], Awaitable[object]]):
        try:
            await factory()
            log.debug("Detached task %s finished", name)
        except asyncio.CancelledError:
            log.info("Detached task %s cancelled", name)
            raise
        except Exception:
            log.exception("Detached task %s failed; ignoring", name)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


detached_tasks = DetachedTaskRunner()
