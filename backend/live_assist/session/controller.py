import asyncio
import logging

logger = logging.getLogger("session_controller")


class SessionController:
    """Owns the background tasks of one websocket session."""

    def __init__(self):
        self.stop_event = asyncio.Event()
        self.tasks: list[asyncio.Task] = []

    def create_task(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self.tasks.append(task)
        task.add_done_callback(self._on_task_done)
        return task

    def request_stop(self) -> None:
        if not self.stop_event.is_set():
            self.stop_event.set()

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task in self.tasks:
            self.tasks.remove(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Session task failed: %s", task.exception())

    async def stop(self):
        self.request_stop()

        tasks = list(self.tasks)
        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)
