import asyncio
import logging

import httpx

from notera.config import settings
from notera.errors import ProcessingDispatchError

logger = logging.getLogger(__name__)


class ProcessingDispatcher:
    """Fire-and-forget invocation of the ``process-lesson`` function.

    ``dispatch`` starts the HTTP call in a background task and waits only for
    a short grace window.  A failure inside that window (connection refused,
    DNS, ...) means the job never reached the function and is reported as
    ``ProcessingDispatchError``; anything later is logged, not awaited.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        grace_seconds: float | None = None,
        drain_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{(base_url or settings.functions_url).rstrip('/')}/process-lesson"
        self._grace = settings.dispatch_grace_seconds if grace_seconds is None else grace_seconds
        self._drain = settings.dispatch_drain_seconds if drain_seconds is None else drain_seconds
        # Processing can run for minutes; the function host bounds it.
        self._client = http_client or httpx.AsyncClient(timeout=None)
        self._tasks: set[asyncio.Task] = set()

    async def dispatch(self, lesson_id: str, access_token: str) -> None:
        task = asyncio.create_task(self._invoke(lesson_id, access_token))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

        done, _ = await asyncio.wait({task}, timeout=self._grace)
        if task in done and task.exception() is not None:
            raise ProcessingDispatchError(
                f"Could not reach the processing function: {task.exception()}"
            ) from task.exception()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight invocations; cancel those still running after *timeout*."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("Cancelling %d unfinished process-lesson call(s)", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain(self._drain)
        await self._client.aclose()

    async def _invoke(self, lesson_id: str, access_token: str) -> int:
        resp = await self._client.post(
            self._url,
            json={"lessonId": lesson_id},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if not resp.is_success:
            logger.warning(
                "process-lesson for %s answered %d: %s",
                lesson_id, resp.status_code, resp.text[:500],
            )
        return resp.status_code

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error("process-lesson invocation failed: %s", task.exception())
