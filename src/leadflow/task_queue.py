"""In-process task queue.

Webhook handlers hand work to a bounded ``asyncio.Queue`` and return
immediately; a small pool of workers drains it. The queue is not durable:
jobs still queued when the process stops are lost and must be re-submitted.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .config import config

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class QueueFullError(Exception):
    """Raised when a job is submitted to a full queue."""

    pass


class TaskQueue:
    """Bounded job queue with a fixed worker pool.

    Args:
        maxsize: Queue capacity. Defaults to TASK_QUEUE_SIZE.
        workers: Number of worker coroutines. Defaults to TASK_QUEUE_WORKERS.
    """

    def __init__(
        self,
        maxsize: Optional[int] = None,
        workers: Optional[int] = None,
    ) -> None:
        self.maxsize = maxsize or config.TASK_QUEUE_SIZE
        self.worker_count = workers or config.TASK_QUEUE_WORKERS
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def depth(self) -> int:
        """Jobs waiting to be picked up."""
        return self._queue.qsize() if self._queue is not None else 0

    def start(self) -> None:
        """Start the worker pool. Must be called from a running event loop."""
        if self._workers:
            return
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"leadflow-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(
            "Task queue started",
            extra={"workers": self.worker_count, "maxsize": self.maxsize},
        )

    def submit(self, job: Job, name: str = "") -> None:
        """Enqueue a job without waiting.

        Raises:
            QueueFullError: If the queue is at capacity.
        """
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull as e:
            logger.warning("Task queue full - rejecting job %s", name)
            raise QueueFullError(f"task queue is full ({self.maxsize} jobs)") from e
        logger.debug("Job %s queued (depth=%d)", name, self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = True, timeout: Optional[float] = 30.0) -> None:
        """Stop the workers.

        Args:
            drain: Wait for queued jobs to finish first.
            timeout: Seconds to wait for the drain before cancelling.
        """
        if not self._workers:
            return
        if drain:
            try:
                await asyncio.wait_for(self.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Task queue drain timed out with %d jobs pending", self.depth
                )

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Task queue stopped")

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        while True:
            name, job = await self._queue.get()
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Worker %d: job %s failed", index, name)
            finally:
                self._queue.task_done()
