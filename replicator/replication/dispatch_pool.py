"""
Bounded asynchronous dispatch pool.

Jobs are routed to a fixed worker by a stable hash of their key, and each
worker runs its jobs one at a time, so jobs for the same key complete in
submission order. Jobs for different keys run concurrently across workers.
"""

import asyncio
import threading
import zlib
from typing import Awaitable, Callable, List, Optional, Tuple

from common.logging_config import get_logger

logger = get_logger(__name__)

Job = Callable[[], Awaitable[object]]


class DispatchPool:
    """
    Fixed set of asyncio workers, each fed by its own bounded queue.

    ``submit`` never blocks: when the selected queue is full the job is
    dropped and logged.
    """

    def __init__(self, workers: int, queue_size: int):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")

        self.worker_count = workers
        self.queue_size = queue_size
        self.running = False

        self._queues: List[asyncio.Queue] = []
        self._tasks: List[asyncio.Task] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[int] = None

        self.submitted = 0
        self.completed = 0
        self.failed = 0
        self.dropped = 0

    async def start(self):
        """Start the worker tasks on the running event loop."""
        if self.running:
            logger.warning("Dispatch pool already running")
            return

        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._queues = [asyncio.Queue(maxsize=self.queue_size) for _ in range(self.worker_count)]
        self._tasks = [
            asyncio.create_task(self._worker_loop(index, queue))
            for index, queue in enumerate(self._queues)
        ]
        self.running = True

        logger.info(f"Dispatch pool started [workers={self.worker_count}, queue_size={self.queue_size}]")

    async def stop(self, drain: bool = False):
        """
        Stop all workers.

        Args:
            drain: Wait for queued jobs to finish before stopping
        """
        if not self.running:
            return

        if drain:
            await self.drain()

        self.running = False

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        pending = sum(queue.qsize() for queue in self._queues)
        if pending:
            logger.warning(f"Dispatch pool stopped with {pending} queued jobs discarded")

        self._tasks = []
        self._queues = []
        logger.info("Dispatch pool stopped")

    def worker_for(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) % self.worker_count

    def submit(self, key: str, job: Job) -> bool:
        """
        Queue a job on the worker owning ``key``.

        Safe to call from any thread; calls from outside the loop thread are
        handed over to the loop and always report True.

        Returns:
            False if the pool is stopped or the job was dropped
        """
        if not self.running or self._loop is None:
            logger.warning(f"Dispatch pool not running, job dropped [key={key}]")
            self.dropped += 1
            return False

        if threading.get_ident() == self._loop_thread:
            return self._enqueue(key, job)

        self._loop.call_soon_threadsafe(self._enqueue, key, job)
        return True

    def _enqueue(self, key: str, job: Job) -> bool:
        if not self.running:
            self.dropped += 1
            return False

        index = self.worker_for(key)
        try:
            self._queues[index].put_nowait((key, job))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Dispatch queue full, job dropped [worker={index}, key={key}]")
            return False

        self.submitted += 1
        return True

    async def drain(self):
        """Wait until every queue is empty and every worker idle."""
        while self._queues:
            await asyncio.gather(*(queue.join() for queue in self._queues))
            if all(queue.empty() for queue in self._queues):
                return

    def pending(self) -> int:
        return sum(queue.qsize() for queue in self._queues)

    def stats(self) -> dict:
        return {
            "workers": self.worker_count,
            "running": self.running,
            "pending": self.pending(),
            "submitted": self.submitted,
            "completed": self.completed,
            "failed": self.failed,
            "dropped": self.dropped,
        }

    async def _worker_loop(self, index: int, queue: asyncio.Queue):
        while True:
            item: Tuple[str, Job] = await queue.get()
            key, job = item
            try:
                await job()
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error(f"Dispatch job failed [worker={index}, key={key}]: {e}", exc_info=True)
            finally:
                queue.task_done()
