"""Bounded thread pool for frame rendering.

``RenderScheduler`` holds the idle-first / FIFO dispatch rules on its own so
they can be tested without threads. ``FrameWorkerPool`` runs one long-lived
thread per worker slot and hands each task's outcome back through a
``concurrent.futures.Future``.
"""

import logging
import os
import queue
import threading
from collections import deque
from concurrent.futures import Future
from concurrent.futures import wait as wait_futures
from typing import Any, Callable, Iterable

from voxport.exceptions import FrameRenderError

logger = logging.getLogger(__name__)

_STOP = object()


def default_pool_size() -> int:
    return max(2, (os.cpu_count() or 2) - 1)


class RenderScheduler:
    """Idle-first dispatch with a FIFO backlog."""

    def __init__(self, worker_ids: Iterable[int]):
        self._idle: deque[int] = deque(worker_ids)
        self._pending: deque[Any] = deque()

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def dispatch(self, item: Any) -> int | None:
        """Return an idle worker for ``item``, or queue it and return None."""
        if self._idle:
            return self._idle.popleft()
        self._pending.append(item)
        return None

    def complete(self, worker_id: int) -> Any | None:
        """Worker finished; give it the oldest queued item or mark it idle."""
        if self._pending:
            return self._pending.popleft()
        self._idle.append(worker_id)
        return None

    def drain(self) -> list[Any]:
        items = list(self._pending)
        self._pending.clear()
        return items


class FrameWorkerPool:
    """Fixed-size pool of render threads.

    Usage::

        with FrameWorkerPool(renderer.render, size=4) as pool:
            future = pool.submit(task)
    """

    def __init__(
        self,
        handler: Callable[[Any], Any],
        size: int | None = None,
        name: str = "frame-worker",
    ):
        self.size = size or default_pool_size()
        self.name = name
        self._handler = handler
        self._lock = threading.Lock()
        self._scheduler: RenderScheduler | None = None
        self._inboxes: list[queue.Queue] = []
        self._threads: list[threading.Thread] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> "FrameWorkerPool":
        with self._lock:
            if self._running:
                return self
            self._scheduler = RenderScheduler(range(self.size))
            self._inboxes = [queue.Queue() for _ in range(self.size)]
            self._threads = [
                threading.Thread(
                    target=self._run, args=(worker_id,), name=f"{self.name}-{worker_id}", daemon=True
                )
                for worker_id in range(self.size)
            ]
            self._running = True

        for thread in self._threads:
            thread.start()
        logger.info(f"[POOL] Started {self.size} render threads")
        return self

    def submit(self, task: Any) -> Future:
        future: Future = Future()
        with self._lock:
            if not self._running:
                raise RuntimeError("Worker pool is not running")
            worker_id = self._scheduler.dispatch((task, future))
            # Must land before any _STOP that terminate() queues
            if worker_id is not None:
                self._inboxes[worker_id].put((task, future))
        return future

    def terminate(self, wait: bool = True) -> None:
        """Stop all threads; tasks still queued are cancelled."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            backlog = self._scheduler.drain()

        for _, future in backlog:
            future.cancel()
        for inbox in self._inboxes:
            inbox.put(_STOP)
        if wait:
            for thread in self._threads:
                thread.join()

        logger.info(f"[POOL] Terminated ({len(backlog)} queued task(s) cancelled)")

    def _run(self, worker_id: int) -> None:
        inbox = self._inboxes[worker_id]
        while True:
            item = inbox.get()
            if item is _STOP:
                return

            while item is not None:
                task, future = item
                if future.set_running_or_notify_cancel():
                    try:
                        result = self._handler(task)
                    except Exception as e:
                        future.set_exception(e)
                    else:
                        future.set_result(result)

                with self._lock:
                    item = self._scheduler.complete(worker_id)

    def __enter__(self) -> "FrameWorkerPool":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()


def render_frames(
    pool: FrameWorkerPool,
    tasks: list,
    on_progress: Callable[[int, int], None] | None = None,
) -> list:
    """Render every task on the pool and return results ordered by frame index.

    Raises:
        FrameRenderError: For the lowest-indexed frame that failed. Raised only
            after every frame already running has finished, so no frame file
            is written once the caller starts cleaning up.
    """
    submitted = [(task.frame.index, pool.submit(task)) for task in tasks]
    results: dict[int, Any] = {}

    for done, (index, future) in enumerate(submitted, start=1):
        try:
            results[index] = future.result()
        except Exception as e:
            for _, pending in submitted:
                pending.cancel()
            wait_futures([pending for _, pending in submitted])
            logger.error(f"[RENDER] Frame {index} failed: {e}")
            raise FrameRenderError(index, str(e)) from e
        if on_progress:
            on_progress(done, len(submitted))

    return [results[i] for i in sorted(results)]
