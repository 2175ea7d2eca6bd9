"""
Thread pool with exclusivity groups.

Jobs are submitted with a group id:
- GROUP_ID_NON_EXCLUSIVE: runs as soon as a worker is free
- any other id: jobs of that group run one at a time, in submission order

Each submission returns a concurrent.futures.Future holding the job result
or the exception it raised.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Optional, Set

from submap_server.common import constants
from submap_server.backend.errors import WorkerPoolStoppedError

_logger = logging.getLogger(__name__)

GROUP_ID_NON_EXCLUSIVE = constants.GROUP_ID_NON_EXCLUSIVE


@dataclass
class _Job:
    group_id: int
    fn: Callable[[], Any]
    future: Future


class ThreadPool:
    def __init__(self, num_threads: int, name: str = "worker") -> None:
        if num_threads < 1:
            raise ValueError(f"ThreadPool needs at least one thread, got {num_threads}")
        self._num_threads = int(num_threads)
        self._cond = threading.Condition(threading.Lock())
        self._queue: Deque[_Job] = deque()
        self._running_groups: Set[int] = set()
        self._num_active = 0
        self._stopped = False
        self._threads: List[threading.Thread] = [
            threading.Thread(target=self._worker_loop, name=f"{name}-{i}", daemon=True)
            for i in range(self._num_threads)
        ]
        for thread in self._threads:
            thread.start()

    @property
    def num_threads(self) -> int:
        return self._num_threads

    def num_active_threads(self) -> int:
        with self._cond:
            return self._num_active

    def enqueue(self, fn: Callable[[], Any]) -> Future:
        return self.enqueue_ordered(GROUP_ID_NON_EXCLUSIVE, fn)

    def enqueue_ordered(self, group_id: int, fn: Callable[[], Any]) -> Future:
        future: Future = Future()
        with self._cond:
            if self._stopped:
                raise WorkerPoolStoppedError("Thread pool was stopped, not accepting new jobs")
            self._queue.append(_Job(group_id=group_id, fn=fn, future=future))
            self._cond.notify_all()
        return future

    def stop(self) -> None:
        """Stop accepting jobs. Queued jobs still run; workers exit once the queue is empty."""
        with self._cond:
            self._stopped = True
            self._cond.notify_all()

    def wait_for_empty_queue(self) -> None:
        with self._cond:
            while self._queue or self._num_active:
                self._cond.wait()

    def join(self) -> None:
        for thread in self._threads:
            thread.join()

    def _pop_runnable_job(self) -> Optional[_Job]:
        # Called with self._cond held. First job in submission order whose group is free.
        for index, job in enumerate(self._queue):
            if job.group_id == GROUP_ID_NON_EXCLUSIVE or job.group_id not in self._running_groups:
                del self._queue[index]
                return job
        return None

    def _worker_loop(self) -> None:
        while True:
            with self._cond:
                job = self._pop_runnable_job()
                while job is None:
                    if self._stopped and not self._queue:
                        return
                    self._cond.wait()
                    job = self._pop_runnable_job()
                self._num_active += 1
                if job.group_id != GROUP_ID_NON_EXCLUSIVE:
                    self._running_groups.add(job.group_id)

            try:
                if job.future.set_running_or_notify_cancel():
                    try:
                        job.future.set_result(job.fn())
                    except Exception as e:
                        _logger.error(f"Job in group {job.group_id} raised: {e!r}", exc_info=True)
                        job.future.set_exception(e)
            finally:
                with self._cond:
                    self._num_active -= 1
                    self._running_groups.discard(job.group_id)
                    self._cond.notify_all()
