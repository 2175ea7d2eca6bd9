"""
Submap tasks and the arrival-ordered processing queue.

Task lifecycle (flags only ever go false -> true):

    enqueue ──▶ loaded ──▶ processed ──▶ merged ──▶ popped from queue
                  │
                  └── failed (load error, quarantined; popped without merging)

A worker holds `task.lock` for the whole load/process job. The merge loop
only probes it with try_lock(): a held lock means "still busy, come back
later", never "wait here".

The queue is only popped at the head, so merge order equals arrival order
regardless of which submap finishes loading first.
"""

from __future__ import annotations

import hashlib
import itertools
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, TypeVar

from submap_server.common import constants
from submap_server.backend.errors import QueueClosedError, SubmapStateError

T = TypeVar("T")


def make_map_key(robot_name: str, source_path: str, sequence: int) -> str:
    """Storage key for a submap. The sequence number keeps re-ingested paths unique."""
    digest = hashlib.sha1(source_path.encode("utf-8")).hexdigest()[: constants.MAP_KEY_DIGEST_LENGTH]
    return f"{robot_name}_{digest}_{sequence}"


@dataclass(eq=False)
class SubmapTask:
    robot_name: str
    source_path: str
    sequence: int
    map_key: str
    loaded: bool = False
    processed: bool = False
    merged: bool = False
    failed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    future: Optional[Future] = field(default=None, repr=False)

    def try_lock(self) -> bool:
        return self.lock.acquire(blocking=False)

    def unlock(self) -> None:
        self.lock.release()

    def is_locked(self) -> bool:
        return self.lock.locked()

    def is_ready(self) -> bool:
        return self.loaded and self.processed and not self.merged and not self.failed

    def mark_loaded(self) -> None:
        if self.failed:
            raise SubmapStateError(f"Submap '{self.map_key}' failed, cannot mark loaded")
        self.loaded = True

    def mark_processed(self) -> None:
        if not self.loaded:
            raise SubmapStateError(f"Submap '{self.map_key}' cannot be processed before it is loaded")
        self.processed = True

    def mark_merged(self) -> None:
        if not self.processed:
            raise SubmapStateError(f"Submap '{self.map_key}' cannot be merged before it is processed")
        self.merged = True

    def mark_failed(self) -> None:
        if self.merged:
            raise SubmapStateError(f"Submap '{self.map_key}' is already merged")
        self.failed = True


class SubmapQueue:
    """FIFO of SubmapTask, guarded by its own short-lived lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: Deque[SubmapTask] = deque()
        self._sequence = itertools.count()
        self._closed = False

    def enqueue(self, robot_name: str, source_path: str) -> SubmapTask:
        """Append a new task at the tail. Raises ValueError or QueueClosedError."""
        if not source_path:
            raise ValueError("Submap source path must not be empty")
        with self._lock:
            if self._closed:
                raise QueueClosedError(f"Queue closed, rejecting submap at '{source_path}'")
            sequence = next(self._sequence)
            task = SubmapTask(
                robot_name=robot_name,
                source_path=source_path,
                sequence=sequence,
                map_key=make_map_key(robot_name, source_path, sequence),
            )
            self._tasks.append(task)
        return task

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def head(self) -> Optional[SubmapTask]:
        with self._lock:
            return self._tasks[0] if self._tasks else None

    def complete_head(self, task: SubmapTask, merged: bool) -> None:
        """
        Retire the head task whose lock the caller holds.

        Marks it merged (or leaves it failed), releases its lock and pops it in
        one step under the queue lock, so probes through map_tasks() never see
        a retired task still locked.
        """
        with self._lock:
            if not self._tasks or self._tasks[0] is not task:
                raise SubmapStateError(f"Submap '{task.map_key}' is not at the head of the queue")
            if merged:
                task.mark_merged()
            task.unlock()
            self._tasks.popleft()

    def map_tasks(self, fn: Callable[[SubmapTask], T]) -> List[T]:
        """Apply a non-blocking `fn` to every queued task while holding the queue lock."""
        with self._lock:
            return [fn(task) for task in self._tasks]

    def snapshot(self) -> List[SubmapTask]:
        with self._lock:
            return list(self._tasks)

    def empty(self) -> bool:
        with self._lock:
            return not self._tasks

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)


class RobotMissionIndex:
    """robot name -> id of the mission it contributed. Written only by the merge loop."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._missions: Dict[str, str] = {}

    def update(self, robot_name: str, mission_id: str) -> None:
        with self._lock:
            self._missions[robot_name] = mission_id

    def get(self, robot_name: str) -> Optional[str]:
        with self._lock:
            return self._missions.get(robot_name)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._missions)
