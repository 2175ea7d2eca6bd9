"""
Tests for submap tasks, the arrival-ordered queue and the robot index.
"""

import threading

import pytest

from submap_server.backend.errors import QueueClosedError, SubmapStateError
from submap_server.backend.submap_queue import RobotMissionIndex, SubmapQueue, make_map_key


class TestMapKey:
    def test_same_path_different_sequence_is_unique(self):
        assert make_map_key("r", "/a", 0) != make_map_key("r", "/a", 1)

    def test_key_contains_robot_and_sequence(self):
        key = make_map_key("robot_a", "/data/sub0", 7)
        assert key.startswith("robot_a_")
        assert key.endswith("_7")

    def test_reingested_path_gets_new_key(self):
        queue = SubmapQueue()
        first = queue.enqueue("r", "/a")
        second = queue.enqueue("r", "/a")
        assert first.map_key != second.map_key


class TestSubmapTask:
    def test_flags_follow_lifecycle(self):
        task = SubmapQueue().enqueue("r", "/a")
        assert not task.is_ready()
        task.mark_loaded()
        task.mark_processed()
        assert task.is_ready()
        task.mark_merged()
        assert not task.is_ready()
        assert task.loaded and task.processed and task.merged

    def test_processed_before_loaded_raises(self):
        task = SubmapQueue().enqueue("r", "/a")
        with pytest.raises(SubmapStateError):
            task.mark_processed()

    def test_merged_before_processed_raises(self):
        task = SubmapQueue().enqueue("r", "/a")
        task.mark_loaded()
        with pytest.raises(SubmapStateError):
            task.mark_merged()

    def test_failed_task_is_never_ready(self):
        task = SubmapQueue().enqueue("r", "/a")
        task.mark_failed()
        with pytest.raises(SubmapStateError):
            task.mark_loaded()
        assert not task.is_ready()

    def test_try_lock_is_non_blocking(self):
        task = SubmapQueue().enqueue("r", "/a")
        assert task.try_lock()
        result = []
        t = threading.Thread(target=lambda: result.append(task.try_lock()))
        t.start()
        t.join(1.0)
        assert result == [False]
        task.unlock()
        assert not task.is_locked()


class TestSubmapQueue:
    def test_fifo_order(self):
        queue = SubmapQueue()
        tasks = [queue.enqueue("r", f"/sub{i}") for i in range(3)]
        assert queue.snapshot() == tasks
        assert queue.head() is tasks[0]
        assert len(queue) == 3

    def test_empty_path_rejected(self):
        queue = SubmapQueue()
        with pytest.raises(ValueError):
            queue.enqueue("r", "")
        assert queue.empty()

    def test_closed_queue_rejects(self):
        queue = SubmapQueue()
        queue.close()
        with pytest.raises(QueueClosedError):
            queue.enqueue("r", "/a")

    def test_complete_head_pops_and_unlocks(self):
        queue = SubmapQueue()
        task = queue.enqueue("r", "/a")
        queue.enqueue("r", "/b")
        task.mark_loaded()
        task.mark_processed()
        assert task.try_lock()
        queue.complete_head(task, merged=True)
        assert task.merged
        assert not task.is_locked()
        assert len(queue) == 1
        assert queue.head().source_path == "/b"

    def test_complete_head_without_merge_keeps_failed(self):
        queue = SubmapQueue()
        task = queue.enqueue("r", "/a")
        task.mark_failed()
        assert task.try_lock()
        queue.complete_head(task, merged=False)
        assert task.failed and not task.merged
        assert queue.empty()

    def test_complete_non_head_raises(self):
        queue = SubmapQueue()
        queue.enqueue("r", "/a")
        second = queue.enqueue("r", "/b")
        with pytest.raises(SubmapStateError):
            queue.complete_head(second, merged=False)

    def test_map_tasks(self):
        queue = SubmapQueue()
        queue.enqueue("r0", "/a")
        queue.enqueue("r1", "/b")
        assert queue.map_tasks(lambda t: t.robot_name) == ["r0", "r1"]


class TestRobotMissionIndex:
    def test_update_overwrites(self):
        index = RobotMissionIndex()
        index.update("r", "m0")
        index.update("r", "m1")
        assert index.get("r") == "m1"
        assert index.get("other") is None
        assert index.snapshot() == {"r": "m1"}
