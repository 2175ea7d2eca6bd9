"""
=============================================================================
MAP SERVER NODE - Submap ingestion, ordered merging and pose lookup
=============================================================================

Threads:
    caller threads ── submit() ──▶ SubmapQueue (tail) + ThreadPool job
                                          │
    ThreadPool (N workers)                ▼
        load submap ▶ loaded ▶ submap commands ▶ processed
                                          │
    MapMerging thread                     ▼
        head of queue, try_lock ▶ merge into merged map ▶ pop
        global map commands ▶ periodic backup
    Status thread
        snapshot of queue / pool / merge state ▶ log
    caller threads ── lookup() ──▶ read access on the merged map

Shutdown order: stop accepting submaps ▶ join MapMerging ▶ drain
ThreadPool ▶ join Status.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
import time
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from submap_server.common import constants
from submap_server.common.config import load_server_params
from submap_server.common.param_models import ServerParams
from submap_server.backend.command_engine import CommandEngine, CommandStatus, MapConsole
from submap_server.backend.errors import (
    MapNotFoundError,
    QueueClosedError,
    WorkerPoolStoppedError,
)
from submap_server.backend.map_lookup import MapLookup, MapLookupResult
from submap_server.backend.map_store import MapSaveConfig, MapStore
from submap_server.backend.pose_interpolator import PoseInterpolator
from submap_server.backend.status import ServerStatus, format_status, probe_submap
from submap_server.backend.submap_queue import RobotMissionIndex, SubmapQueue, SubmapTask
from submap_server.backend.vi_map import SensorType
from submap_server.backend.worker_pool import GROUP_ID_NON_EXCLUSIVE, ThreadPool

_logger = logging.getLogger(__name__)

MERGED_MAP_KEY = constants.MERGED_MAP_KEY


class MapServerNode:
    def __init__(
        self,
        params: Optional[ServerParams] = None,
        map_store: Optional[MapStore] = None,
        command_engine: Optional[CommandEngine] = None,
        interpolator: Optional[PoseInterpolator] = None,
    ) -> None:
        self.params = params if params is not None else ServerParams()
        self.map_store = map_store if map_store is not None else MapStore()
        self.command_engine = command_engine if command_engine is not None else CommandEngine(self.map_store)
        self.mission_index = RobotMissionIndex()
        self.submap_queue = SubmapQueue()
        self.map_lookup = MapLookup(self.map_store, self.mission_index, interpolator, MERGED_MAP_KEY)

        self._submap_loading_pool = ThreadPool(
            self.params.submap_loading_thread_pool_size, name="submap_loading"
        )

        self._mutex = threading.Lock()
        self._shutdown_requested = threading.Event()
        self._is_running = False
        self._merge_thread: Optional[threading.Thread] = None
        self._status_thread: Optional[threading.Thread] = None

        # Owned by the MapMerging thread.
        self._received_first_submap = False
        self._time_of_last_map_backup_s = time.monotonic()

        # Observational state for the status loop.
        self._merging_thread_busy = threading.Event()
        self._submap_commands_lock = threading.Lock()
        self._submap_commands: Dict[str, str] = {}
        self._merge_command_lock = threading.Lock()
        self._current_merge_command = ""

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        with self._mutex:
            _logger.info("[MapServerNode] Starting...")
            if self._shutdown_requested.is_set():
                _logger.error(
                    "[MapServerNode] Cannot start node (again), a shutdown has already been requested!"
                )
                return False
            if self._is_running:
                _logger.warning("[MapServerNode] Already running.")
                return True

            self._time_of_last_map_backup_s = time.monotonic()

            _logger.info("[MapServerNode] launching MapMerging thread...")
            self._merge_thread = threading.Thread(target=self._merge_loop, name="MapMerging", daemon=True)
            self._merge_thread.start()

            _logger.info("[MapServerNode] launching Status thread...")
            self._status_thread = threading.Thread(target=self._status_loop, name="Status", daemon=True)
            self._status_thread.start()

            self._is_running = True
            _logger.info("[MapServerNode] MapMerging - thread launched.")
            return True

    def shutdown(self) -> None:
        with self._mutex:
            if self._shutdown_requested.is_set():
                return
            _logger.info("[MapServerNode] Shutting down...")
            self._shutdown_requested.set()
            self.submap_queue.close()

            _logger.info("[MapServerNode] Stopping MapMerging thread...")
            if self._merge_thread is not None:
                self._merge_thread.join()
            _logger.info("[MapServerNode] Done.")

            _logger.info("[MapServerNode] Stopping SubmapProcessing threads...")
            self._submap_loading_pool.stop()
            self._submap_loading_pool.wait_for_empty_queue()
            self._submap_loading_pool.join()
            _logger.info("[MapServerNode] Done.")

            _logger.info("[MapServerNode] Stopping Status thread...")
            if self._status_thread is not None:
                self._status_thread.join()
            _logger.info("[MapServerNode] Done.")

            self._is_running = False

    def __enter__(self) -> "MapServerNode":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested.is_set()

    def has_merged_map(self) -> bool:
        return self.map_store.has_map(MERGED_MAP_KEY)

    def submap_tasks(self) -> List[SubmapTask]:
        return self.submap_queue.snapshot()

    def robot_to_mission_map(self) -> Dict[str, str]:
        return self.mission_index.snapshot()

    # =========================================================================
    # Ingestion
    # =========================================================================

    def submit(self, robot_name: str, submap_path: str) -> bool:
        """Queue a submap for loading, processing and merging. False if rejected."""
        if not submap_path:
            _logger.error("[MapServerNode] Received submap with empty path, ignoring it.")
            return False
        if not robot_name:
            _logger.warning(
                f"[MapServerNode] Submap at '{submap_path}' has no robot name, "
                "it will not be available for lookups."
            )

        with self._mutex:
            if self._shutdown_requested.is_set():
                _logger.warning(
                    f"[MapServerNode] shutdown was requested, will ignore submap at '{submap_path}'."
                )
                return False
            try:
                task = self.submap_queue.enqueue(robot_name, submap_path)
            except QueueClosedError as e:
                _logger.warning(f"[MapServerNode] {e}")
                return False

            _logger.info(f"[MapServerNode] launching SubmapProcessing job for submap at '{submap_path}'.")
            try:
                task.future = self._submap_loading_pool.enqueue_ordered(
                    GROUP_ID_NON_EXCLUSIVE, lambda: self._load_and_process_submap(task)
                )
            except WorkerPoolStoppedError as e:
                _logger.error(f"[MapServerNode] {e}; submap '{task.map_key}' is dropped.")
                task.mark_failed()
                return False
        return True

    def _set_submap_command(self, map_key: str, command: Optional[str]) -> None:
        with self._submap_commands_lock:
            if command is None:
                self._submap_commands.pop(map_key, None)
            else:
                self._submap_commands[map_key] = command

    def _load_and_process_submap(self, task: SubmapTask) -> bool:
        """Worker job. Holds the task lock on every path; load errors propagate to the job future."""
        with task.lock:
            _logger.debug(
                f"[MapServerNode] SubmapProcessing - loading and processing submap from '{task.source_path}'..."
            )
            self._set_submap_command(task.map_key, constants.COMMAND_LOADING)
            try:
                if self._shutdown_requested.is_set():
                    _logger.warning(
                        f"[MapServerNode] SubmapProcessing - shutdown was requested, skipping load of "
                        f"submap with key '{task.map_key}'."
                    )
                    return False
                try:
                    self.map_store.load_map_from_folder(task.source_path, task.map_key)
                except Exception as e:
                    task.mark_failed()
                    _logger.error(
                        f"[MapServerNode] SubmapProcessing - failed to load submap '{task.map_key}' "
                        f"from '{task.source_path}': {e}"
                    )
                    raise
                task.mark_loaded()

                _logger.debug(
                    f"[MapServerNode] SubmapProcessing - finished loading submap with key "
                    f"'{task.map_key}', starts processing..."
                )

                console = self.command_engine.console(
                    f"submap_processing_console_{task.map_key}", task.map_key
                )
                completed = self._run_submap_commands(console, task, self._shutdown_requested)
                if not completed:
                    _logger.warning(
                        f"[MapServerNode] SubmapProcessing - shutdown was requested, aborting "
                        f"processing of submap with key '{task.map_key}'..."
                    )
                    return False

                task.mark_processed()
                _logger.debug(
                    f"[MapServerNode] SubmapProcessing - finished processing submap with key '{task.map_key}'."
                )
                return True
            finally:
                self._set_submap_command(task.map_key, None)

    def _run_submap_commands(
        self,
        console: MapConsole,
        task: SubmapTask,
        cancel: threading.Event,
    ) -> bool:
        """Run the configured submap commands. Returns False if cancelled between commands."""
        for command in self.params.submap_commands:
            if cancel.is_set():
                return False
            self._set_submap_command(task.map_key, command)
            _logger.debug(f"[MapServerNode] SubmapProcessing console command: {command}")
            if console.run_command(command) is not CommandStatus.SUCCESS:
                _logger.error(
                    f"[MapServerNode] SubmapProcessing - failed to run command: '{command}' "
                    f"on submap '{task.map_key}'."
                )
            else:
                _logger.debug("[MapServerNode] SubmapProcessing console command successful.")
        return not cancel.is_set()

    # =========================================================================
    # Merging
    # =========================================================================

    def _set_merge_command(self, command: str) -> None:
        with self._merge_command_lock:
            self._current_merge_command = command

    def _merge_loop(self) -> None:
        poll_s = self.params.merge_poll_interval_s
        while not self._shutdown_requested.is_set():
            if not self._received_first_submap and self.submap_queue.empty():
                _logger.debug("[MapServerNode] MapMerging - waiting for first submap to be loaded...")
                self._shutdown_requested.wait(poll_s)
                continue

            self._merging_thread_busy.set()
            try:
                if _logger.isEnabledFor(logging.DEBUG):
                    keys = sorted(self.map_store.get_all_map_keys())
                    _logger.debug(
                        f"[MapServerNode] MapMerging - Loaded maps ({len(keys)} total):"
                        + "".join(f"\n  {key}" for key in keys)
                    )

                self._merge_ready_submaps()

                if self._received_first_submap:
                    self._run_global_map_commands()
                    self._maybe_backup_map()
            except Exception:
                _logger.exception("[MapServerNode] MapMerging - unexpected error, continuing")
            finally:
                self._merging_thread_busy.clear()
            self._shutdown_requested.wait(poll_s)

    def _merge_ready_submaps(self) -> None:
        """Merge ready submaps strictly from the head; stop at the first one that is busy or not ready."""
        while not self._shutdown_requested.is_set():
            task = self.submap_queue.head()
            if task is None:
                return
            # Held lock: a worker is still on this submap. Never skip ahead of it.
            if not task.try_lock():
                return

            if task.failed:
                _logger.error(
                    f"[MapServerNode] MapMerging - submap '{task.map_key}' from '{task.source_path}' "
                    "failed, removing it from the queue."
                )
                self._discard_submap(task)
                self.submap_queue.complete_head(task, merged=False)
                continue

            if not task.is_ready():
                task.unlock()
                return

            _logger.debug(f"[MapServerNode] MapMerging - submap with key '{task.map_key}' is ready to be merged.")
            try:
                merged = self._merge_submap(task)
            except Exception:
                _logger.exception(f"[MapServerNode] MapMerging - merging submap '{task.map_key}' raised")
                merged = False
            if merged:
                self.submap_queue.complete_head(task, merged=True)
            else:
                task.mark_failed()
                self._discard_submap(task)
                self.submap_queue.complete_head(task, merged=False)

    def _discard_submap(self, task: SubmapTask) -> None:
        # Only maps this task loaded itself are deleted.
        if task.loaded and self.map_store.has_map(task.map_key):
            self.map_store.delete_map(task.map_key)

    def _merge_submap(self, task: SubmapTask) -> bool:
        """Merge one locked, processed submap. False if it had to be quarantined."""
        self._set_merge_command(constants.COMMAND_MERGING_SUBMAP)
        try:
            with self.map_store.get_read_access(task.map_key) as submap:
                num_missions = submap.num_missions()
                mission_id = submap.get_id_of_first_mission() if num_missions == 1 else None
        except MapNotFoundError:
            _logger.error(f"[MapServerNode] MapMerging - submap '{task.map_key}' is not in storage!")
            return False
        if mission_id is None:
            _logger.error(
                f"[MapServerNode] MapMerging - submap '{task.map_key}' has {num_missions} missions, "
                "expected exactly one."
            )
            return False

        if not self.map_store.has_map(MERGED_MAP_KEY):
            _logger.debug(
                f"[MapServerNode] MapMerging - first submap is used to initialize merged map "
                f"with key '{MERGED_MAP_KEY}'."
            )
            self.map_store.rename_map(task.map_key, MERGED_MAP_KEY)
            with self.map_store.get_write_access(MERGED_MAP_KEY) as merged_map:
                # The first mission defines the global frame.
                merged_map.get_mission_base_frame_for_mission(mission_id).is_T_G_M_known = True
                if self.params.resource_folder:
                    merged_map.resource_folder = self.params.resource_folder
        else:
            _logger.debug(
                f"[MapServerNode] MapMerging - merge submap into merged map with key '{MERGED_MAP_KEY}'"
            )
            if not self.map_store.merge_submap_into_base_map(MERGED_MAP_KEY, task.map_key):
                _logger.error(
                    f"[MapServerNode] MapMerging - failed to merge submap '{task.map_key}' into merged map."
                )
                return False
            self.map_store.delete_map(task.map_key)

        if task.robot_name:
            self.mission_index.update(task.robot_name, mission_id)
        else:
            _logger.warning(
                f"[MapServerNode] Submap with key {task.map_key} does not have a robot name associated with it!"
            )
        self._received_first_submap = True
        _logger.info(f"[MapServerNode] MapMerging - merged submap '{task.map_key}' (mission {mission_id}).")
        return True

    def _run_global_map_commands(self) -> None:
        _logger.debug(
            f"[MapServerNode] MapMerging - processing global map commands on map with key '{MERGED_MAP_KEY}'"
        )
        console = self.command_engine.console("global_map_console", MERGED_MAP_KEY)
        for command in self.params.global_map_commands:
            if self._shutdown_requested.is_set():
                break
            self._set_merge_command(command)
            _logger.debug(f"[MapServerNode] MapMerging console command: {command}")
            if console.run_command(command) is not CommandStatus.SUCCESS:
                _logger.error(f"[MapServerNode] MapMerging - failed to run command: '{command}'.")
            else:
                _logger.debug("[MapServerNode] MapMerging console command successful.")
        self._set_merge_command("")

    def _maybe_backup_map(self) -> None:
        interval_s = self.params.backup_interval_s
        if interval_s <= 0.0:
            return
        elapsed_s = time.monotonic() - self._time_of_last_map_backup_s
        if elapsed_s < interval_s:
            return
        _logger.info("[MapServerNode] MapMerging - saving map as backup.")
        self._set_merge_command(constants.COMMAND_SAVE_MAP)
        if not self.save_map():
            _logger.error("[MapServerNode] MapMerging - backup failed.")
        self._set_merge_command("")
        # Backups stay on the interval grid anchored at start(), whatever the poll delay.
        self._time_of_last_map_backup_s += interval_s * (elapsed_s // interval_s)

    def save_map(self, path: Optional[str] = None) -> bool:
        """Save the merged map to `path`, or to the configured merged map folder."""
        if path is None:
            path = self.params.merged_map_folder
            if not path:
                _logger.error("[MapServerNode] Cannot save map because merged_map_folder is empty!")
                return False
        _logger.info(f"[MapServerNode] Saving map to '{path}'.")
        if not self.map_store.has_map(MERGED_MAP_KEY):
            _logger.warning("[MapServerNode] No merged map to save yet.")
            return False
        return self.map_store.save_map_to_folder(
            MERGED_MAP_KEY,
            path,
            MapSaveConfig(overwrite_existing_map=self.params.overwrite_existing_map),
        )

    # =========================================================================
    # Status
    # =========================================================================

    def status_snapshot(self) -> ServerStatus:
        submaps = self.submap_queue.map_tasks(probe_submap)
        with self._submap_commands_lock:
            submap_commands = dict(self._submap_commands)
        merging_busy = self._merging_thread_busy.is_set()
        with self._merge_command_lock:
            current_merge_command = self._current_merge_command
        return ServerStatus(
            submaps=submaps,
            active_workers=self._submap_loading_pool.num_active_threads(),
            pool_size=self._submap_loading_pool.num_threads,
            submap_commands=submap_commands,
            merging_busy=merging_busy,
            current_merge_command=current_merge_command,
            robot_to_mission=self.mission_index.snapshot(),
        )

    def _status_loop(self) -> None:
        while not self._shutdown_requested.is_set():
            _logger.info(format_status(self.status_snapshot()))
            self._shutdown_requested.wait(self.params.status_interval_s)

    # =========================================================================
    # Lookup
    # =========================================================================

    def lookup(
        self,
        robot_name: str,
        sensor_type: Union[SensorType, str],
        timestamp_ns: int,
        p_S: Union[Sequence[float], np.ndarray],
    ) -> MapLookupResult:
        return self.map_lookup.lookup(robot_name, sensor_type, timestamp_ns, p_S)


# =============================================================================
# Entry point
# =============================================================================


def _parse_submap_arg(value: str) -> Tuple[str, str]:
    robot_name, sep, path = value.partition("=")
    if not sep or not path:
        raise argparse.ArgumentTypeError(f"Expected ROBOT=PATH, got '{value}'")
    return robot_name, path


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Submap merging server")
    parser.add_argument("--config", help="YAML file with server parameters")
    parser.add_argument(
        "--submap",
        action="append",
        type=_parse_submap_arg,
        default=[],
        metavar="ROBOT=PATH",
        help="Submap folder to ingest at startup (repeatable)",
    )
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s",
    )

    params = load_server_params(args.config) if args.config else ServerParams()
    node = MapServerNode(params)

    stop = threading.Event()

    def _request_stop(signum, frame):
        _logger.info(f"Received signal {signum}, stopping...")
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    node.start()
    for robot_name, path in args.submap:
        node.submit(robot_name, path)

    try:
        while not stop.wait(0.5):
            pass
    finally:
        node.shutdown()
        if params.merged_map_folder:
            node.save_map()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
