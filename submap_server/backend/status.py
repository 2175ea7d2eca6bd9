"""
Status snapshot of the server.

The snapshot is derived on demand from the authoritative state (queue,
worker pool, command tables, robot -> mission index); nothing here is
stored or mutated.

Per-submap state from (loaded, processed, merged, failed) plus whether the
task lock is currently held by someone else:

    flags                   unlocked                locked
    ----------------------  ----------------------  ----------
    none                    queued for loading      loading
    loaded                  queued for processing   processing
    loaded+processed        ready to merge          merging
    merged                  merged                  INCONSISTENT
    failed                  failed                  failed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

from submap_server.common import constants
from submap_server.backend.submap_queue import SubmapTask

_logger = logging.getLogger(__name__)


class SubmapState(Enum):
    QUEUED_FOR_LOADING = "queued for loading"
    LOADING = "loading..."
    QUEUED_FOR_PROCESSING = "queued for processing"
    PROCESSING = "processing..."
    READY_TO_MERGE = "ready to merge"
    MERGING = "merging..."
    MERGED = "merged"
    FAILED = "failed"
    INCONSISTENT = "ERROR!"


def derive_submap_state(
    loaded: bool,
    processed: bool,
    merged: bool,
    locked: bool,
    failed: bool = False,
) -> SubmapState:
    if merged:
        return SubmapState.INCONSISTENT if locked else SubmapState.MERGED
    if failed:
        return SubmapState.FAILED
    if processed:
        return SubmapState.MERGING if locked else SubmapState.READY_TO_MERGE
    if loaded:
        return SubmapState.PROCESSING if locked else SubmapState.QUEUED_FOR_PROCESSING
    return SubmapState.LOADING if locked else SubmapState.QUEUED_FOR_LOADING


@dataclass
class SubmapStatus:
    robot_name: str
    map_key: str
    locked: bool
    state: SubmapState


@dataclass
class ServerStatus:
    submaps: List[SubmapStatus] = field(default_factory=list)
    active_workers: int = 0
    pool_size: int = 0
    submap_commands: Dict[str, str] = field(default_factory=dict)
    merging_busy: bool = False
    current_merge_command: str = ""
    robot_to_mission: Dict[str, str] = field(default_factory=dict)

    def has_inconsistency(self) -> bool:
        return any(s.state is SubmapState.INCONSISTENT for s in self.submaps)


def probe_submap(task: SubmapTask) -> SubmapStatus:
    """Classify one task, probing its lock without blocking."""
    locked_by_other = not task.try_lock()
    try:
        state = derive_submap_state(
            task.loaded, task.processed, task.merged, locked_by_other, task.failed
        )
    finally:
        if not locked_by_other:
            task.unlock()
    if state is SubmapState.INCONSISTENT:
        _logger.error(
            f"Submap '{task.map_key}' is merged and locked at the same time! Something is wrong!"
        )
    return SubmapStatus(
        robot_name=task.robot_name,
        map_key=task.map_key,
        locked=locked_by_other,
        state=state,
    )


def format_status(status: ServerStatus) -> str:
    sep = constants.STATUS_SEPARATOR
    lines = ["", sep, "[MapServerNode] Status:"]
    if not status.submaps:
        lines.append(" - No submaps to process or merge...")
    for submap in status.submaps:
        lock_label = "(locked)" if submap.locked else "(unlocked)"
        lines.append(
            f" - {submap.robot_name} - map '{submap.map_key}'\t: {lock_label} {submap.state.value}"
        )
    lines.append(sep)
    lines.append(f" - Active submap threads: {status.active_workers}/{status.pool_size}")
    for map_key, command in sorted(status.submap_commands.items()):
        lines.append(f"   - submap {map_key} - command: {command}")
    lines.append(f" - Active merging thread: {'yes' if status.merging_busy else 'no'}")
    if status.merging_busy:
        lines.append(f"   - current command: {status.current_merge_command}")
    lines.append(sep)
    lines.append("Robot to mission map: ")
    for robot_name, mission_id in sorted(status.robot_to_mission.items()):
        lines.append(f" - {robot_name}\t\t mission id: {mission_id}")
    lines.append(sep)
    return "\n".join(lines)
