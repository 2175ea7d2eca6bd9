"""
Named map processing commands.

Commands are configured as strings, e.g. "sort_vertices" or
"map_stats --verbose". The first token names the command; `--flag=value`
and bare `--flag` tokens become a flags dict handed to the command.

A MapConsole is a lightweight per-job handle: it selects one map key and
runs commands against that map under exclusive write access. Commands
return True on success; a False result or an exception counts as failure.
"""

from __future__ import annotations

import logging
import shlex
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from submap_server.backend.map_store import MapStore
from submap_server.backend.errors import MapNotFoundError
from submap_server.backend.vi_map import VIMap

_logger = logging.getLogger(__name__)

CommandFn = Callable[[VIMap, Dict[str, str]], bool]


class CommandStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN_COMMAND = "unknown_command"


def parse_command(command: str) -> Tuple[str, Dict[str, str]]:
    """Split "name --a=1 --b" into ("name", {"a": "1", "b": "true"})."""
    tokens = shlex.split(command)
    if not tokens:
        raise ValueError("Empty command")
    name, flags = tokens[0], {}
    for token in tokens[1:]:
        if not token.startswith("--") or len(token) == 2:
            raise ValueError(f"Unexpected argument '{token}' in command '{command}'")
        key, sep, value = token[2:].partition("=")
        flags[key] = value if sep else "true"
    return name, flags


# =============================================================================
# Built-in commands
# =============================================================================


def _map_stats(vi_map: VIMap, flags: Dict[str, str]) -> bool:
    _logger.info(
        f"Map stats: missions={vi_map.num_missions()} vertices={vi_map.num_vertices()} "
        f"sensors={len(vi_map.sensors)}"
    )
    for mission in vi_map.missions.values():
        time_range = mission.time_range_ns()
        _logger.info(
            f"  mission {mission.mission_id}: vertices={mission.num_vertices()} "
            f"time_range_ns={time_range} T_G_M known={mission.base_frame.is_T_G_M_known}"
        )
    return True


def _check_consistency(vi_map: VIMap, flags: Dict[str, str]) -> bool:
    ok = True
    for mission in vi_map.missions.values():
        stamps = [v.timestamp_ns for v in mission.vertices]
        if any(b <= a for a, b in zip(stamps, stamps[1:])):
            _logger.warning(f"Mission {mission.mission_id}: vertex timestamps not strictly increasing")
            ok = False
        for sensor_type, sensor_id in mission.sensor_ids.items():
            if sensor_id not in vi_map.sensors:
                _logger.warning(f"Mission {mission.mission_id}: missing {sensor_type.value} sensor '{sensor_id}'")
                ok = False
    if vi_map.missions:
        first = vi_map.get_mission(vi_map.get_id_of_first_mission())
        if flags.get("require_known_alignment") == "true" and not first.base_frame.is_T_G_M_known:
            _logger.warning(f"First mission {first.mission_id} has unknown global alignment")
            ok = False
    return ok


def _sort_vertices(vi_map: VIMap, flags: Dict[str, str]) -> bool:
    dropped = sum(m.sort_vertices() for m in vi_map.missions.values())
    if dropped:
        _logger.info(f"sort_vertices: dropped {dropped} vertices with repeated timestamps")
    return True


DEFAULT_COMMANDS: Dict[str, CommandFn] = {
    "map_stats": _map_stats,
    "check_consistency": _check_consistency,
    "sort_vertices": _sort_vertices,
}


class CommandEngine:
    """Registry of named commands run against maps in a MapStore."""

    def __init__(self, map_store: MapStore, register_defaults: bool = True) -> None:
        self.map_store = map_store
        self._lock = threading.Lock()
        self._commands: Dict[str, CommandFn] = {}
        if register_defaults:
            for name, fn in DEFAULT_COMMANDS.items():
                self.register(name, fn)

    def register(self, name: str, fn: CommandFn) -> None:
        with self._lock:
            self._commands[name] = fn

    def command_names(self) -> List[str]:
        with self._lock:
            return sorted(self._commands)

    def get(self, name: str) -> Optional[CommandFn]:
        with self._lock:
            return self._commands.get(name)

    def console(self, name: str, map_key: Optional[str] = None) -> "MapConsole":
        console = MapConsole(self, name)
        if map_key is not None:
            console.set_selected_map_key(map_key)
        return console


class MapConsole:
    """Runs commands against one selected map."""

    def __init__(self, engine: CommandEngine, name: str) -> None:
        self.engine = engine
        self.name = name
        self.selected_map_key: Optional[str] = None

    def set_selected_map_key(self, map_key: str) -> None:
        self.selected_map_key = map_key

    def run_command(self, command: str) -> CommandStatus:
        try:
            name, flags = parse_command(command)
        except ValueError as e:
            _logger.error(f"[{self.name}] Cannot parse command '{command}': {e}")
            return CommandStatus.UNKNOWN_COMMAND

        fn = self.engine.get(name)
        if fn is None:
            _logger.error(
                f"[{self.name}] Unknown command '{name}', available: {', '.join(self.engine.command_names())}"
            )
            return CommandStatus.UNKNOWN_COMMAND
        if self.selected_map_key is None:
            _logger.error(f"[{self.name}] No map selected for command '{name}'")
            return CommandStatus.FAILURE

        try:
            with self.engine.map_store.get_write_access(self.selected_map_key) as vi_map:
                ok = fn(vi_map, flags)
        except MapNotFoundError as e:
            _logger.error(f"[{self.name}] Command '{name}': {e}")
            return CommandStatus.FAILURE
        except Exception:
            _logger.error(
                f"[{self.name}] Command '{name}' raised on map '{self.selected_map_key}'",
                exc_info=True,
            )
            return CommandStatus.FAILURE
        return CommandStatus.SUCCESS if ok else CommandStatus.FAILURE
