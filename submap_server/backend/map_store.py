"""
Keyed map storage.

Holds every map the server works on (submaps while they are loaded and
processed, and the merged global map) under a string key. Each stored map
has its own readers-writer lock:

- get_read_access(key): shared, used by lookups and status reads
- get_write_access(key): exclusive, used by commands, merges and renames

so a reader never observes a map halfway through a merge.

Maps are loaded from and saved to folders holding a single YAML file
(constants.MAP_FILE_NAME) in the layout documented in vi_map.py.
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List

import yaml

from submap_server.common import constants
from submap_server.backend.errors import MapKeyCollisionError, MapLoadError, MapNotFoundError
from submap_server.backend.vi_map import VIMap

_logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    Writer-preferring readers-writer lock.

    Not reentrant: a thread holding read access must not request it again
    while a writer may be waiting.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


@dataclass
class MapSaveConfig:
    overwrite_existing_map: bool = True


@dataclass
class _MapEntry:
    vi_map: VIMap
    lock: ReadWriteLock = field(default_factory=ReadWriteLock)


def read_map_folder(path: str) -> VIMap:
    """Parse the map stored in `path`. Raises MapLoadError."""
    map_file = os.path.join(path, constants.MAP_FILE_NAME)
    if not os.path.isfile(map_file):
        raise MapLoadError(f"No map file '{constants.MAP_FILE_NAME}' in folder '{path}'")
    try:
        with open(map_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return VIMap.from_dict(data)
    except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
        raise MapLoadError(f"Failed to load map from '{path}': {e}") from e


def write_map_folder(vi_map: VIMap, path: str) -> None:
    """Write `vi_map` into folder `path`, creating it if needed."""
    os.makedirs(path, exist_ok=True)
    with open(os.path.join(path, constants.MAP_FILE_NAME), "w", encoding="utf-8") as f:
        yaml.safe_dump(vi_map.to_dict(), f, sort_keys=False)


class MapStore:
    """Thread-safe keyed map storage with per-map read/write access."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._maps: Dict[str, _MapEntry] = {}

    def _entry(self, key: str) -> _MapEntry:
        with self._lock:
            entry = self._maps.get(key)
        if entry is None:
            raise MapNotFoundError(key)
        return entry

    def has_map(self, key: str) -> bool:
        with self._lock:
            return key in self._maps

    def get_all_map_keys(self) -> List[str]:
        with self._lock:
            return list(self._maps.keys())

    def add_map(self, key: str, vi_map: VIMap) -> None:
        with self._lock:
            if key in self._maps:
                raise MapKeyCollisionError(key)
            self._maps[key] = _MapEntry(vi_map=vi_map)

    def load_map_from_folder(self, path: str, key: str) -> None:
        """Load the map in `path` under `key`. Raises MapKeyCollisionError or MapLoadError."""
        if self.has_map(key):
            raise MapKeyCollisionError(key)
        vi_map = read_map_folder(path)
        self.add_map(key, vi_map)
        _logger.debug(f"Loaded map '{key}' from '{path}' ({vi_map.num_missions()} missions)")

    def save_map_to_folder(self, key: str, path: str, save_config: MapSaveConfig) -> bool:
        map_file = os.path.join(path, constants.MAP_FILE_NAME)
        if os.path.exists(map_file) and not save_config.overwrite_existing_map:
            _logger.error(f"Map already exists at '{path}' and overwriting is disabled")
            return False
        try:
            with self.get_read_access(key) as vi_map:
                write_map_folder(vi_map, path)
        except MapNotFoundError:
            _logger.error(f"Cannot save map '{key}', it is not in storage")
            return False
        except (OSError, yaml.YAMLError) as e:
            _logger.error(f"Failed to save map '{key}' to '{path}': {e}")
            return False
        return True

    def rename_map(self, old_key: str, new_key: str) -> None:
        with self._lock:
            if old_key not in self._maps:
                raise MapNotFoundError(old_key)
            if new_key in self._maps:
                raise MapKeyCollisionError(new_key)
            self._maps[new_key] = self._maps.pop(old_key)

    def merge_submap_into_base_map(self, base_map_key: str, submap_key: str) -> bool:
        """Merge submap into base map under exclusive base access. The submap is kept."""
        try:
            base = self._entry(base_map_key)
            submap = self._entry(submap_key)
        except MapNotFoundError as e:
            _logger.error(f"Cannot merge '{submap_key}' into '{base_map_key}': {e}")
            return False
        if base is submap:
            _logger.error(f"Cannot merge map '{base_map_key}' into itself")
            return False

        with base.lock.write_locked(), submap.lock.read_locked():
            try:
                base.vi_map.merge(submap.vi_map)
            except (KeyError, ValueError) as e:
                _logger.error(f"Merging '{submap_key}' into '{base_map_key}' failed: {e}")
                return False
        return True

    def delete_map(self, key: str) -> None:
        entry = self._entry(key)
        # Wait out current readers/writers before dropping the map.
        with entry.lock.write_locked():
            with self._lock:
                if self._maps.get(key) is entry:
                    del self._maps[key]

    @contextmanager
    def get_read_access(self, key: str) -> Iterator[VIMap]:
        entry = self._entry(key)
        with entry.lock.read_locked():
            yield entry.vi_map

    @contextmanager
    def get_write_access(self, key: str) -> Iterator[VIMap]:
        entry = self._entry(key)
        with entry.lock.write_locked():
            yield entry.vi_map
