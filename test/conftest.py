import os
import sys
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pytest

# Ensure local package import works for pytest collection.
_TEST_DIR = os.path.dirname(__file__)
_PKG_ROOT = os.path.abspath(os.path.join(_TEST_DIR, ".."))
if _PKG_ROOT not in sys.path:
    sys.path.insert(0, _PKG_ROOT)

from submap_server.backend.map_store import MapSaveConfig, MapStore, write_map_folder  # noqa: E402
from submap_server.backend.vi_map import (  # noqa: E402
    Mission,
    MissionBaseFrame,
    Sensor,
    SensorType,
    Vertex,
    VIMap,
)
from submap_server.common.param_models import ServerParams  # noqa: E402

SECOND_NS = 1_000_000_000


# =============================================================================
# Synthetic maps
# =============================================================================


def make_vi_map(
    mission_id: str,
    stamps_ns: Sequence[int],
    poses: Optional[Sequence[Sequence[float]]] = None,
    sensor_types: Sequence[SensorType] = (SensorType.IMU, SensorType.LIDAR),
    T_B_S: Optional[Dict[SensorType, Sequence[float]]] = None,
    T_G_M: Optional[Sequence[float]] = None,
) -> VIMap:
    """
    Single-mission map. Default poses move 1 m along x per second of stamp.

    Sensor ids are derived from the mission id so consecutive submaps of the
    same mission share them.
    """
    if poses is None:
        poses = [[t / SECOND_NS, 0.0, 0.0, 0.0, 0.0, 0.0] for t in stamps_ns]
    T_B_S = T_B_S or {}
    vi_map = VIMap()
    sensor_ids = {}
    for sensor_type in sensor_types:
        sensor_id = f"{mission_id}_{sensor_type.value}"
        vi_map.add_sensor(
            Sensor(
                sensor_id=sensor_id,
                sensor_type=sensor_type,
                T_B_S=np.asarray(T_B_S.get(sensor_type, np.zeros(6)), dtype=float),
            )
        )
        sensor_ids[sensor_type] = sensor_id
    vi_map.add_mission(
        Mission(
            mission_id=mission_id,
            base_frame=MissionBaseFrame(
                T_G_M=np.asarray(T_G_M if T_G_M is not None else np.zeros(6), dtype=float)
            ),
            sensor_ids=sensor_ids,
            vertices=[
                Vertex(timestamp_ns=int(t), T_M_B=np.asarray(p, dtype=float))
                for t, p in zip(stamps_ns, poses)
            ],
        )
    )
    return vi_map


@pytest.fixture
def submap_factory(tmp_path) -> Callable[..., str]:
    """Write a single-mission submap folder and return its path."""
    counter = {"n": 0}

    def _make(mission_id: str, stamps_ns: Sequence[int], **kwargs) -> str:
        counter["n"] += 1
        folder = tmp_path / f"submap_{counter['n']:03d}_{mission_id}"
        write_map_folder(make_vi_map(mission_id, stamps_ns, **kwargs), str(folder))
        return str(folder)

    return _make


# =============================================================================
# Instrumented store
# =============================================================================


class InstrumentedMapStore(MapStore):
    """MapStore that records merge order, concurrent loads and saves, with optional load delays."""

    def __init__(self, load_delays: Optional[Dict[str, float]] = None) -> None:
        super().__init__()
        self.load_delays: Dict[str, float] = dict(load_delays or {})
        self.merged_submaps: List[str] = []
        self.saves: List[Tuple[str, str]] = []
        self.max_concurrent_loads = 0
        self._loads_in_flight = 0
        self._stats_lock = threading.Lock()

    def load_map_from_folder(self, path: str, key: str) -> None:
        with self._stats_lock:
            self._loads_in_flight += 1
            self.max_concurrent_loads = max(self.max_concurrent_loads, self._loads_in_flight)
        try:
            time.sleep(self.load_delays.get(path, 0.0))
            super().load_map_from_folder(path, key)
        finally:
            with self._stats_lock:
                self._loads_in_flight -= 1

    def rename_map(self, old_key: str, new_key: str) -> None:
        super().rename_map(old_key, new_key)
        with self._stats_lock:
            self.merged_submaps.append(old_key)

    def merge_submap_into_base_map(self, base_map_key: str, submap_key: str) -> bool:
        ok = super().merge_submap_into_base_map(base_map_key, submap_key)
        if ok:
            with self._stats_lock:
                self.merged_submaps.append(submap_key)
        return ok

    def save_map_to_folder(self, key: str, path: str, save_config: MapSaveConfig) -> bool:
        ok = super().save_map_to_folder(key, path, save_config)
        with self._stats_lock:
            self.saves.append((key, path))
        return ok


@pytest.fixture
def instrumented_store() -> InstrumentedMapStore:
    return InstrumentedMapStore()


# =============================================================================
# Test Utility Fixtures
# =============================================================================


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.005) -> bool:
    """Poll `predicate` until true or `timeout` seconds passed."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def fast_params() -> ServerParams:
    """Server parameters with short cadences and no periodic backups."""
    return ServerParams(
        submap_loading_thread_pool_size=2,
        backup_interval_s=0.0,
        merge_poll_interval_s=0.01,
        status_interval_s=0.05,
    )
