"""
Global-frame pose lookup.

Given a robot, one of its sensors, a timestamp and a point in that sensor's
frame, returns the point and the sensor origin in the global frame:

    T_G_S = T_G_M ∘ T_M_B(t) ∘ T_B_S
    p_G        = T_G_S * p_S
    sensor_p_G = T_G_S * 0

T_G_M is the mission's global alignment, T_M_B(t) the interpolated body
pose and T_B_S the sensor extrinsic.

Timestamps outside the mission's recorded range are rejected two ways:
before the first vertex (or negative) the pose will never be available,
after the last vertex it may become available once more submaps arrive.

Lookups only read: the robot -> mission index and the merged map through
the store's read access.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import numpy as np

from submap_server.common import constants
from submap_server.common.transforms.se3 import se3_apply, se3_compose
from submap_server.backend.errors import MapNotFoundError
from submap_server.backend.map_store import MapStore
from submap_server.backend.pose_interpolator import PoseInterpolator
from submap_server.backend.submap_queue import RobotMissionIndex
from submap_server.backend.vi_map import SensorType

_logger = logging.getLogger(__name__)


class MapLookupStatus(Enum):
    SUCCESS = "success"
    NO_SUCH_MISSION = "no_such_mission"
    NO_SUCH_SENSOR = "no_such_sensor"
    POSE_NEVER_AVAILABLE = "pose_never_available"
    POSE_NOT_AVAILABLE_YET = "pose_not_available_yet"


@dataclass(frozen=True)
class MapLookupResult:
    status: MapLookupStatus
    p_G: Optional[np.ndarray] = None
    sensor_p_G: Optional[np.ndarray] = None

    @property
    def success(self) -> bool:
        return self.status is MapLookupStatus.SUCCESS


class MapLookup:
    def __init__(
        self,
        map_store: MapStore,
        mission_index: RobotMissionIndex,
        interpolator: Optional[PoseInterpolator] = None,
        map_key: str = constants.MERGED_MAP_KEY,
    ) -> None:
        self.map_store = map_store
        self.mission_index = mission_index
        self.interpolator = interpolator if interpolator is not None else PoseInterpolator()
        self.map_key = map_key

    def lookup(
        self,
        robot_name: str,
        sensor_type: Union[SensorType, str],
        timestamp_ns: int,
        p_S,
    ) -> MapLookupResult:
        if not robot_name:
            _logger.warning("Received map lookup with empty robot name!")
            return MapLookupResult(MapLookupStatus.NO_SUCH_MISSION)

        mission_id = self.mission_index.get(robot_name)
        if mission_id is None:
            _logger.warning(f"Received map lookup with invalid robot name: {robot_name}")
            return MapLookupResult(MapLookupStatus.NO_SUCH_MISSION)

        if timestamp_ns < 0:
            _logger.warning(f"Received map lookup with invalid timestamp: {timestamp_ns}ns")
            return MapLookupResult(MapLookupStatus.POSE_NEVER_AVAILABLE)

        try:
            sensor_type = SensorType(sensor_type)
        except ValueError:
            _logger.warning(f"Received map lookup with invalid sensor: {sensor_type!r}")
            return MapLookupResult(MapLookupStatus.NO_SUCH_SENSOR)

        p_S = np.asarray(p_S, dtype=float).reshape(3)

        try:
            with self.map_store.get_read_access(self.map_key) as vi_map:
                if not vi_map.has_mission(mission_id):
                    _logger.warning(f"Mission {mission_id} of robot {robot_name} is not in the map")
                    return MapLookupResult(MapLookupStatus.NO_SUCH_MISSION)
                mission = vi_map.get_mission(mission_id)

                if not mission.has_sensor(sensor_type) or mission.get_sensor_id(sensor_type) not in vi_map.sensors:
                    _logger.warning(
                        f"Received map lookup with {sensor_type.value} sensor, but there is no "
                        f"such sensor in the map for robot {robot_name}!"
                    )
                    return MapLookupResult(MapLookupStatus.NO_SUCH_SENSOR)
                T_B_S = vi_map.get_sensor_T_B_S(mission.get_sensor_id(sensor_type))
                T_G_M = vi_map.get_mission_base_frame_for_mission(mission_id).T_G_M

                try:
                    min_ns, max_ns = self.interpolator.get_time_range(vi_map, mission_id)
                except ValueError:
                    _logger.warning(f"Mission {mission_id} has no poses yet")
                    return MapLookupResult(MapLookupStatus.POSE_NOT_AVAILABLE_YET)

                if timestamp_ns < min_ns:
                    _logger.warning(
                        f"Received map lookup with timestamp that is before the selected robot "
                        f"mission, this position will never be available: {timestamp_ns}ns "
                        f"- earliest map time: {min_ns}ns"
                    )
                    return MapLookupResult(MapLookupStatus.POSE_NEVER_AVAILABLE)
                if timestamp_ns > max_ns:
                    _logger.warning(
                        f"Received map lookup with timestamp that is not yet available: "
                        f"{timestamp_ns}ns - most recent map time: {max_ns}ns"
                    )
                    return MapLookupResult(MapLookupStatus.POSE_NOT_AVAILABLE_YET)

                T_M_B = self.interpolator.get_poses_at_time(vi_map, mission_id, [timestamp_ns])[0]
        except MapNotFoundError:
            _logger.warning(f"Received map lookup for {robot_name} but there is no merged map yet")
            return MapLookupResult(MapLookupStatus.NO_SUCH_MISSION)

        T_G_S = se3_compose(se3_compose(T_G_M, T_M_B), T_B_S)
        return MapLookupResult(
            status=MapLookupStatus.SUCCESS,
            p_G=se3_apply(T_G_S, p_S),
            sensor_p_G=se3_apply(T_G_S, np.zeros(3)),
        )
