"""
Map data model.

A VIMap holds one or more missions (robot sessions). Each mission has:
- a base frame with the alignment T_G_M into the global frame and a flag
  telling whether that alignment is known,
- one sensor per SensorType at most, referenced by sensor id,
- a time-ordered pose graph of vertices (timestamp_ns, T_M_B).

Sensors live at map level, keyed by id, and carry the fixed extrinsic T_B_S.

Serialized layout (one YAML document, see to_dict/from_dict):

    resource_folder: ""
    sensors:
      - {id: imu0, type: imu, T_B_S: [x, y, z, rx, ry, rz]}
    missions:
      - id: robot_a_mission
        base_frame: {T_G_M: [x, y, z, rx, ry, rz], is_T_G_M_known: false}
        sensors: {imu: imu0}
        vertices:
          - [timestamp_ns, x, y, z, rx, ry, rz]
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from submap_server.common.transforms.se3 import as_pose6, se3_identity


class SensorType(Enum):
    """Sensor kinds a pose lookup can be expressed in."""
    NCAMERA = "ncamera"  # camera array
    IMU = "imu"
    LIDAR = "lidar"
    ODOMETRY_6DOF = "odometry_6dof"


@dataclass
class Sensor:
    sensor_id: str
    sensor_type: SensorType
    T_B_S: np.ndarray = field(default_factory=se3_identity)


@dataclass
class MissionBaseFrame:
    T_G_M: np.ndarray = field(default_factory=se3_identity)
    is_T_G_M_known: bool = False


@dataclass
class Vertex:
    timestamp_ns: int
    T_M_B: np.ndarray


@dataclass
class Mission:
    mission_id: str
    base_frame: MissionBaseFrame = field(default_factory=MissionBaseFrame)
    sensor_ids: Dict[SensorType, str] = field(default_factory=dict)
    vertices: List[Vertex] = field(default_factory=list)

    def has_sensor(self, sensor_type: SensorType) -> bool:
        return sensor_type in self.sensor_ids

    def get_sensor_id(self, sensor_type: SensorType) -> str:
        return self.sensor_ids[sensor_type]

    def num_vertices(self) -> int:
        return len(self.vertices)

    def time_range_ns(self) -> Optional[Tuple[int, int]]:
        """(min, max) vertex timestamp, or None for an empty mission."""
        if not self.vertices:
            return None
        return self.vertices[0].timestamp_ns, self.vertices[-1].timestamp_ns

    def sort_vertices(self) -> int:
        """Order vertices by time and drop repeated timestamps. Returns number dropped."""
        ordered = sorted(self.vertices, key=lambda v: v.timestamp_ns)
        unique: List[Vertex] = []
        for vertex in ordered:
            if unique and unique[-1].timestamp_ns == vertex.timestamp_ns:
                continue
            unique.append(vertex)
        dropped = len(self.vertices) - len(unique)
        self.vertices = unique
        return dropped

    def extend_with(self, other: "Mission") -> int:
        """Append the vertices of `other` that are newer than this mission. Returns count added."""
        time_range = self.time_range_ns()
        newest = time_range[1] if time_range is not None else None
        added = 0
        for vertex in other.vertices:
            if newest is None or vertex.timestamp_ns > newest:
                self.vertices.append(copy.deepcopy(vertex))
                newest = vertex.timestamp_ns
                added += 1
        for sensor_type, sensor_id in other.sensor_ids.items():
            self.sensor_ids.setdefault(sensor_type, sensor_id)
        return added


@dataclass
class VIMap:
    missions: Dict[str, Mission] = field(default_factory=dict)
    sensors: Dict[str, Sensor] = field(default_factory=dict)
    resource_folder: str = ""

    def num_missions(self) -> int:
        return len(self.missions)

    def num_vertices(self) -> int:
        return sum(m.num_vertices() for m in self.missions.values())

    def get_id_of_first_mission(self) -> str:
        if not self.missions:
            raise KeyError("Map has no missions")
        return next(iter(self.missions))

    def has_mission(self, mission_id: str) -> bool:
        return mission_id in self.missions

    def get_mission(self, mission_id: str) -> Mission:
        return self.missions[mission_id]

    def get_mission_base_frame_for_mission(self, mission_id: str) -> MissionBaseFrame:
        return self.missions[mission_id].base_frame

    def get_sensor_T_B_S(self, sensor_id: str) -> np.ndarray:
        return self.sensors[sensor_id].T_B_S

    def add_sensor(self, sensor: Sensor) -> None:
        self.sensors[sensor.sensor_id] = sensor

    def add_mission(self, mission: Mission) -> None:
        if mission.mission_id in self.missions:
            raise ValueError(f"Mission '{mission.mission_id}' already in map")
        self.missions[mission.mission_id] = mission

    def merge(self, other: "VIMap") -> None:
        """
        Merge `other` into this map.

        Missions already present are extended with the newer vertices of the
        incoming copy; unseen missions are added with their own base frame.
        """
        for sensor_id, sensor in other.sensors.items():
            if sensor_id not in self.sensors:
                self.sensors[sensor_id] = copy.deepcopy(sensor)
        for mission_id, mission in other.missions.items():
            if mission_id in self.missions:
                self.missions[mission_id].extend_with(mission)
            else:
                self.missions[mission_id] = copy.deepcopy(mission)

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_folder": self.resource_folder,
            "sensors": [
                {
                    "id": s.sensor_id,
                    "type": s.sensor_type.value,
                    "T_B_S": [float(x) for x in s.T_B_S],
                }
                for s in self.sensors.values()
            ],
            "missions": [
                {
                    "id": m.mission_id,
                    "base_frame": {
                        "T_G_M": [float(x) for x in m.base_frame.T_G_M],
                        "is_T_G_M_known": bool(m.base_frame.is_T_G_M_known),
                    },
                    "sensors": {t.value: sid for t, sid in m.sensor_ids.items()},
                    "vertices": [
                        [int(v.timestamp_ns)] + [float(x) for x in v.T_M_B] for v in m.vertices
                    ],
                }
                for m in self.missions.values()
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VIMap":
        """Build a map from its dict form. Raises ValueError/KeyError on malformed input."""
        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping, got {type(data).__name__}")

        vi_map = cls(resource_folder=str(data.get("resource_folder") or ""))
        for entry in data.get("sensors") or []:
            vi_map.add_sensor(
                Sensor(
                    sensor_id=str(entry["id"]),
                    sensor_type=SensorType(entry["type"]),
                    T_B_S=as_pose6(entry.get("T_B_S", se3_identity())),
                )
            )

        for entry in data.get("missions") or []:
            base = entry.get("base_frame") or {}
            sensor_ids = {
                SensorType(kind): str(sid) for kind, sid in (entry.get("sensors") or {}).items()
            }
            for sensor_type, sensor_id in sensor_ids.items():
                if sensor_id not in vi_map.sensors:
                    raise ValueError(f"Mission '{entry['id']}' references unknown sensor '{sensor_id}'")
                if vi_map.sensors[sensor_id].sensor_type is not sensor_type:
                    raise ValueError(f"Sensor '{sensor_id}' is not of type {sensor_type.value}")

            vertices = []
            for row in entry.get("vertices") or []:
                if len(row) != 7:
                    raise ValueError(f"Vertex row must be [timestamp_ns, x, y, z, rx, ry, rz], got {row}")
                vertices.append(Vertex(timestamp_ns=int(row[0]), T_M_B=as_pose6(row[1:])))
            vertices.sort(key=lambda v: v.timestamp_ns)

            vi_map.add_mission(
                Mission(
                    mission_id=str(entry["id"]),
                    base_frame=MissionBaseFrame(
                        T_G_M=as_pose6(base.get("T_G_M", se3_identity())),
                        is_T_G_M_known=bool(base.get("is_T_G_M_known", False)),
                    ),
                    sensor_ids=sensor_ids,
                    vertices=vertices,
                )
            )
        return vi_map
