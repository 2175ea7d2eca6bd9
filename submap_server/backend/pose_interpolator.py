"""
Trajectory interpolation over a mission's pose graph.

Body poses T_M_B are known at vertex timestamps. Between two vertices the
translation is interpolated linearly and the rotation by SLERP. Poses are
only defined inside [first vertex time, last vertex time].
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation, Slerp

from submap_server.common.transforms.se3 import se3_from_rotvec_trans
from submap_server.backend.vi_map import VIMap


class PoseInterpolator:
    """Stateless interpolator; the caller holds read access to the map."""

    def get_time_range(self, vi_map: VIMap, mission_id: str) -> Tuple[int, int]:
        """Inclusive [min, max] timestamp in ns. Raises ValueError for a mission without vertices."""
        time_range = vi_map.get_mission(mission_id).time_range_ns()
        if time_range is None:
            raise ValueError(f"Mission '{mission_id}' has no vertices")
        return time_range

    def get_poses_at_time(
        self,
        vi_map: VIMap,
        mission_id: str,
        timestamps_ns: Sequence[int],
    ) -> List[np.ndarray]:
        """
        Interpolated T_M_B for each timestamp.

        Raises ValueError if any timestamp is outside the mission time range.
        """
        vertices = vi_map.get_mission(mission_id).vertices
        min_ns, max_ns = self.get_time_range(vi_map, mission_id)

        stamps = np.array([v.timestamp_ns for v in vertices], dtype=np.int64)
        poses = np.stack([v.T_M_B for v in vertices])

        result = []
        for t in timestamps_ns:
            t = int(t)
            if t < min_ns or t > max_ns:
                raise ValueError(f"Timestamp {t} outside mission time range [{min_ns}, {max_ns}]")
            # Index of the first vertex at or after t.
            i = int(np.searchsorted(stamps, t, side="left"))
            if stamps[i] == t:
                result.append(poses[i].copy())
                continue

            t0, t1 = int(stamps[i - 1]), int(stamps[i])
            alpha = (t - t0) / float(t1 - t0)
            trans = (1.0 - alpha) * poses[i - 1, :3] + alpha * poses[i, :3]
            slerp = Slerp([0.0, 1.0], Rotation.from_rotvec(poses[i - 1 : i + 1, 3:6]))
            rotvec = slerp([alpha]).as_rotvec()[0]
            result.append(se3_from_rotvec_trans(rotvec, trans))
        return result
