"""
SE(3) geometry on 6D poses.

Pose representation: (x, y, z, rx, ry, rz) where:
- (x, y, z): translation in R^3
- (rx, ry, rz): rotation vector (axis-angle) in so(3)

Naming follows the frame convention T_A_B: the pose of frame B expressed in
frame A, so that p_A = T_A_B * p_B and T_A_C = T_A_B * T_B_C.

Rotation conversions go through scipy's Rotation, which handles the
small-angle and near-π cases of the log map.
"""

from __future__ import annotations

import numpy as np
from scipy.spatial.transform import Rotation


def se3_identity() -> np.ndarray:
    """Identity pose."""
    return np.zeros(6, dtype=float)


def as_pose6(pose) -> np.ndarray:
    """Coerce a sequence into a (6,) float pose, raising on bad shape."""
    v = np.asarray(pose, dtype=float).reshape(-1)
    if v.shape[0] != 6:
        raise ValueError(f"Expected 6D pose [x,y,z,rx,ry,rz], got shape {v.shape}")
    return v


# =============================================================================
# Rotation conversions
# =============================================================================


def rotvec_to_rotmat(rotvec: np.ndarray) -> np.ndarray:
    """Exponential map so(3) -> SO(3)."""
    return Rotation.from_rotvec(np.asarray(rotvec, dtype=float).reshape(3)).as_matrix()


def rotmat_to_rotvec(R: np.ndarray) -> np.ndarray:
    """Logarithmic map SO(3) -> so(3)."""
    return Rotation.from_matrix(np.asarray(R, dtype=float)).as_rotvec()


def se3_from_rotvec_trans(rotvec: np.ndarray, trans: np.ndarray) -> np.ndarray:
    """Build a 6D pose from rotation vector and translation."""
    return np.concatenate(
        [np.asarray(trans, dtype=float).reshape(3), np.asarray(rotvec, dtype=float).reshape(3)]
    )


# =============================================================================
# Group operations
# =============================================================================


def se3_compose(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Compose two SE(3) transforms: T_a ∘ T_b.

    t_out = t_a + R_a @ t_b, R_out = R_a @ R_b
    """
    a = as_pose6(a)
    b = as_pose6(b)
    R_a = rotvec_to_rotmat(a[3:6])
    R_b = rotvec_to_rotmat(b[3:6])
    return se3_from_rotvec_trans(rotmat_to_rotvec(R_a @ R_b), a[:3] + R_a @ b[:3])


def se3_apply(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Apply SE(3) transform to point(s).

    T: (x, y, z, rx, ry, rz)
    points: (N, 3) or (3,)
    Returns: transformed points (same shape as input)
    """
    T = as_pose6(T)
    points = np.asarray(points, dtype=float)

    single = points.ndim == 1
    if single:
        points = points.reshape(1, 3)

    result = (rotvec_to_rotmat(T[3:6]) @ points.T).T + T[:3]

    if single:
        return result.reshape(-1)
    return result
