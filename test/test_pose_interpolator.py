"""
Tests for trajectory interpolation.
"""

import math

import numpy as np
import pytest

from submap_server.backend.pose_interpolator import PoseInterpolator

from conftest import SECOND_NS, make_vi_map


@pytest.fixture
def interpolator():
    return PoseInterpolator()


def test_time_range(interpolator):
    vi_map = make_vi_map("m0", [SECOND_NS, 2 * SECOND_NS, 4 * SECOND_NS])
    assert interpolator.get_time_range(vi_map, "m0") == (SECOND_NS, 4 * SECOND_NS)


def test_time_range_of_empty_mission_raises(interpolator):
    with pytest.raises(ValueError):
        interpolator.get_time_range(make_vi_map("m0", []), "m0")


def test_exact_vertex_pose(interpolator):
    vi_map = make_vi_map("m0", [0, SECOND_NS])
    (pose,) = interpolator.get_poses_at_time(vi_map, "m0", [SECOND_NS])
    assert np.allclose(pose, [1.0, 0.0, 0.0, 0.0, 0.0, 0.0])


def test_linear_translation_between_vertices(interpolator):
    vi_map = make_vi_map("m0", [0, 2 * SECOND_NS])
    poses = interpolator.get_poses_at_time(vi_map, "m0", [SECOND_NS // 2, SECOND_NS])
    assert np.allclose(poses[0][:3], [0.5, 0.0, 0.0])
    assert np.allclose(poses[1][:3], [1.0, 0.0, 0.0])


def test_rotation_is_slerped(interpolator):
    vi_map = make_vi_map(
        "m0",
        [0, SECOND_NS],
        poses=[[0.0] * 6, [0.0, 0.0, 0.0, 0.0, 0.0, math.pi / 2]],
    )
    (pose,) = interpolator.get_poses_at_time(vi_map, "m0", [SECOND_NS // 2])
    assert np.allclose(pose[3:], [0.0, 0.0, math.pi / 4])


@pytest.mark.parametrize("t", [-1, 3 * SECOND_NS])
def test_outside_range_raises(interpolator, t):
    vi_map = make_vi_map("m0", [0, SECOND_NS])
    with pytest.raises(ValueError):
        interpolator.get_poses_at_time(vi_map, "m0", [t])
