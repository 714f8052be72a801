"""Tests for the SE(3) helpers and trajectory I/O."""

import numpy as np
import pytest

from depth_odometry.modules.utils import (
    compute_trajectory_length,
    extract_trajectory_positions,
    invert_transform,
    load_trajectory,
    normalize_transform,
    rotation_angle,
    save_trajectory,
    se3_exp,
    skew,
    transform_to_vector,
)
from depth_odometry.state.odometry_state import OdometryState

from .utils import make_pose


def test_skew(rng):
    v = rng.normal(size=(5, 3))
    w = rng.normal(size=(5, 3))
    assert np.allclose(skew(v) @ w[:, :, None], np.cross(v, w)[:, :, None])
    assert skew(np.array([1.0, 2.0, 3.0])).shape == (3, 3)


def test_se3_exp():
    assert np.allclose(se3_exp(np.zeros(6)), np.eye(4))

    T = se3_exp(np.array([0.1, -0.2, 0.3, 0.0, 0.0, 0.0]))
    assert np.allclose(T[:3, :3], np.eye(3))
    assert np.allclose(T[:3, 3], [0.1, -0.2, 0.3])

    # rotation about z by 90 degrees with translation along the axis
    T = se3_exp(np.array([0.0, 0.0, 1.0, 0.0, 0.0, np.pi / 2]))
    assert np.allclose(T[:3, :3], [[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    assert np.allclose(T[:3, 3], [0.0, 0.0, 1.0])


def test_se3_exp_small_steps_compose(rng):
    xi = rng.normal(scale=0.1, size=6)
    assert np.allclose(se3_exp(xi) @ se3_exp(-xi), np.eye(4))


def test_vector_conversion():
    T = make_pose((0.1, 0.2, -0.3), (1.0, 2.0, 3.0))
    v = transform_to_vector(T)
    assert np.allclose(v[:3], [1.0, 2.0, 3.0])
    assert np.allclose(v[3:], [0.1, 0.2, -0.3])
    assert np.allclose(transform_to_vector(np.eye(4)), 0.0)


def test_normalize_transform():
    T = make_pose((0.2, 0.0, 0.1), (1.0, 0.0, 0.0))
    drifted = T.copy()
    drifted[:3, :3] *= 1.001
    drifted[3, :] = [1e-3, 0.0, 0.0, 0.999]
    fixed = normalize_transform(drifted)
    assert np.allclose(fixed[:3, :3] @ fixed[:3, :3].T, np.eye(3))
    assert np.linalg.det(fixed[:3, :3]) == pytest.approx(1.0)
    assert np.array_equal(fixed[3], [0.0, 0.0, 0.0, 1.0])
    assert np.allclose(fixed, T, atol=1e-9)


def test_invert_transform_and_angle():
    T = make_pose((0.0, 0.0, 0.4), (1.0, -1.0, 2.0))
    assert np.allclose(invert_transform(T) @ T, np.eye(4))
    assert rotation_angle(T) == pytest.approx(0.4)
    assert rotation_angle(np.eye(4)) == pytest.approx(0.0)


def test_trajectory_round_trip(tmp_path):
    trajectory = [
        OdometryState(T=make_pose((0.0, 0.1 * i, 0.0), (i, 0.0, 0.0)), frame_id=i, timestamp=0.5 * i)
        for i in range(3)
    ]
    path = tmp_path / "trajectory.txt"
    save_trajectory(trajectory, path)
    assert len(path.read_text().splitlines()) == 3

    loaded = load_trajectory(path)
    assert [s.timestamp for s in loaded] == pytest.approx([0.0, 0.5, 1.0])
    for original, restored in zip(trajectory, loaded):
        assert np.allclose(original.T, restored.T, atol=1e-5)

    assert compute_trajectory_length(loaded) == pytest.approx(2.0)
    assert extract_trajectory_positions(loaded).shape == (3, 3)
    assert compute_trajectory_length(loaded[:1]) == 0.0
    assert extract_trajectory_positions([]).shape == (0, 3)


def test_load_tum_groundtruth_with_comments(tmp_path):
    path = tmp_path / "groundtruth.txt"
    path.write_text(
        "# ground truth trajectory\n"
        "# timestamp tx ty tz qx qy qz qw\n"
        "1305031102.1758 1.0 2.0 3.0 0.0 0.0 0.0 1.0\n"
    )
    loaded = load_trajectory(path)
    assert len(loaded) == 1
    assert loaded[0].timestamp == pytest.approx(1305031102.1758)
    assert np.allclose(loaded[0].T[:3, 3], [1.0, 2.0, 3.0])
