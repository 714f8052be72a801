"""Tests for the frame to frame odometry."""

from dataclasses import replace

import numpy as np
import pytest

from depth_odometry.datatypes import NO_DEPTH
from depth_odometry.modules.odometry import DepthOdometry
from depth_odometry.modules.utils import create_camera_matrix, invert_transform, rotation_angle
from depth_odometry.utils.enums import ProjectorType

from .utils import COLS, K, ROWS, make_pose, render_cylindrical, render_pinhole

VELOCITY = make_pose((0.0, np.deg2rad(1.0), 0.0), (0.02, 0.0, 0.01))


def sequence_poses(n):
    poses = [np.eye(4)]
    for _ in range(n - 1):
        poses.append(poses[-1] @ VELOCITY)
    return poses


def test_tracks_a_constant_velocity_sequence(config):
    odometry = DepthOdometry(K, config)
    poses = sequence_poses(4)
    for i, pose in enumerate(poses):
        assert odometry.process(render_pinhole(pose), timestamp=0.1 * i)

    assert len(odometry.trajectory) == 4
    assert [s.frame_id for s in odometry.trajectory] == [0, 1, 2, 3]
    assert odometry.trajectory[-1].timestamp == pytest.approx(0.3)
    delta = invert_transform(poses[-1]) @ odometry.T
    assert np.linalg.norm(delta[:3, 3]) < 0.03
    assert rotation_angle(delta) < np.deg2rad(1.0)
    assert odometry.state.inliers >= config.min_inliers


def test_failed_frame_keeps_the_pose(config, capsys):
    odometry = DepthOdometry(K, config)
    assert odometry.process(render_pinhole())
    empty = np.full((ROWS, COLS), NO_DEPTH, dtype=np.float32)

    assert not odometry.process(empty, timestamp=1.0)
    assert "alignment failed" in capsys.readouterr().out
    assert np.array_equal(odometry.T, np.eye(4))
    assert len(odometry.trajectory) == 2
    assert np.array_equal(odometry.state.T_velocity, np.eye(4))


def test_zero_and_nan_depths_are_empty(config):
    depth = render_pinhole()
    depth[:5] = 0.0
    depth[5:10] = np.nan
    odometry = DepthOdometry(K, config)
    odometry.process(depth)
    assert len(odometry.current) == (ROWS - 10) * COLS


def test_image_step_downsamples(config):
    K_full = create_camera_matrix(120.0, 120.0, 63.5, 47.5)
    cfg = replace(config, image_step=2)
    odometry = DepthOdometry(K_full, cfg)
    assert np.allclose(odometry.projector.K, K)

    for pose in sequence_poses(2):
        depth = render_pinhole(pose, rows=2 * ROWS, cols=2 * COLS, K=K_full)
        assert odometry.process(depth)
    assert len(odometry.current) == ROWS * COLS
    delta = invert_transform(sequence_poses(2)[-1]) @ odometry.T
    assert np.linalg.norm(delta[:3, 3]) < 0.02


def test_cylindrical_odometry(config):
    odometry = DepthOdometry(K, config, ProjectorType.CYLINDRICAL)
    poses = sequence_poses(2)
    for pose in poses:
        assert odometry.process(render_cylindrical(pose))
    delta = invert_transform(poses[-1]) @ odometry.T
    assert np.linalg.norm(delta[:3, 3]) < 0.02


def test_merged_reference(config):
    odometry = DepthOdometry(K, replace(config, merge_frames=True))
    poses = sequence_poses(3)
    for pose in poses:
        assert odometry.process(render_pinhole(pose))

    assert len(odometry.map) > len(odometry.current)
    assert len(odometry.map) < 3 * len(odometry.current)
    delta = invert_transform(poses[-1]) @ odometry.T
    assert np.linalg.norm(delta[:3, 3]) < 0.03


def test_merged_map_is_cropped_around_the_sensor(config):
    cfg = replace(config, merge_frames=True)
    full = DepthOdometry(K, cfg)
    cropped = DepthOdometry(K, replace(cfg, map_max_distance=3.3))
    for pose in sequence_poses(3):
        assert full.process(render_pinhole(pose))
        assert cropped.process(render_pinhole(pose))

    distance = np.linalg.norm(cropped.map.points[:, :3] - cropped.T[:3, 3], axis=1)
    assert np.all(distance <= 3.3)
    assert 0 < len(cropped.map) < len(full.map)


def test_clear(config):
    odometry = DepthOdometry(K, config)
    for pose in sequence_poses(2):
        odometry.process(render_pinhole(pose))
    odometry.clear()

    assert odometry.trajectory == []
    assert odometry.reference is None
    assert len(odometry.map) == 0
    assert np.array_equal(odometry.T, np.eye(4))
    assert odometry.process(render_pinhole())
