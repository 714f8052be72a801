"""Tests for the frame construction from depth images."""

import numpy as np
import pytest

from depth_odometry.datatypes import NO_DEPTH
from depth_odometry.modules.frame_builder import (
    FrameBuilder,
    downsample_camera_matrix,
    downsample_depth_image,
)

from .utils import COLS, K, ROWS, render_pinhole


def test_wall_normals_face_the_sensor(pinhole, config):
    """A fronto-parallel wall has flat points with normals towards the camera."""
    wall = [(np.array([0.0, 0.0, 1.0]), 2.0)]
    frame = FrameBuilder(pinhole, config).build(render_pinhole(planes=wall))

    assert len(frame) == ROWS * COLS
    valid = frame.valid_normals
    assert valid.all()
    assert np.allclose(frame.normals[:, :3], [0.0, 0.0, -1.0], atol=1e-6)
    assert np.allclose(frame.normals[:, 3], 0.0)
    assert np.all(frame.stats.curvatures < 1e-6)
    assert np.allclose(np.linalg.norm(frame.normals[:, :3], axis=1), 1.0)


def test_room_statistics(room_frame, config):
    valid = room_frame.valid_normals
    assert valid.sum() > 0.9 * len(room_frame)

    # eigenvalues ascending, curvature in [0, 1/3]
    eig = room_frame.stats.eigenvalues[valid]
    assert np.all(np.diff(eig, axis=1) >= 0)
    curv = room_frame.stats.curvatures[valid]
    assert np.all((curv >= 0) & (curv <= 1.0 / 3.0 + 1e-9))

    # the normal is the first eigenvector
    assert np.allclose(
        np.abs(np.sum(room_frame.stats.eigenvectors[valid, :, 0] * room_frame.normals[valid, :3], axis=1)),
        1.0,
    )

    # plane interiors are flat, the corner edges are not
    flat = curv < config.curvature_threshold
    assert flat.sum() > 0.5 * valid.sum()
    assert (~flat).sum() > 0


def test_information_matrices(room_frame):
    valid = room_frame.valid_normals
    point_info = room_frame.stats.point_information
    normal_info = room_frame.stats.normal_information

    assert point_info.shape == (len(room_frame), 3, 3)
    assert np.allclose(point_info, np.transpose(point_info, (0, 2, 1)))
    assert np.allclose(normal_info, np.transpose(normal_info, (0, 2, 1)))
    assert np.all(np.linalg.eigvalsh(point_info[valid]) > 0)
    assert np.all(np.linalg.eigvalsh(normal_info[valid]) > 0)
    assert np.all(point_info[~valid] == 0)
    assert np.all(normal_info[~valid] == 0)


def test_flat_point_information_is_stiff_along_the_normal(pinhole, config):
    wall = [(np.array([0.0, 0.0, 1.0]), 1.0)]
    frame = FrameBuilder(pinhole, config).build(render_pinhole(planes=wall))
    center = len(frame) // 2 + COLS // 2
    omega = frame.stats.point_information[center]
    n = frame.normals[center, :3]
    tangent = np.array([1.0, 0.0, 0.0])
    assert n @ omega @ n > tangent @ omega @ tangent


def test_isolated_pixels_have_no_normal(pinhole, config):
    depth = np.full((ROWS, COLS), NO_DEPTH, dtype=np.float32)
    depth[10, 10] = 2.0
    depth[30, 40] = 2.5
    depth[5, 60] = np.nan
    builder = FrameBuilder(pinhole, config)
    frame = builder.build(depth)

    assert len(frame) == 2
    assert not frame.valid_normals.any()
    assert builder.index_image[10, 10] == 0
    assert builder.index_image[30, 40] == 1
    assert builder.index_image[5, 60] == -1


def test_empty_image(pinhole, config):
    frame = FrameBuilder(pinhole, config).build(
        np.full((ROWS, COLS), NO_DEPTH, dtype=np.float32)
    )
    assert len(frame) == 0
    assert frame.stats.point_information.shape == (0, 3, 3)


def test_cylindrical_frame(cylindrical_room_frame):
    valid = cylindrical_room_frame.valid_normals
    assert valid.sum() > 0.9 * len(cylindrical_room_frame)
    # normals face the sensor at the origin
    points = cylindrical_room_frame.points[valid, :3]
    normals = cylindrical_room_frame.normals[valid, :3]
    assert np.all(np.sum(points * normals, axis=1) <= 1e-9)


def test_downsample_depth_image():
    depth = np.array(
        [
            [1.0, 2.0, NO_DEPTH, NO_DEPTH, 9.0],
            [3.0, 4.0, NO_DEPTH, 5.0, 9.0],
            [9.0, 9.0, 9.0, 9.0, 9.0],
        ],
        dtype=np.float32,
    )
    small = downsample_depth_image(depth, 2)
    assert small.shape == (1, 2)
    assert small[0, 0] == pytest.approx(1.0)
    assert small[0, 1] == pytest.approx(5.0)

    assert np.array_equal(downsample_depth_image(depth, 1), depth)


def test_downsample_camera_matrix():
    K_small = downsample_camera_matrix(K, 2)
    assert K_small[0, 0] == pytest.approx(30.0)
    assert K_small[1, 1] == pytest.approx(30.0)
    # pixel centres of a 2x2 block average onto the coarse pixel
    assert K_small[0, 2] == pytest.approx(15.5)
    assert K_small[1, 2] == pytest.approx(11.5)
    assert np.array_equal(downsample_camera_matrix(K, 1), K)
