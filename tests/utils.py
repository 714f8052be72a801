"""Analytic depth images of a room corner for the tests."""

import numpy as np
from scipy.spatial.transform import Rotation

from depth_odometry.datatypes import NO_DEPTH
from depth_odometry.modules.utils import create_camera_matrix

ROWS, COLS = 48, 64
K = create_camera_matrix(60.0, 60.0, 31.5, 23.5)

# planes n . p = h: back wall, floor (y down) and left wall
ROOM_PLANES = [
    (np.array([0.0, 0.0, 1.0]), 3.0),
    (np.array([0.0, 1.0, 0.0]), 0.6),
    (np.array([1.0, 0.0, 0.0]), -0.8),
]


def make_pose(rotvec=(0.0, 0.0, 0.0), translation=(0.0, 0.0, 0.0)) -> np.ndarray:
    T = np.eye(4)
    T[:3, :3] = Rotation.from_rotvec(rotvec).as_matrix()
    T[:3, 3] = translation
    return T


def _intersect(origin, directions, planes):
    """Distance along each direction to the nearest plane in front."""
    s_best = np.full(len(directions), np.inf)
    for n, h in planes:
        denom = directions @ n
        with np.errstate(divide="ignore", invalid="ignore"):
            s = (h - n @ origin) / denom
        s[~np.isfinite(s) | (s <= 0)] = np.inf
        s_best = np.minimum(s_best, s)
    return s_best


def render_pinhole(pose=None, planes=ROOM_PLANES, rows=ROWS, cols=COLS, K=K):
    """Depth image (z along the optical axis) seen from pose (sensor -> world)."""
    pose = np.eye(4) if pose is None else pose
    r, c = np.mgrid[0:rows, 0:cols]
    pixels = np.stack([c.ravel(), r.ravel(), np.ones(r.size)], axis=1)
    rays = pixels @ np.linalg.inv(K).T  # z component is 1
    s = _intersect(pose[:3, 3], rays @ pose[:3, :3].T, planes)
    depth = np.where(np.isfinite(s), s, NO_DEPTH)
    return depth.reshape(rows, cols).astype(np.float32)


def render_cylindrical(
    pose=None,
    planes=ROOM_PLANES,
    rows=ROWS,
    cols=COLS,
    K=K,
    angular_resolution=360.0,
):
    """Depth image (distance from the y axis) of a cylindrical sensor."""
    pose = np.eye(4) if pose is None else pose
    r, c = np.mgrid[0:rows, 0:cols]
    theta = (c.ravel() - K[0, 2]) * 2.0 * np.pi / angular_resolution
    rays = np.stack(
        [np.sin(theta), (r.ravel() - K[1, 2]) / K[1, 1], np.cos(theta)], axis=1
    )  # unit distance from the axis
    s = _intersect(pose[:3, 3], rays @ pose[:3, :3].T, planes)
    depth = np.where(np.isfinite(s), s, NO_DEPTH)
    return depth.reshape(rows, cols).astype(np.float32)


def rigid_2d(angle: float, translation) -> np.ndarray:
    T = np.eye(3)
    T[:2, :2] = [[np.cos(angle), -np.sin(angle)], [np.sin(angle), np.cos(angle)]]
    T[:2, 2] = translation
    return T
