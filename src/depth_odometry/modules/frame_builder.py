"""Depth image -> points with normals, uncertainty and information matrices."""

import cv2
import numpy as np

from depth_odometry.config.config import OdometryConfig
from depth_odometry.datatypes import NO_DEPTH, Frame, Gaussian3f, PointStats
from depth_odometry.modules.projector import PointProjector


def downsample_depth_image(depth_image: np.ndarray, step: int) -> np.ndarray:
    """
    Reduce a depth image by keeping the nearest valid depth of each step x step block.

    Args:
        depth_image: (H, W) depth image, NO_DEPTH where empty
        step: block size

    Returns:
        (H // step, W // step) depth image

    """
    if step <= 1:
        return depth_image.copy()
    rows, cols = depth_image.shape[0] // step, depth_image.shape[1] // step
    blocks = depth_image[: rows * step, : cols * step].reshape(rows, step, cols, step)
    # NO_DEPTH is the largest value so empty pixels never win
    return blocks.min(axis=(1, 3))


def downsample_camera_matrix(K: np.ndarray, step: int) -> np.ndarray:
    """Camera matrix matching downsample_depth_image with the same step."""
    K_small = np.array(K, dtype=np.float64)
    if step <= 1:
        return K_small
    K_small[0, 0] /= step
    K_small[1, 1] /= step
    K_small[0, 2] = (K[0, 2] + 0.5) / step - 0.5
    K_small[1, 2] = (K[1, 2] + 0.5) / step - 0.5
    return K_small


def _box_sums(
    integrals: np.ndarray, r: np.ndarray, c: np.ndarray, radius: np.ndarray
) -> np.ndarray:
    """Sum of each channel over the clipped square window around (r, c)."""
    rows, cols = integrals.shape[1] - 1, integrals.shape[2] - 1
    r0 = np.clip(r - radius, 0, rows)
    r1 = np.clip(r + radius + 1, 0, rows)
    c0 = np.clip(c - radius, 0, cols)
    c1 = np.clip(c + radius + 1, 0, cols)
    return (
        integrals[:, r1, c1]
        - integrals[:, r0, c1]
        - integrals[:, r1, c0]
        + integrals[:, r0, c0]
    )


def compute_point_stats(
    points: np.ndarray,
    index_image: np.ndarray,
    depth_image: np.ndarray,
    projector: PointProjector,
    config: OdometryConfig,
) -> tuple[np.ndarray, PointStats, np.ndarray]:
    """
    Estimate normals and curvature from the covariance of image neighbourhoods.

    Neighbourhood sums are read from integral images; the window of each pixel spans
    `normal_world_radius` at its depth.

    Args:
        points: (N, 4) points back-projected from the depth image
        index_image: (H, W) point index per pixel, -1 where empty
        depth_image: (H, W) depth image the points come from
        projector: Projector that produced the points
        config: Configuration object

    Returns:
        normals: (N, 4) normals facing the sensor, zero where not estimated
        stats: curvature and eigen decomposition (information matrices empty)
        valid: (N,) mask of points with an estimated normal

    """
    n = len(points)
    normals = np.zeros((n, 4))
    curvatures = np.ones(n)
    eigenvalues = np.zeros((n, 3))
    eigenvectors = np.tile(np.eye(3), (n, 1, 1))
    valid = np.zeros(n, dtype=bool)
    if n == 0:
        return normals, PointStats(curvatures, eigenvalues, eigenvectors), valid

    occupied = index_image >= 0
    xyz = np.zeros(index_image.shape + (3,))
    xyz[occupied] = points[index_image[occupied], :3]
    x, y, z = xyz[..., 0], xyz[..., 1], xyz[..., 2]

    channels = [occupied.astype(np.float64), x, y, z, x * x, x * y, x * z, y * y, y * z, z * z]
    integrals = np.stack([cv2.integral(ch, sdepth=cv2.CV_64F) for ch in channels])

    r, c = np.nonzero(occupied)
    ids = index_image[r, c]
    radius = projector.project_interval(c, r, depth_image[r, c], config.normal_world_radius)
    radius = np.clip(radius, 1, config.max_normal_pixel_radius)

    sums = _box_sums(integrals, r, c, radius)
    count = sums[0]
    enough = count >= config.normal_min_points
    if not np.any(enough):
        return normals, PointStats(curvatures, eigenvalues, eigenvectors), valid
    safe = np.where(enough, count, 1.0)

    mean = (sums[1:4] / safe).T
    s = sums[4:] / safe
    second = np.stack(
        [
            np.stack([s[0], s[1], s[2]], axis=1),
            np.stack([s[1], s[3], s[4]], axis=1),
            np.stack([s[2], s[4], s[5]], axis=1),
        ],
        axis=1,
    )
    cov = second - mean[:, :, None] * mean[:, None, :]

    evals, evecs = np.linalg.eigh(cov[enough])
    evals = np.clip(evals, 0.0, None)
    total = evals.sum(axis=1)
    # all neighbours on the same spot
    spread = total > 1e-12

    sel = ids[enough][spread]
    evals, evecs = evals[spread], evecs[spread]
    normal = evecs[:, :, 0].copy()

    # normals face the sensor
    origin = projector.transform[:3, 3]
    away = np.sum(normal * (points[sel, :3] - origin), axis=1) > 0
    normal[away] *= -1
    evecs[away, :, 0] *= -1

    normals[sel, :3] = normal
    curvatures[sel] = evals[:, 0] / total[spread]
    eigenvalues[sel] = evals
    eigenvectors[sel] = evecs
    valid[sel] = True

    stats = PointStats(curvatures=curvatures, eigenvalues=eigenvalues, eigenvectors=eigenvectors)
    return normals, stats, valid


def compute_information_matrices(
    stats: PointStats, gaussians: Gaussian3f, valid: np.ndarray, config: OdometryConfig
) -> tuple[np.ndarray, np.ndarray]:
    """
    Shape point and normal information from the local surface and the sensor noise.

    Flat points (curvature below the threshold) are stiff along the normal and loose
    along the surface; the measurement covariance is added to the shape covariance
    before inverting.

    Returns:
        point_information: (N, 3, 3), zero for points without a normal
        normal_information: (N, 3, 3), zero for points without a normal

    """
    n = len(stats)
    point_information = np.zeros((n, 3, 3))
    normal_information = np.zeros((n, 3, 3))
    if not np.any(valid):
        return point_information, normal_information

    U = stats.eigenvectors[valid]
    flat = (stats.curvatures[valid] < config.curvature_threshold)[:, None]

    point_shape = np.where(
        flat,
        np.asarray(config.flat_point_information),
        np.asarray(config.nonflat_point_information),
    )
    normal_shape = np.where(
        flat,
        np.asarray(config.flat_normal_information),
        np.asarray(config.nonflat_normal_information),
    )

    Ut = np.transpose(U, (0, 2, 1))
    shape_cov = U @ (Ut / point_shape[:, :, None])
    point_info = np.linalg.inv(shape_cov + gaussians.covariance[valid])
    point_information[valid] = 0.5 * (point_info + np.transpose(point_info, (0, 2, 1)))
    normal_information[valid] = U @ (Ut * normal_shape[:, :, None])

    return point_information, normal_information


class FrameBuilder:
    """Converts depth images into frames for the aligner."""

    def __init__(self, projector: PointProjector, config: OdometryConfig) -> None:
        self.projector = projector
        self.cfg = config
        # index image of the last build
        self.index_image = np.empty((0, 0), dtype=np.int32)

    def build(self, depth_image: np.ndarray) -> Frame:
        """
        Build a frame from a depth image.

        Args:
            depth_image: (H, W) depth in meters, NO_DEPTH (or non finite) where empty

        Returns:
            Frame with points, normals, gaussians and statistics

        """
        depth_image = np.where(np.isfinite(depth_image), depth_image, NO_DEPTH)
        points, gaussians, index_image = self.projector.unproject_image(depth_image)
        normals, stats, valid = compute_point_stats(
            points, index_image, depth_image, self.projector, self.cfg
        )
        stats.point_information, stats.normal_information = (
            compute_information_matrices(stats, gaussians, valid, self.cfg)
        )
        self.index_image = index_image
        return Frame(points=points, normals=normals, gaussians=gaussians, stats=stats)
