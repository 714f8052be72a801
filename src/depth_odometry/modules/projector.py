"""Point projection models: 3D points <-> 2D sensor coordinates with depth."""

from abc import ABC, abstractmethod

import numpy as np

from depth_odometry.datatypes import NO_DEPTH, Gaussian3f
from depth_odometry.modules.utils import invert_transform, normalize_transform


class PointProjector(ABC):
    """
    Abstract base class of a projection model.

    A projector maps points expressed in the frame coordinates onto the image of a
    sensor placed at `transform` (sensor -> frame) and back. Image coordinates are
    (x, y) = (column, row); images are indexed image[row, column].
    """

    def __init__(
        self,
        K: np.ndarray,
        transform: np.ndarray | None = None,
        min_depth: float = 0.5,
        max_depth: float = 5.0,
        baseline: float = 0.075,
        alpha: float = 0.1,
    ) -> None:
        """
        Initialize the projector.

        Args:
            K: Intrinsic camera matrix (3x3).
            transform: Sensor offset (4x4, sensor -> frame). Identity if None.
            min_depth: Smallest valid depth.
            max_depth: Largest valid depth.
            baseline: Stereo / structured light baseline in meters.
            alpha: Disparity noise coefficient.

        """
        self.min_depth = min_depth
        self.max_depth = max_depth
        self.baseline = baseline
        self.alpha = alpha
        self._K = np.eye(3)
        self._transform = np.eye(4)
        self.set_camera_matrix(K)
        self.set_transform(np.eye(4) if transform is None else transform)

    @property
    def K(self) -> np.ndarray:
        return self._K

    @property
    def transform(self) -> np.ndarray:
        return self._transform

    def set_camera_matrix(self, K: np.ndarray) -> None:
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            msg = f"Camera matrix must be 3x3, got {K.shape}"
            raise ValueError(msg)
        self._K = K
        self._update_matrices()

    def set_transform(self, transform: np.ndarray) -> None:
        self._transform = normalize_transform(transform)
        self._update_matrices()

    def _update_matrices(self) -> None:
        self._iT = invert_transform(self._transform)
        self._iK = np.linalg.inv(self._K)

    def depth_variance(self, depth: np.ndarray) -> np.ndarray:
        """Variance of a depth measurement: alpha*z^2 / (baseline*focal + alpha*z)."""
        fB = self.baseline * self._K[0, 0]
        return self.alpha * depth * depth / (fB + self.alpha * depth)

    @abstractmethod
    def _project_camera(
        self, cp: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Project (N, 3) sensor-frame points; returns xy (N, 2), depth (N,), ok (N,)."""

    @abstractmethod
    def _unproject_camera(
        self, xy: np.ndarray, depth: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Back-project pixels; returns (N, 3) sensor-frame points and ok (N,)."""

    @abstractmethod
    def _unproject_jacobian(self, xy: np.ndarray, depth: np.ndarray) -> np.ndarray:
        """Jacobian (N, 3, 3) of the sensor-frame point w.r.t. (x, y, depth)."""

    @abstractmethod
    def project_interval(
        self, x: np.ndarray, y: np.ndarray, depth: np.ndarray, world_radius: float
    ) -> np.ndarray:
        """Pixel radius covering `world_radius` around a pixel at a depth."""

    def project(
        self, points: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Project points into the image.

        Args:
            points: (N, 4) homogeneous points, or a single (4,) point.

        Returns:
            xy: (N, 2) image coordinates
            depth: (N,) depth of each point
            ok: (N,) False where the projection is degenerate; outputs are
                meaningless there

        """
        points = np.asarray(points, dtype=np.float64)
        single = points.ndim == 1
        points = np.atleast_2d(points)
        cp = points @ self._iT[:3, :].T
        xy, depth, ok = self._project_camera(cp)
        if single:
            return xy[0], depth[0], ok[0]
        return xy, depth, ok

    def unproject(
        self, x: np.ndarray, y: np.ndarray, depth: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Back-project image coordinates with depth to points.

        Returns:
            points: (N, 4) homogeneous points in frame coordinates
            ok: (N,) False where the back-projection is undefined

        """
        xy = np.stack(
            [np.atleast_1d(x).astype(np.float64), np.atleast_1d(y).astype(np.float64)],
            axis=1,
        )
        depth = np.atleast_1d(depth).astype(np.float64)
        cp, ok = self._unproject_camera(xy, depth)
        points = np.hstack((cp, np.ones((len(cp), 1)))) @ self._transform.T
        points[:, 3] = 1.0
        return points, ok

    def project_image(
        self, points: np.ndarray, rows: int, cols: int
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Rasterize a point cloud keeping the nearest point of each pixel.

        Projections that are degenerate, out of the depth range or out of the image
        are discarded. Ties keep the lowest point index.

        Returns:
            depth_image: (rows, cols) float32, NO_DEPTH where empty
            index_image: (rows, cols) int32, -1 where empty

        """
        depth_image = np.full((rows, cols), NO_DEPTH, dtype=np.float32)
        index_image = np.full((rows, cols), -1, dtype=np.int32)
        if len(points) == 0:
            return depth_image, index_image

        xy, depth, ok = self.project(points)
        px = np.rint(xy).astype(np.int64)
        valid = (
            ok
            & (depth >= self.min_depth)
            & (depth <= self.max_depth)
            & (px[:, 0] >= 0)
            & (px[:, 0] < cols)
            & (px[:, 1] >= 0)
            & (px[:, 1] < rows)
        )
        point_ids = np.flatnonzero(valid)
        if len(point_ids) == 0:
            return depth_image, index_image

        depth = depth[valid].astype(np.float32)
        lin = px[valid, 1] * cols + px[valid, 0]

        # z-buffer
        flat_depth = depth_image.reshape(-1)
        np.minimum.at(flat_depth, lin, depth)

        # among the nearest points of a pixel the first one wins
        winners = depth == flat_depth[lin]
        flat_index = np.full(rows * cols, np.iinfo(np.int32).max, dtype=np.int64)
        np.minimum.at(flat_index, lin[winners], point_ids[winners])
        flat_index[flat_index == np.iinfo(np.int32).max] = -1
        index_image = flat_index.reshape(rows, cols).astype(np.int32)

        return depth_image, index_image

    def unproject_image(
        self, depth_image: np.ndarray
    ) -> tuple[np.ndarray, Gaussian3f, np.ndarray]:
        """
        Back-project every valid pixel and propagate the depth noise.

        The pixel covariance diag(1, 1, depth_variance) is pushed through the local
        Jacobian of the back-projection (first order propagation).

        Returns:
            points: (N, 4) homogeneous points, row-major pixel order
            gaussians: mean and (N, 3, 3) covariance of each point
            index_image: (rows, cols) int32 point index per pixel, -1 where invalid

        """
        depth_image = np.asarray(depth_image)
        rows, cols = depth_image.shape
        index_image = np.full((rows, cols), -1, dtype=np.int32)

        d = depth_image.astype(np.float64)
        valid = (
            np.isfinite(d)
            & (d < NO_DEPTH)
            & (d >= self.min_depth)
            & (d <= self.max_depth)
        )
        r, c = np.nonzero(valid)
        xy = np.stack([c, r], axis=1).astype(np.float64)
        depth = d[r, c]

        cp, ok = self._unproject_camera(xy, depth)
        xy, depth, cp = xy[ok], depth[ok], cp[ok]
        r, c = r[ok], c[ok]
        index_image[r, c] = np.arange(len(cp), dtype=np.int32)

        points = np.hstack((cp, np.ones((len(cp), 1)))) @ self._transform.T
        points[:, 3] = 1.0

        J = self._unproject_jacobian(xy, depth)
        pixel_cov = np.zeros((len(cp), 3, 3))
        pixel_cov[:, 0, 0] = 1.0
        pixel_cov[:, 1, 1] = 1.0
        pixel_cov[:, 2, 2] = self.depth_variance(depth)
        R = self._transform[:3, :3]
        cov = R @ J @ pixel_cov @ np.transpose(J, (0, 2, 1)) @ R.T

        return points, Gaussian3f(mean=points[:, :3].copy(), covariance=cov), index_image

    def project_intervals(
        self, depth_image: np.ndarray, world_radius: float
    ) -> np.ndarray:
        """Image form of project_interval; 0 where the depth is invalid."""
        rows, cols = depth_image.shape
        r, c = np.mgrid[0:rows, 0:cols]
        return self.project_interval(c, r, depth_image, world_radius)


class PinholeProjector(PointProjector):
    """Perspective camera model."""

    def _project_camera(
        self, cp: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        z = cp[:, 2]
        ok = z > 1e-9
        ip = cp @ self._K.T
        w = np.where(ok, ip[:, 2], 1.0)
        xy = ip[:, :2] / w[:, None]
        return xy, z, ok

    def _unproject_camera(
        self, xy: np.ndarray, depth: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        ok = depth > 0
        rays = np.hstack((xy, np.ones((len(xy), 1)))) @ self._iK.T
        return rays * depth[:, None], ok

    def _unproject_jacobian(self, xy: np.ndarray, depth: np.ndarray) -> np.ndarray:
        J = np.empty((len(xy), 3, 3))
        J[:, :, 0] = depth[:, None] * self._iK[:, 0]
        J[:, :, 1] = depth[:, None] * self._iK[:, 1]
        J[:, :, 2] = np.hstack((xy, np.ones((len(xy), 1)))) @ self._iK.T
        return J

    def project_interval(
        self, x: np.ndarray, y: np.ndarray, depth: np.ndarray, world_radius: float
    ) -> np.ndarray:
        depth = np.asarray(depth, dtype=np.float64)
        valid = (depth > 0) & (depth < NO_DEPTH)
        safe = np.where(valid, depth, 1.0)
        radius = np.ceil(world_radius * self._K[0, 0] / safe)
        return np.where(valid, radius, 0).astype(np.int32)


class CylindricalProjector(PointProjector):
    """
    Cylindrical sensor model (e.g. a rotating range finder).

    Columns sample the azimuth around the sensor y axis with `angular_resolution`
    pixels per full turn, centred on K[0, 2]. Rows follow a perspective model along
    the axis with focal K[1, 1] and centre K[1, 2]. Depth is the distance from the
    axis.
    """

    def __init__(
        self,
        K: np.ndarray,
        transform: np.ndarray | None = None,
        min_depth: float = 0.5,
        max_depth: float = 5.0,
        baseline: float = 0.075,
        alpha: float = 0.1,
        angular_resolution: float = 360.0,
        angular_fov: float = np.pi / 2,
    ) -> None:
        self.set_angular_resolution(angular_resolution)
        self.angular_fov = angular_fov
        super().__init__(K, transform, min_depth, max_depth, baseline, alpha)

    def set_angular_resolution(self, angular_resolution: float) -> None:
        if angular_resolution <= 0:
            msg = f"Angular resolution must be positive, got {angular_resolution}"
            raise ValueError(msg)
        self.angular_resolution = angular_resolution
        self._pixels_per_radian = angular_resolution / (2.0 * np.pi)

    def _project_camera(
        self, cp: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        x, y, z = cp[:, 0], cp[:, 1], cp[:, 2]
        d = np.hypot(x, z)
        theta = np.arctan2(x, z)
        # on the axis the azimuth is undefined
        ok = (d > 1e-9) & (np.abs(theta) <= self.angular_fov)
        safe = np.where(ok, d, 1.0)
        col = self._pixels_per_radian * theta + self._K[0, 2]
        row = y * self._K[1, 1] / safe + self._K[1, 2]
        return np.stack([col, row], axis=1), d, ok

    def _unproject_camera(
        self, xy: np.ndarray, depth: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        theta = (xy[:, 0] - self._K[0, 2]) / self._pixels_per_radian
        ok = (depth > 0) & (np.abs(theta) <= self.angular_fov)
        cp = np.stack(
            [
                np.sin(theta) * depth,
                (xy[:, 1] - self._K[1, 2]) * depth / self._K[1, 1],
                np.cos(theta) * depth,
            ],
            axis=1,
        )
        return cp, ok

    def _unproject_jacobian(self, xy: np.ndarray, depth: np.ndarray) -> np.ndarray:
        theta = (xy[:, 0] - self._K[0, 2]) / self._pixels_per_radian
        s, c = np.sin(theta), np.cos(theta)
        J = np.zeros((len(xy), 3, 3))
        J[:, 0, 0] = c * depth / self._pixels_per_radian
        J[:, 2, 0] = -s * depth / self._pixels_per_radian
        J[:, 1, 1] = depth / self._K[1, 1]
        J[:, 0, 2] = s
        J[:, 1, 2] = (xy[:, 1] - self._K[1, 2]) / self._K[1, 1]
        J[:, 2, 2] = c
        return J

    def project_interval(
        self, x: np.ndarray, y: np.ndarray, depth: np.ndarray, world_radius: float
    ) -> np.ndarray:
        depth = np.asarray(depth, dtype=np.float64)
        valid = (depth > 0) & (depth < NO_DEPTH)
        safe = np.where(valid, depth, 1.0)
        horizontal = world_radius / safe * self._pixels_per_radian
        vertical = world_radius * self._K[1, 1] / safe
        radius = np.ceil(np.maximum(horizontal, vertical))
        return np.where(valid, radius, 0).astype(np.int32)
