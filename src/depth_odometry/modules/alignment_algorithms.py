"""Minimal-set solvers and validators for the generalized RANSAC."""

from collections.abc import Sequence

import numpy as np

from depth_odometry.datatypes import Correspondence


def _index_arrays(
    correspondences: Sequence[Correspondence], indices: np.ndarray | None = None
) -> tuple[np.ndarray, np.ndarray]:
    if indices is None:
        selected = correspondences
    else:
        selected = [correspondences[i] for i in indices]
    ref = np.array([c.reference_index for c in selected], dtype=np.int64)
    cur = np.array([c.current_index for c in selected], dtype=np.int64)
    return ref, cur


def _wrap_angle(angle: np.ndarray) -> np.ndarray:
    return (angle + np.pi) % (2.0 * np.pi) - np.pi


def fit_rigid_transform(src: np.ndarray, dst: np.ndarray) -> np.ndarray | None:
    """
    Least squares rigid transform mapping src onto dst (Kabsch).

    Args:
        src: (N, D) points
        dst: (N, D) points

    Returns:
        T: (D+1, D+1) homogeneous transform, or None if the points do not
           determine the rotation

    """
    dim = src.shape[1]
    mu_src = src.mean(axis=0)
    mu_dst = dst.mean(axis=0)
    src_c = src - mu_src
    dst_c = dst - mu_dst

    # collinear (3D) or coincident (2D) points
    scale = max(np.abs(src_c).max(initial=0.0), 1e-12)
    if np.linalg.matrix_rank(src_c, tol=1e-9 * scale) < dim - 1:
        return None

    U, _, Vt = np.linalg.svd(src_c.T @ dst_c)
    D = np.eye(dim)
    D[-1, -1] = np.sign(np.linalg.det(Vt.T @ U.T))
    R = Vt.T @ D @ U.T

    T = np.eye(dim + 1)
    T[:dim, :dim] = R
    T[:dim, dim] = mu_dst - R @ mu_src
    return T


class RigidPointAlignment:
    """
    Rigid alignment of point correspondences in 2D or 3D.

    Solves the transform mapping current points onto reference points; the error of
    a correspondence is the squared distance after the transform.
    """

    def __init__(
        self,
        reference_points: np.ndarray,
        current_points: np.ndarray,
        minimal_set_size: int | None = None,
    ) -> None:
        self.reference_points = np.asarray(reference_points, dtype=np.float64)
        self.current_points = np.asarray(current_points, dtype=np.float64)
        self.dim = self.reference_points.shape[1]
        self.minimal_set_size = self.dim if minimal_set_size is None else minimal_set_size

    def __call__(
        self, correspondences: Sequence[Correspondence], indices: np.ndarray
    ) -> np.ndarray | None:
        ref, cur = _index_arrays(correspondences, indices)
        return fit_rigid_transform(self.current_points[cur], self.reference_points[ref])

    def errors(
        self, T: np.ndarray, correspondences: Sequence[Correspondence]
    ) -> np.ndarray:
        ref, cur = _index_arrays(correspondences)
        moved = self.current_points[cur] @ T[: self.dim, : self.dim].T + T[: self.dim, self.dim]
        return np.sum((moved - self.reference_points[ref]) ** 2, axis=1)


class LineAlignment2D:
    """
    Rigid alignment of 2D line correspondences.

    Lines are (theta, rho) with n = (cos theta, sin theta) and n . p = rho; both
    sets share an oriented representation. A transform (R, t) maps a current line
    to (theta + phi, rho + n' . t).
    """

    def __init__(
        self,
        reference_lines: np.ndarray,
        current_lines: np.ndarray,
        rho_weight: float = 1.0,
        minimal_set_size: int = 2,
    ) -> None:
        self.reference_lines = np.asarray(reference_lines, dtype=np.float64)
        self.current_lines = np.asarray(current_lines, dtype=np.float64)
        self.rho_weight = rho_weight
        self.minimal_set_size = minimal_set_size

    def __call__(
        self, correspondences: Sequence[Correspondence], indices: np.ndarray
    ) -> np.ndarray | None:
        ref, cur = _index_arrays(correspondences, indices)
        theta_r, rho_r = self.reference_lines[ref].T
        theta_c, rho_c = self.current_lines[cur].T

        dtheta = _wrap_angle(theta_r - theta_c)
        phi = np.arctan2(np.sum(np.sin(dtheta)), np.sum(np.cos(dtheta)))

        theta_t = theta_c + phi
        A = np.stack([np.cos(theta_t), np.sin(theta_t)], axis=1)
        # parallel lines leave the translation free
        if np.linalg.matrix_rank(A, tol=1e-6) < 2:
            return None
        t, *_ = np.linalg.lstsq(A, rho_r - rho_c, rcond=None)

        T = np.eye(3)
        T[:2, :2] = [[np.cos(phi), -np.sin(phi)], [np.sin(phi), np.cos(phi)]]
        T[:2, 2] = t
        return T

    def transform_lines(self, T: np.ndarray, lines: np.ndarray) -> np.ndarray:
        """Move (N, 2) lines by a 3x3 rigid transform."""
        phi = np.arctan2(T[1, 0], T[0, 0])
        theta = _wrap_angle(lines[:, 0] + phi)
        n = np.stack([np.cos(theta), np.sin(theta)], axis=1)
        rho = lines[:, 1] + n @ T[:2, 2]
        return np.stack([theta, rho], axis=1)

    def errors(
        self, T: np.ndarray, correspondences: Sequence[Correspondence]
    ) -> np.ndarray:
        ref, cur = _index_arrays(correspondences)
        moved = self.transform_lines(T, self.current_lines[cur])
        reference = self.reference_lines[ref]
        dtheta = _wrap_angle(moved[:, 0] - reference[:, 0])
        drho = moved[:, 1] - reference[:, 1]
        return dtheta**2 + self.rho_weight * drho**2


class DistanceCorrespondenceValidator:
    """
    Rejects minimal sets whose pairwise distances a rigid motion could not preserve.

    The newest index of the prefix is compared with every earlier one.
    """

    def __init__(
        self,
        reference_points: np.ndarray,
        current_points: np.ndarray,
        tolerance: float,
        min_distance: float = 0.0,
    ) -> None:
        self.reference_points = np.asarray(reference_points, dtype=np.float64)
        self.current_points = np.asarray(current_points, dtype=np.float64)
        self.tolerance = tolerance
        self.min_distance = min_distance

    def __call__(
        self, correspondences: Sequence[Correspondence], indices: np.ndarray, depth: int
    ) -> bool:
        if depth == 0:
            return True
        ref, cur = _index_arrays(correspondences, indices[: depth + 1])
        d_ref = np.linalg.norm(self.reference_points[ref[:-1]] - self.reference_points[ref[-1]], axis=1)
        d_cur = np.linalg.norm(self.current_points[cur[:-1]] - self.current_points[cur[-1]], axis=1)
        if np.any(d_ref < self.min_distance) or np.any(d_cur < self.min_distance):
            return False
        return bool(np.all(np.abs(d_ref - d_cur) <= self.tolerance))


class LineAngleValidator:
    """Rejects line sets with near-parallel lines or inconsistent relative angles."""

    def __init__(
        self,
        reference_lines: np.ndarray,
        current_lines: np.ndarray,
        tolerance: float,
        min_angle: float = np.deg2rad(10.0),
    ) -> None:
        self.reference_lines = np.asarray(reference_lines, dtype=np.float64)
        self.current_lines = np.asarray(current_lines, dtype=np.float64)
        self.tolerance = tolerance
        self.min_angle = min_angle

    def __call__(
        self, correspondences: Sequence[Correspondence], indices: np.ndarray, depth: int
    ) -> bool:
        if depth == 0:
            return True
        ref, cur = _index_arrays(correspondences, indices[: depth + 1])
        theta_r = self.reference_lines[ref, 0]
        theta_c = self.current_lines[cur, 0]
        rel_r = _wrap_angle(theta_r[:-1] - theta_r[-1])
        rel_c = _wrap_angle(theta_c[:-1] - theta_c[-1])
        if np.any(np.abs(np.sin(rel_r)) < np.sin(self.min_angle)):
            return False
        return bool(np.all(np.abs(_wrap_angle(rel_r - rel_c)) <= self.tolerance))
