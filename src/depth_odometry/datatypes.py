"""Passive data structures for the alignment pipeline."""

from dataclasses import dataclass, field

import numpy as np

# "no data" sentinel of depth images
NO_DEPTH = float(np.finfo(np.float32).max)


@dataclass
class Gaussian3f:
    """
    Measurement uncertainty of one or many 3D points.

    Attributes:
        mean: Point position (3,) or batch of positions (N, 3).
        covariance: Covariance (3, 3) or batch of covariances (N, 3, 3).

    """

    mean: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    covariance: np.ndarray = field(default_factory=lambda: np.empty((0, 3, 3)))

    def __len__(self) -> int:
        return len(self.mean)

    def transformed(self, T: np.ndarray) -> "Gaussian3f":
        """Return the gaussians moved by a rigid transform."""
        R = T[:3, :3]
        return Gaussian3f(
            mean=self.mean @ R.T + T[:3, 3],
            covariance=R @ self.covariance @ R.T,
        )


@dataclass
class PointStats:
    """
    Local surface statistics of every point of a frame.

    Attributes:
        curvatures: (N,) smallest eigenvalue over eigenvalue sum of the local covariance.
        eigenvalues: (N, 3) ascending eigenvalues of the local covariance.
        eigenvectors: (N, 3, 3) eigenvectors as columns; column 0 is the normal direction.
        point_information: (N, 3, 3) information matrices of the positions.
        normal_information: (N, 3, 3) information matrices of the normals.

    """

    curvatures: np.ndarray = field(default_factory=lambda: np.empty(0))
    eigenvalues: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    eigenvectors: np.ndarray = field(default_factory=lambda: np.empty((0, 3, 3)))
    point_information: np.ndarray = field(default_factory=lambda: np.empty((0, 3, 3)))
    normal_information: np.ndarray = field(
        default_factory=lambda: np.empty((0, 3, 3))
    )

    def __len__(self) -> int:
        return len(self.curvatures)


@dataclass
class Frame:
    """
    A point cloud with normals, measurement uncertainty and surface statistics.

    All sequences are parallel: entry i of each describes point i.

    Attributes:
        points: (N, 4) homogeneous positions, last component 1.
        normals: (N, 4) homogeneous directions, last component 0. A zero normal marks
            a point without enough neighbours to estimate its surface.
        gaussians: Measurement uncertainty of the positions.
        stats: Local surface statistics and information matrices.

    """

    points: np.ndarray = field(default_factory=lambda: np.empty((0, 4)))
    normals: np.ndarray = field(default_factory=lambda: np.empty((0, 4)))
    gaussians: Gaussian3f = field(default_factory=Gaussian3f)
    stats: PointStats = field(default_factory=PointStats)

    def __post_init__(self) -> None:
        n = len(self.points)
        if len(self.normals) != n or len(self.gaussians) != n or len(self.stats) != n:
            msg = (
                f"Frame sequences differ in length: points={n}, "
                f"normals={len(self.normals)}, gaussians={len(self.gaussians)}, "
                f"stats={len(self.stats)}"
            )
            raise ValueError(msg)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def valid_normals(self) -> np.ndarray:
        """Boolean mask (N,) of points with an estimated normal."""
        return np.any(self.normals[:, :3] != 0, axis=1)

    def transform_in_place(self, T: np.ndarray) -> None:
        """Apply a rigid transform to every point, normal and covariance."""
        R = T[:3, :3]
        self.points = self.points @ T.T
        self.points[:, 3] = 1.0
        self.normals = self.normals @ T.T
        self.normals[:, 3] = 0.0
        self.gaussians = self.gaussians.transformed(T)
        self.stats = PointStats(
            curvatures=self.stats.curvatures,
            eigenvalues=self.stats.eigenvalues,
            eigenvectors=R @ self.stats.eigenvectors,
            point_information=R @ self.stats.point_information @ R.T,
            normal_information=R @ self.stats.normal_information @ R.T,
        )

    def transformed(self, T: np.ndarray) -> "Frame":
        """Return a copy of the frame moved by a rigid transform."""
        frame = self.copy()
        frame.transform_in_place(T)
        return frame

    def copy(self) -> "Frame":
        return Frame(
            points=self.points.copy(),
            normals=self.normals.copy(),
            gaussians=Gaussian3f(
                self.gaussians.mean.copy(), self.gaussians.covariance.copy()
            ),
            stats=PointStats(
                curvatures=self.stats.curvatures.copy(),
                eigenvalues=self.stats.eigenvalues.copy(),
                eigenvectors=self.stats.eigenvectors.copy(),
                point_information=self.stats.point_information.copy(),
                normal_information=self.stats.normal_information.copy(),
            ),
        )

    def merge(self, other: "Frame", T: np.ndarray | None = None) -> None:
        """
        Append the points of another frame, optionally moved by T.

        Index correspondence holds within each source frame only.
        """
        if T is not None:
            other = other.transformed(T)
        self.points = np.vstack((self.points, other.points))
        self.normals = np.vstack((self.normals, other.normals))
        self.gaussians = Gaussian3f(
            mean=np.vstack((self.gaussians.mean, other.gaussians.mean)),
            covariance=np.concatenate(
                (self.gaussians.covariance, other.gaussians.covariance)
            ),
        )
        self.stats = PointStats(
            curvatures=np.concatenate((self.stats.curvatures, other.stats.curvatures)),
            eigenvalues=np.vstack((self.stats.eigenvalues, other.stats.eigenvalues)),
            eigenvectors=np.concatenate(
                (self.stats.eigenvectors, other.stats.eigenvectors)
            ),
            point_information=np.concatenate(
                (self.stats.point_information, other.stats.point_information)
            ),
            normal_information=np.concatenate(
                (self.stats.normal_information, other.stats.normal_information)
            ),
        )

    def select(self, mask: np.ndarray) -> "Frame":
        """Return the subset of points selected by a boolean mask or index array."""
        return Frame(
            points=self.points[mask],
            normals=self.normals[mask],
            gaussians=Gaussian3f(
                self.gaussians.mean[mask], self.gaussians.covariance[mask]
            ),
            stats=PointStats(
                curvatures=self.stats.curvatures[mask],
                eigenvalues=self.stats.eigenvalues[mask],
                eigenvectors=self.stats.eigenvectors[mask],
                point_information=self.stats.point_information[mask],
                normal_information=self.stats.normal_information[mask],
            ),
        )

    def clear(self) -> None:
        """Remove every point."""
        self.points = np.empty((0, 4))
        self.normals = np.empty((0, 4))
        self.gaussians = Gaussian3f()
        self.stats = PointStats()


@dataclass
class Correspondence:
    """
    A hypothesized match between a reference feature and a current feature.

    Attributes:
        reference_index: Index into the reference feature set.
        current_index: Index into the current feature set.
        score: Matching score; higher is better.

    """

    reference_index: int
    current_index: int
    score: float = 0.0

    def __lt__(self, other: "Correspondence") -> bool:
        # sorting puts the best scores first
        return self.score > other.score
