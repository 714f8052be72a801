from dataclasses import dataclass, field

import numpy as np

from depth_odometry.config.config import OdometryConfig
from depth_odometry.datatypes import Frame
from depth_odometry.modules.projector import PointProjector


@dataclass
class CorrespondenceResult:
    """
    Output of a correspondence search.

    Attributes:
        correspondences: (M, 2) int array of (reference index, current index).
        reference_depth: Depth image of the reference frame.
        current_depth: Depth image of the current frame under the candidate transform.
        reference_index: Index image of the reference frame.
        current_index: Index image of the current frame.

    """

    correspondences: np.ndarray = field(
        default_factory=lambda: np.empty((0, 2), dtype=np.int64)
    )
    reference_depth: np.ndarray = field(default_factory=lambda: np.empty((0, 0)))
    current_depth: np.ndarray = field(default_factory=lambda: np.empty((0, 0)))
    reference_index: np.ndarray = field(
        default_factory=lambda: np.empty((0, 0), dtype=np.int32)
    )
    current_index: np.ndarray = field(
        default_factory=lambda: np.empty((0, 0), dtype=np.int32)
    )

    def __len__(self) -> int:
        return len(self.correspondences)


def _window_offsets(radius: int) -> list[tuple[int, int]]:
    """Window offsets sorted by distance from the centre."""
    offsets = [
        (dr, dc) for dr in range(-radius, radius + 1) for dc in range(-radius, radius + 1)
    ]
    return sorted(offsets, key=lambda o: (o[0] ** 2 + o[1] ** 2, o))


class CorrespondenceFinder:
    """Projective data association between a reference and a current frame."""

    def __init__(
        self,
        projector: PointProjector,
        rows: int,
        cols: int,
        config: OdometryConfig,
    ) -> None:
        self.projector = projector
        self.cfg = config
        self.set_image_size(rows, cols)

    def set_image_size(self, rows: int, cols: int) -> None:
        self.rows = rows
        self.cols = cols

    def compute(
        self, reference: Frame, current: Frame, T: np.ndarray
    ) -> CorrespondenceResult:
        """
        Match the current frame, moved by T, against the reference frame.

        Both frames are rasterized in the reference image. For every pixel hit by a
        current point, the reference pixels in a small window are candidates; a
        candidate is accepted when its depth is close and its normal agrees with the
        rotated current normal. The smallest depth difference wins.

        Args:
            reference: Reference frame
            current: Current frame
            T: Candidate transform (current -> reference)

        Returns:
            CorrespondenceResult, with no correspondence for unmatched points

        """
        ref_depth, ref_index = self.projector.project_image(
            reference.points, self.rows, self.cols
        )
        cur_points = current.points @ T.T
        cur_depth, cur_index = self.projector.project_image(
            cur_points, self.rows, self.cols
        )
        result = CorrespondenceResult(
            reference_depth=ref_depth,
            current_depth=cur_depth,
            reference_index=ref_index,
            current_index=cur_index,
        )

        # current pixels with a usable normal
        r, c = np.nonzero(cur_index >= 0)
        cur_ids = cur_index[r, c]
        usable = current.valid_normals[cur_ids]
        r, c, cur_ids = r[usable], c[usable], cur_ids[usable]
        if len(cur_ids) == 0 or len(reference) == 0:
            return result

        cur_d = cur_depth[r, c].astype(np.float64)
        cur_normals = current.normals[cur_ids, :3] @ T[:3, :3].T
        ref_normals = reference.normals[:, :3]
        ref_valid = reference.valid_normals
        cos_threshold = np.cos(np.deg2rad(self.cfg.max_normal_angle_deg))

        best_diff = np.full(len(cur_ids), np.inf)
        best_ref = np.full(len(cur_ids), -1, dtype=np.int64)

        for dr, dc in _window_offsets(self.cfg.search_radius):
            rr = r + dr
            cc = c + dc
            inside = (rr >= 0) & (rr < self.rows) & (cc >= 0) & (cc < self.cols)
            cand = np.full(len(cur_ids), -1, dtype=np.int64)
            cand[inside] = ref_index[rr[inside], cc[inside]]
            ok = cand >= 0

            diff = np.full(len(cur_ids), np.inf)
            diff[ok] = np.abs(ref_depth[rr[ok], cc[ok]] - cur_d[ok])
            ok &= diff < self.cfg.max_depth_difference
            ok[ok] = ref_valid[cand[ok]]

            cos = np.zeros(len(cur_ids))
            cos[ok] = np.sum(ref_normals[cand[ok]] * cur_normals[ok], axis=1)
            ok &= cos > cos_threshold

            better = ok & (diff < best_diff)
            best_diff[better] = diff[better]
            best_ref[better] = cand[better]

        matched = best_ref >= 0
        result.correspondences = np.stack(
            [best_ref[matched], cur_ids[matched].astype(np.int64)], axis=1
        )
        return result
