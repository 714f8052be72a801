import numpy as np

from depth_odometry.config.config import OdometryConfig
from depth_odometry.datatypes import Frame
from depth_odometry.modules.projector import PointProjector
from depth_odometry.modules.utils import invert_transform


class Merger:
    """
    Thins an accumulated map by collapsing points that land on the same pixel.

    The map is rasterized from the current sensor pose; a point that falls on a
    pixel owned by a nearer point is dropped when it lies within `merge_distance`
    of that point along the ray and its normal agrees. Points outside the image
    are kept untouched.
    """

    def __init__(
        self, projector: PointProjector, rows: int, cols: int, config: OdometryConfig
    ) -> None:
        self.projector = projector
        self.rows = rows
        self.cols = cols
        self.cfg = config

    def merge(self, frame_world: Frame, T_world_sensor: np.ndarray) -> Frame:
        """
        Remove duplicated points of a map seen from a sensor pose.

        Args:
            frame_world: Map in world coordinates
            T_world_sensor: Sensor pose (sensor -> world)

        Returns:
            The thinned map, in world coordinates

        """
        n = len(frame_world)
        if n == 0:
            return frame_world

        T_sensor_world = invert_transform(T_world_sensor)
        points = frame_world.points @ T_sensor_world.T
        _, index_image = self.projector.project_image(points, self.rows, self.cols)

        xy, depth, ok = self.projector.project(points)
        px = np.rint(xy).astype(np.int64)
        inside = (
            ok
            & (depth >= self.projector.min_depth)
            & (depth <= self.projector.max_depth)
            & (px[:, 0] >= 0)
            & (px[:, 0] < self.cols)
            & (px[:, 1] >= 0)
            & (px[:, 1] < self.rows)
        )

        keep = np.ones(n, dtype=bool)
        ids = np.flatnonzero(inside)
        winner = index_image[px[ids, 1], px[ids, 0]].astype(np.int64)
        losers = winner != ids
        ids, winner = ids[losers], winner[losers]

        close = np.abs(depth[ids] - depth[winner]) <= self.cfg.merge_distance
        cos_threshold = np.cos(np.deg2rad(self.cfg.max_normal_angle_deg))
        normals = frame_world.normals[:, :3]
        agree = np.sum(normals[ids] * normals[winner], axis=1) > cos_threshold
        keep[ids[close & agree]] = False

        return frame_world.select(keep)
