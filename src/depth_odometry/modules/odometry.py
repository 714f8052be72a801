"""Frame to frame depth odometry."""

from dataclasses import replace

import numpy as np

from depth_odometry.config.config import OdometryConfig
from depth_odometry.datatypes import NO_DEPTH, Frame
from depth_odometry.modules.aligner import Aligner
from depth_odometry.modules.correspondence_finder import CorrespondenceFinder
from depth_odometry.modules.frame_builder import (
    FrameBuilder,
    downsample_camera_matrix,
    downsample_depth_image,
)
from depth_odometry.modules.linearizer import Linearizer
from depth_odometry.modules.merger import Merger
from depth_odometry.modules.utils import invert_transform
from depth_odometry.state.odometry_state import OdometryState
from depth_odometry.utils.enums import ProjectorType, create_projector


class DepthOdometry:
    """
    Tracks a depth sensor by aligning every new frame onto the previous one.

    With `merge_frames` the reference is a local map accumulated in world
    coordinates and thinned by the merger after every frame. The merger only
    removes points that fall in view, so without `map_max_distance` the map keeps
    every point that left the field of view and grows with the sequence.
    """

    def __init__(
        self,
        K: np.ndarray,
        config: OdometryConfig,
        projector_type: ProjectorType = ProjectorType.PINHOLE,
        debug: bool = False,
    ) -> None:
        """
        Initialize the odometry pipeline.

        Args:
            K: Intrinsic camera matrix of the full resolution images.
            config: Configuration object.
            projector_type: Projection model of the sensor.
            debug: Print the progress of every alignment.

        """
        self.cfg = config
        self.debug = debug
        step = max(config.image_step, 1)
        self.projector = create_projector(
            projector_type, downsample_camera_matrix(K, step), config
        )
        if projector_type == ProjectorType.CYLINDRICAL:
            self.projector.set_angular_resolution(config.angular_resolution / step)

        self.frame_builder = FrameBuilder(self.projector, config)
        self.correspondence_finder = CorrespondenceFinder(self.projector, 0, 0, config)
        self.linearizer = Linearizer(config.inlier_max_chi2, config.robust_kernel)
        self.aligner = Aligner(
            self.correspondence_finder, self.linearizer, config, debug=debug
        )
        self.merger = Merger(self.projector, 0, 0, config)

        self.clear()

    def clear(self) -> None:
        """Forget every frame and reset the pose to the identity."""
        self.state = OdometryState()
        self.trajectory: list[OdometryState] = []
        self.reference: Frame | None = None
        self.current: Frame | None = None
        self.map = Frame()
        self.aligner.clear()

    @property
    def T(self) -> np.ndarray:
        """Sensor pose in world coordinates (sensor -> world)."""
        return self.state.T.copy()

    def _set_image_size(self, rows: int, cols: int) -> None:
        self.correspondence_finder.set_image_size(rows, cols)
        self.merger.rows = rows
        self.merger.cols = cols

    def _update_reference(self, frame: Frame) -> None:
        if not self.cfg.merge_frames:
            self.reference = frame
            return
        self.map.merge(frame, self.state.T)
        self.map = self.merger.merge(self.map, self.state.T)
        if self.cfg.map_max_distance > 0:
            distance = np.linalg.norm(
                self.map.points[:, :3] - self.state.T[:3, 3], axis=1
            )
            self.map = self.map.select(distance <= self.cfg.map_max_distance)
        # reference expressed in the current sensor frame
        self.reference = self.map.transformed(invert_transform(self.state.T))

    def process(self, depth_image: np.ndarray, timestamp: float = 0.0) -> bool:
        """
        Process a single depth image.

        Args:
            depth_image: (H, W) depth in meters, NO_DEPTH, zero or non finite where empty.
            timestamp: Acquisition time of the image.

        Returns:
            True if the frame was tracked (the first frame always is). On failure the
            pose is kept and the frame becomes the new reference.

        """
        depth = np.asarray(depth_image, dtype=np.float32)
        depth = np.where(np.isfinite(depth) & (depth > 0), depth, np.float32(NO_DEPTH))
        depth = downsample_depth_image(depth, max(self.cfg.image_step, 1))
        self._set_image_size(*depth.shape)
        frame = self.frame_builder.build(depth)
        self.current = frame

        if self.reference is None:
            self.state = replace(self.state, timestamp=timestamp)
            self._update_reference(frame)
            self.trajectory.append(replace(self.state, T=self.state.T.copy()))
            return True

        guess = self.state.T_velocity if self.cfg.use_motion_model else np.eye(4)
        success = self.aligner.align(self.reference, frame, guess)

        if success:
            T_step = self.aligner.T
            self.state = OdometryState(
                T=self.state.T @ T_step,
                frame_id=self.state.frame_id + 1,
                timestamp=timestamp,
                T_velocity=T_step,
                inliers=self.aligner.inliers,
                error=self.aligner.error,
            )
        else:
            print(
                f"Warning: alignment failed at frame {self.state.frame_id + 1}, "
                "keeping the last pose"
            )
            self.state = OdometryState(
                T=self.state.T.copy(),
                frame_id=self.state.frame_id + 1,
                timestamp=timestamp,
                inliers=self.aligner.inliers,
                error=self.aligner.error,
            )

        self._update_reference(frame)
        self.trajectory.append(replace(self.state, T=self.state.T.copy()))
        return success
