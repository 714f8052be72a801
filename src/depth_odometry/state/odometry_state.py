from dataclasses import dataclass, field

import numpy as np


@dataclass
class OdometryState:
    """Current state of the depth odometry system."""

    T: np.ndarray = field(default_factory=lambda: np.eye(4))  # sensor -> world
    frame_id: int = 0  # current frame number
    timestamp: float = 0.0  # timestamp of current frame
    # relative motion of the last successful step (current -> previous)
    T_velocity: np.ndarray = field(default_factory=lambda: np.eye(4))
    inliers: int = 0  # inliers of the last alignment
    error: float = 0.0  # residual error of the last alignment
