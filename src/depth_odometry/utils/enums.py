from enum import Enum

import numpy as np

from depth_odometry.config.config import OdometryConfig
from depth_odometry.modules.projector import (
    CylindricalProjector,
    PinholeProjector,
    PointProjector,
)


class ProjectorType(Enum):
    """Enum for the projection models."""

    PINHOLE = 0
    CYLINDRICAL = 1


class AlignerStatus(Enum):
    """Enum for the states of an alignment."""

    IDLE = 0
    CONVERGED = 1
    FAILED = 2


def create_projector(
    projector_type: ProjectorType,
    K: np.ndarray,
    config: OdometryConfig,
    transform: np.ndarray | None = None,
) -> PointProjector:
    """
    Create a projector of the specified type.

    Args:
        projector_type: Type of projector to create.
        K: Intrinsic camera matrix (3x3).
        config: Configuration object with the sensor settings.
        transform: Sensor offset (4x4). Identity if None.

    Returns:
        A PointProjector instance.

    Raises:
        ValueError: If the projector type is not supported.

    """
    if projector_type == ProjectorType.PINHOLE:
        return PinholeProjector(
            K,
            transform,
            min_depth=config.min_depth,
            max_depth=config.max_depth,
            baseline=config.baseline,
            alpha=config.alpha,
        )
    if projector_type == ProjectorType.CYLINDRICAL:
        return CylindricalProjector(
            K,
            transform,
            min_depth=config.min_depth,
            max_depth=config.max_depth,
            baseline=config.baseline,
            alpha=config.alpha,
            angular_resolution=config.angular_resolution,
            angular_fov=config.angular_fov,
        )
    msg = "Unsupported projector type"
    raise ValueError(msg)
