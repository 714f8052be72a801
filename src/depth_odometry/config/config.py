from dataclasses import dataclass

import numpy as np


@dataclass
class OdometryConfig:
    """Configuration data class for the depth odometry pipeline."""

    # sensor
    min_depth: float = 0.5
    max_depth: float = 5.0
    baseline: float = 0.075  # meters
    alpha: float = 0.1  # disparity noise coefficient
    image_step: int = 1  # depth image decimation

    # cylindrical sensor
    angular_resolution: float = 360.0  # pixels per 360 degrees
    angular_fov: float = np.pi / 2  # half field of view

    # normal estimation
    normal_world_radius: float = 0.1
    normal_min_points: int = 5
    max_normal_pixel_radius: int = 16

    # information matrices, diagonal along (normal, tangent, tangent)
    curvature_threshold: float = 0.02
    flat_point_information: tuple[float, float, float] = (100.0, 1.0, 1.0)
    nonflat_point_information: tuple[float, float, float] = (1.0, 0.1, 0.1)
    flat_normal_information: tuple[float, float, float] = (1.0, 10.0, 10.0)
    nonflat_normal_information: tuple[float, float, float] = (0.1, 0.1, 0.1)

    # correspondences
    max_depth_difference: float = 0.1
    max_normal_angle_deg: float = 30.0
    search_radius: int = 1  # half window in pixels

    # linearizer
    inlier_max_chi2: float = 9.0
    robust_kernel: bool = True

    # aligner
    inner_iterations: int = 3
    outer_iterations: int = 10
    convergence_threshold: float = 1e-4  # relative error change
    min_inliers: int = 100
    max_condition_number: float = 1e12
    damping: float = 0.0

    # odometry
    use_motion_model: bool = True
    merge_frames: bool = False
    merge_distance: float = 0.05
    map_max_distance: float = 0.0  # map crop radius around the sensor, 0 disables


@dataclass
class RansacConfig:
    """Configuration data class for the generalized RANSAC."""

    max_iterations: int = 1000
    inlier_error_threshold: float = 1.0
    inlier_stop_fraction: float = 0.8
    best_friend_filter: bool = False


def get_config(sensor: str) -> OdometryConfig:
    """
    Return the specific configuration for a sensor.

    Args:
        sensor: Name of the sensor preset (kinect, xtion, cylindrical).

    Returns:
        The configuration object with sensor-specific overrides.

    Raises:
        ValueError: If the preset is unknown.

    """
    cfg = OdometryConfig()

    if sensor == "kinect":
        cfg.min_depth = 0.5
        cfg.max_depth = 5.0
        cfg.image_step = 2

    elif sensor == "xtion":
        cfg.min_depth = 0.8
        cfg.max_depth = 3.5
        cfg.baseline = 0.075
        cfg.alpha = 0.08
        cfg.image_step = 2
        cfg.max_depth_difference = 0.08

    elif sensor == "cylindrical":
        cfg.min_depth = 0.3
        cfg.max_depth = 10.0
        cfg.angular_resolution = 720.0
        cfg.angular_fov = np.pi
        cfg.normal_world_radius = 0.2
        cfg.max_depth_difference = 0.3
        cfg.search_radius = 2

    else:
        msg = f"Unknown sensor preset: {sensor}"
        raise ValueError(msg)

    return cfg
