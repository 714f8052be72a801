import numpy as np
import pytest

from depth_odometry.config.config import OdometryConfig
from depth_odometry.modules.frame_builder import FrameBuilder
from depth_odometry.modules.projector import CylindricalProjector, PinholeProjector

from .utils import COLS, K, ROWS, render_cylindrical, render_pinhole


@pytest.fixture
def config():
    return OdometryConfig(min_inliers=50)


@pytest.fixture
def pinhole(config):
    return PinholeProjector(
        K,
        min_depth=config.min_depth,
        max_depth=config.max_depth,
        baseline=config.baseline,
        alpha=config.alpha,
    )


@pytest.fixture
def cylindrical(config):
    return CylindricalProjector(
        K,
        min_depth=config.min_depth,
        max_depth=config.max_depth,
        baseline=config.baseline,
        alpha=config.alpha,
        angular_resolution=360.0,
    )


@pytest.fixture
def room_depth():
    return render_pinhole()


@pytest.fixture
def room_frame(pinhole, config, room_depth):
    return FrameBuilder(pinhole, config).build(room_depth)


@pytest.fixture
def cylindrical_room_frame(cylindrical, config):
    return FrameBuilder(cylindrical, config).build(render_cylindrical())


@pytest.fixture
def image_size():
    return ROWS, COLS


@pytest.fixture
def rng():
    return np.random.default_rng(0)
