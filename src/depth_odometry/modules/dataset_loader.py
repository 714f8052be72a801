"""Dataset loaders for depth image sequences."""

from abc import ABC, abstractmethod
from pathlib import Path

import cv2
import numpy as np

from depth_odometry.datatypes import NO_DEPTH
from depth_odometry.modules.utils import create_camera_matrix, load_trajectory
from depth_odometry.state.odometry_state import OdometryState


class BaseDataset(ABC):
    """Abstract base class for a depth dataset loader."""

    # meters per raw depth unit
    depth_scale = 1.0

    def __init__(self, base_path: Path) -> None:
        """
        Initialize the dataset loader.

        Args:
            base_path: The root directory of the dataset.

        """
        self.base_path = Path(base_path)
        self.K: np.ndarray | None = None
        self.ground_truth: list[OdometryState] | None = None
        self.image_files: list[Path] = []
        self.timestamps: list[float] = []

    @abstractmethod
    def load(self) -> None:
        """Load dataset-specific files (K, poses, image paths)."""
        pass

    def __len__(self) -> int:
        return len(self.image_files)

    def read_depth(self, index: int) -> np.ndarray:
        """
        Read a depth image in meters.

        Args:
            index: Position of the image in the sequence.

        Returns:
            (H, W) float32 depth image, NO_DEPTH where the sensor gave no reading

        Raises:
            FileNotFoundError: If the image cannot be read.

        """
        path = self.image_files[index]
        raw = cv2.imread(str(path), cv2.IMREAD_ANYDEPTH)
        if raw is None:
            msg = f"Could not read depth image {path}"
            raise FileNotFoundError(msg)
        depth = raw.astype(np.float32) * np.float32(self.depth_scale)
        depth[raw == 0] = NO_DEPTH
        return depth


class TumDataset(BaseDataset):
    """Loader for TUM RGB-D sequences (16 bit PNG, 5000 units per meter)."""

    depth_scale = 1.0 / 5000.0

    def __init__(self, base_path: Path) -> None:
        super().__init__(base_path)
        self.load()

    def load(self) -> None:
        """Load K, ground truth and depth image paths for TUM."""
        # freiburg1 intrinsics
        self.K = create_camera_matrix(517.3, 516.5, 318.6, 255.3)

        gt_path = self.base_path / "groundtruth.txt"
        if gt_path.exists():
            self.ground_truth = load_trajectory(gt_path)

        # file names are timestamps
        self.image_files = sorted((self.base_path / "depth").glob("*.png"))
        self.timestamps = [float(p.stem) for p in self.image_files]
        print(f"Loaded {len(self.image_files)} depth images from {self.base_path}")


class PgmDataset(BaseDataset):
    """Loader for a directory of 16 bit PGM depth images in millimeters."""

    depth_scale = 1.0e-3

    def __init__(self, base_path: Path, frame_rate: float = 30.0) -> None:
        """
        Initialize the PGM loader.

        Args:
            base_path: Directory with the .pgm files.
            frame_rate: Used to synthesize timestamps.

        """
        super().__init__(base_path)
        self.frame_rate = frame_rate
        self.load()

    def load(self) -> None:
        """Load K and depth image paths."""
        # default Kinect / Xtion intrinsics
        self.K = create_camera_matrix(525.0, 525.0, 319.5, 239.5)

        self.ground_truth = None
        self.image_files = sorted(self.base_path.glob("*.pgm"))
        self.timestamps = [i / self.frame_rate for i in range(len(self.image_files))]
        print(f"Loaded {len(self.image_files)} depth images from {self.base_path}")
