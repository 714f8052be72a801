"""Tests for the depth dataset loaders."""

import cv2
import numpy as np
import pytest

from depth_odometry.datatypes import NO_DEPTH
from depth_odometry.modules.dataset_loader import PgmDataset, TumDataset


def write_depth(path, values):
    path.parent.mkdir(parents=True, exist_ok=True)
    assert cv2.imwrite(str(path), np.asarray(values, dtype=np.uint16))


def test_tum_dataset(tmp_path):
    write_depth(tmp_path / "depth" / "1305031102.211214.png", [[5000, 0], [10000, 2500]])
    write_depth(tmp_path / "depth" / "1305031102.175304.png", [[5000, 5000], [5000, 5000]])
    (tmp_path / "groundtruth.txt").write_text(
        "# timestamp tx ty tz qx qy qz qw\n1305031102.1758 0 0 0 0 0 0 1\n"
    )

    dataset = TumDataset(tmp_path)
    assert len(dataset) == 2
    assert dataset.timestamps == pytest.approx([1305031102.175304, 1305031102.211214])
    assert dataset.K[0, 0] == pytest.approx(517.3)
    assert len(dataset.ground_truth) == 1

    depth = dataset.read_depth(1)
    assert depth.dtype == np.float32
    assert depth[0, 0] == pytest.approx(1.0)
    assert depth[0, 1] == NO_DEPTH
    assert depth[1, 0] == pytest.approx(2.0)
    assert depth[1, 1] == pytest.approx(0.5)


def test_pgm_dataset(tmp_path):
    write_depth(tmp_path / "000.pgm", [[1500, 0, 700]])
    write_depth(tmp_path / "001.pgm", [[1000, 1000, 1000]])

    dataset = PgmDataset(tmp_path, frame_rate=10.0)
    assert len(dataset) == 2
    assert dataset.timestamps == pytest.approx([0.0, 0.1])
    assert dataset.ground_truth is None

    depth = dataset.read_depth(0)
    assert depth[0, 0] == pytest.approx(1.5)
    assert depth[0, 1] == NO_DEPTH
    assert depth[0, 2] == pytest.approx(0.7)


def test_missing_image(tmp_path):
    dataset = PgmDataset(tmp_path)
    assert len(dataset) == 0
    dataset.image_files = [tmp_path / "missing.pgm"]
    with pytest.raises(FileNotFoundError):
        dataset.read_depth(0)
