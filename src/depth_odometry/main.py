from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import numpy as np
import rerun as rr
import tyro

from depth_odometry.config.config import get_config
from depth_odometry.datatypes import Frame
from depth_odometry.modules.dataset_loader import BaseDataset, PgmDataset, TumDataset
from depth_odometry.modules.odometry import DepthOdometry
from depth_odometry.modules.utils import (
    compute_trajectory_length,
    extract_trajectory_positions,
    save_trajectory,
    transform_to_vector,
)
from depth_odometry.utils.enums import ProjectorType


def init_rerun() -> None:
    """Initialize Rerun logging with correct coordinate systems."""
    rr.init("Depth Odometry", spawn=True)

    # forward +Z, right +X, down +Y
    rr.log("world", rr.ViewCoordinates.RIGHT_HAND_Y_DOWN, static=True)


def log_frame_rerun(
    odometry: DepthOdometry,
    frame: Frame,
    frame_id: int,
    trajectory_history: np.ndarray,
) -> None:
    rr.set_time("frame", sequence=frame_id)

    T = odometry.T
    rr.log("world/sensor", rr.Transform3D(translation=T[:3, 3], mat3x3=T[:3, :3]))

    # current cloud, in sensor coordinates under the sensor entity
    if len(frame) > 0:
        valid = frame.valid_normals
        colors = np.where(valid[:, None], [0, 200, 255], [255, 80, 80])
        rr.log(
            "world/sensor/cloud",
            rr.Points3D(frame.points[:, :3], colors=colors, radii=0.005),
        )

    if odometry.cfg.merge_frames and len(odometry.map) > 0:
        rr.log("world/map", rr.Points3D(odometry.map.points[:, :3], radii=0.005))

    if len(trajectory_history) > 1:
        rr.log(
            "world/trajectory",
            rr.LineStrips3D([trajectory_history], colors=[255, 255, 0], radii=0.01),
        )

    rr.log("diagnostics/inliers", rr.Scalars(odometry.aligner.inliers))
    rr.log("diagnostics/error", rr.Scalars(odometry.aligner.error))
    rr.log(
        "diagnostics/correspondences",
        rr.Scalars(odometry.aligner.num_correspondences),
    )

    # frame to frame motion as translation and rotation vector norms
    step = transform_to_vector(odometry.state.T_velocity)
    rr.log("diagnostics/step_translation", rr.Scalars(np.linalg.norm(step[:3])))
    rr.log("diagnostics/step_rotation", rr.Scalars(np.linalg.norm(step[3:])))


@dataclass
class Args:
    dataset: Literal["tum", "pgm"] = "tum"
    path: Path = Path("data")
    sensor: Literal["kinect", "xtion", "cylindrical"] = "kinect"
    projector: Literal["pinhole", "cylindrical"] = "pinhole"
    merge: bool = False
    max_frames: int = -1
    output: Path = Path("trajectory.txt")
    headless: bool = False
    debug: bool = False


def main(args: Args) -> None:
    # setup
    print(f"Initializing {args.dataset}...")
    loader: BaseDataset
    if args.dataset == "tum":
        loader = TumDataset(args.path)
    elif args.dataset == "pgm":
        loader = PgmDataset(args.path)

    if not loader.image_files:
        print("Error: No depth images found.")
        return

    cfg = get_config(args.sensor)
    cfg.merge_frames = args.merge
    projector_type = (
        ProjectorType.CYLINDRICAL if args.projector == "cylindrical" else ProjectorType.PINHOLE
    )
    odometry = DepthOdometry(loader.K, cfg, projector_type, debug=args.debug)

    if not args.headless:
        init_rerun()

    n_frames = len(loader)
    if args.max_frames > 0:
        n_frames = min(n_frames, args.max_frames)

    failures = 0
    for i in range(n_frames):
        depth = loader.read_depth(i)
        success = odometry.process(depth, loader.timestamps[i])
        failures += not success

        t = odometry.T[:3, 3]
        step = transform_to_vector(odometry.state.T_velocity)
        print(
            f"Frame {i:04d} | "
            f"Points: {len(odometry.current):06d} | "
            f"Corr: {odometry.aligner.num_correspondences:05d} | "
            f"Inliers: {odometry.aligner.inliers:05d} | "
            f"Error: {odometry.aligner.error:.4f} | "
            f"Step: {np.linalg.norm(step[:3]):.4f} m "
            f"{np.rad2deg(np.linalg.norm(step[3:])):.2f} deg | "
            f"Pos: [{t[0]:.3f} {t[1]:.3f} {t[2]:.3f}]"
        )

        if not args.headless:
            log_frame_rerun(
                odometry,
                odometry.current,
                i,
                extract_trajectory_positions(odometry.trajectory),
            )

    save_trajectory(odometry.trajectory, args.output)
    print(
        f"Done. {n_frames} frames, {failures} failed, "
        f"trajectory length {compute_trajectory_length(odometry.trajectory):.3f} m "
        f"saved to {args.output}"
    )


def cli() -> None:
    main(tyro.cli(Args))


if __name__ == "__main__":
    cli()
