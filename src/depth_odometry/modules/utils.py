from pathlib import Path

import numpy as np
from scipy.spatial.transform import Rotation as R_scipy

from depth_odometry.state.odometry_state import OdometryState


def skew(v: np.ndarray) -> np.ndarray:
    """
    Cross product matrix of one vector (3,) or a batch of vectors (N, 3).

    Returns:
        S: (3, 3) or (N, 3, 3) matrices with S @ w == cross(v, w)

    """
    v = np.asarray(v, dtype=np.float64)
    S = np.zeros(v.shape[:-1] + (3, 3))
    x, y, z = v[..., 0], v[..., 1], v[..., 2]
    S[..., 0, 1] = -z
    S[..., 0, 2] = y
    S[..., 1, 0] = z
    S[..., 1, 2] = -x
    S[..., 2, 0] = -y
    S[..., 2, 1] = x
    return S


def se3_exp(xi: np.ndarray) -> np.ndarray:
    """
    Exponential map of a tangent vector xi = [rho, omega] onto SE(3).

    Args:
        xi: 6-vector, translational part first

    Returns:
        T: 4x4 rigid transform

    """
    rho = xi[:3]
    omega = xi[3:]
    theta = np.linalg.norm(omega)
    W = skew(omega)

    # V maps the translational part through the rotation
    if theta < 1e-9:
        V = np.eye(3) + 0.5 * W
    else:
        V = (
            np.eye(3)
            + (1.0 - np.cos(theta)) / theta**2 * W
            + (theta - np.sin(theta)) / theta**3 * (W @ W)
        )

    T = np.eye(4)
    T[:3, :3] = R_scipy.from_rotvec(omega).as_matrix()
    T[:3, 3] = V @ rho
    return T


def transform_to_vector(T: np.ndarray) -> np.ndarray:
    """
    Convert a rigid transform to [tx, ty, tz, rx, ry, rz] (rotation vector).

    Args:
        T: 4x4 transform

    Returns:
        v: 6-vector

    """
    v = np.zeros(6)
    v[:3] = T[:3, 3]
    v[3:] = R_scipy.from_matrix(T[:3, :3]).as_rotvec()
    return v


def normalize_transform(T: np.ndarray) -> np.ndarray:
    """
    Project the rotation block back onto SO(3) and reset the homogeneous row.

    Args:
        T: 4x4 transform affected by floating point drift

    Returns:
        T: 4x4 valid rigid transform

    """
    T = np.array(T, dtype=np.float64)
    U, _, Vt = np.linalg.svd(T[:3, :3])
    R = U @ Vt
    if np.linalg.det(R) < 0:
        U[:, -1] *= -1
        R = U @ Vt
    T[:3, :3] = R
    T[3, :] = [0.0, 0.0, 0.0, 1.0]
    return T


def invert_transform(T: np.ndarray) -> np.ndarray:
    """Inverse of a rigid transform."""
    R = T[:3, :3]
    t = T[:3, 3]
    T_inv = np.eye(4)
    T_inv[:3, :3] = R.T
    T_inv[:3, 3] = -R.T @ t
    return T_inv


def rotation_angle(T: np.ndarray) -> float:
    """Rotation angle (radians) of the rotation block."""
    tr = np.clip((np.trace(T[:3, :3]) - 1.0) / 2.0, -1.0, 1.0)
    return float(np.arccos(tr))


def create_camera_matrix(fx: float, fy: float, cx: float, cy: float) -> np.ndarray:
    """
    Create 3x3 camera calibration matrix K.

    Args:
        fx, fy: focal lengths
        cx, cy: principal point

    Returns:
        K: 3x3 camera matrix

    """
    return np.array([[fx, 0, cx], [0, fy, cy], [0, 0, 1]], dtype=np.float64)


def extract_trajectory_positions(trajectory: list[OdometryState]) -> np.ndarray:
    """
    Extract sensor positions from trajectory.

    Args:
        trajectory: List of OdometryState objects

    Returns:
        positions: (N, 3) array of sensor positions

    """
    if not trajectory:
        return np.empty((0, 3))
    return np.array([state.T[:3, 3] for state in trajectory])


def compute_trajectory_length(trajectory: list[OdometryState]) -> float:
    """
    Compute total length of the sensor trajectory.

    Args:
        trajectory: List of OdometryState objects

    Returns:
        length: Total trajectory length (m)

    """
    if len(trajectory) < 2:
        return 0.0

    positions = extract_trajectory_positions(trajectory)
    diffs = np.diff(positions, axis=0)
    distances = np.linalg.norm(diffs, axis=1)
    return float(np.sum(distances))


def save_trajectory(trajectory: list[OdometryState], filename: str | Path) -> None:
    """
    Save trajectory to file in TUM format (timestamp tx ty tz qx qy qz qw).

    Args:
        trajectory: List of OdometryState objects
        filename: Output filename

    """
    with Path(filename).open("w") as f:
        for state in trajectory:
            t = state.T[:3, 3]
            quat = R_scipy.from_matrix(state.T[:3, :3]).as_quat()

            f.write(
                f"{state.timestamp:.6f} {t[0]:.6f} {t[1]:.6f} {t[2]:.6f} "
                f"{quat[0]:.6f} {quat[1]:.6f} {quat[2]:.6f} {quat[3]:.6f}\n"
            )


def load_trajectory(filename: str | Path) -> list[OdometryState]:
    """
    Load trajectory from a TUM format file.

    Args:
        filename: Input filename

    Returns:
        trajectory: List of OdometryState objects

    """
    trajectory = []
    data = np.loadtxt(filename)
    if data.ndim == 1:
        data = data.reshape(1, -1)

    for i, row in enumerate(data):
        T = np.eye(4)
        T[:3, 3] = row[1:4]
        T[:3, :3] = R_scipy.from_quat(row[4:8]).as_matrix()  # x,y,z,w
        trajectory.append(OdometryState(T=T, frame_id=i, timestamp=row[0]))
    return trajectory
