import numpy as np

from depth_odometry.datatypes import Frame
from depth_odometry.modules.utils import normalize_transform, skew


def harmonic_information(omega_a: np.ndarray, omega_b: np.ndarray) -> np.ndarray:
    """
    Combine two batches of information matrices as inv(inv(A) + inv(B)).

    Evaluated as A (A + B)^+ B, which stays defined when either side is singular.

    Args:
        omega_a: (N, 3, 3) information matrices
        omega_b: (N, 3, 3) information matrices

    Returns:
        (N, 3, 3) symmetric combined information

    """
    omega = omega_a @ np.linalg.pinv(omega_a + omega_b, hermitian=True) @ omega_b
    return 0.5 * (omega + np.transpose(omega, (0, 2, 1)))


class Linearizer:
    """
    Gauss-Newton linearization of the point and normal alignment error.

    The error of a correspondence is e = [T p_c - p_r, R n_c - n_r] weighted by the
    harmonic combination of the two points' information. The perturbation
    xi = [rho, omega] is applied on the left of T.
    """

    def __init__(self, inlier_max_chi2: float = 9.0, robust_kernel: bool = True) -> None:
        self.inlier_max_chi2 = inlier_max_chi2
        self.robust_kernel = robust_kernel

    def update(
        self,
        reference: Frame,
        current: Frame,
        correspondences: np.ndarray,
        T: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray, float, int]:
        """
        Build the normal equations of one alignment step.

        Correspondences whose chi2 exceeds `inlier_max_chi2` are scaled down to the
        threshold when the robust kernel is on, otherwise left out of H and b.

        Args:
            reference: Reference frame
            current: Current frame
            correspondences: (M, 2) array of (reference index, current index)
            T: Current estimate (current -> reference)

        Returns:
            H: (6, 6) symmetric approximate Hessian
            b: (6,) gradient vector
            error: sum of the accumulated chi2 costs
            inliers: number of correspondences below the chi2 threshold

        """
        H = np.zeros((6, 6))
        b = np.zeros(6)
        if len(correspondences) == 0:
            return H, b, 0.0, 0

        T = normalize_transform(T)
        R = T[:3, :3]
        ri = correspondences[:, 0]
        ci = correspondences[:, 1]

        p_cur = current.points[ci, :3] @ R.T + T[:3, 3]
        n_cur = current.normals[ci, :3] @ R.T
        point_error = p_cur - reference.points[ri, :3]
        normal_error = n_cur - reference.normals[ri, :3]

        omega_p = harmonic_information(
            reference.stats.point_information[ri],
            R @ current.stats.point_information[ci] @ R.T,
        )
        omega_n = harmonic_information(
            reference.stats.normal_information[ri],
            R @ current.stats.normal_information[ci] @ R.T,
        )

        chi2 = np.einsum("ni,nij,nj->n", point_error, omega_p, point_error) + np.einsum(
            "ni,nij,nj->n", normal_error, omega_n, normal_error
        )

        inlier = chi2 <= self.inlier_max_chi2
        scale = np.ones(len(chi2))
        if self.robust_kernel:
            scale[~inlier] = self.inlier_max_chi2 / chi2[~inlier]
        else:
            scale[~inlier] = 0.0

        # d(T p)/d xi = [I, -[Tp]x], d(R n)/d xi = [0, -[Rn]x]
        Jp = np.zeros((len(chi2), 3, 6))
        Jp[:, :, :3] = np.eye(3)
        Jp[:, :, 3:] = -skew(p_cur)
        Jn = np.zeros((len(chi2), 3, 6))
        Jn[:, :, 3:] = -skew(n_cur)

        omega_p = omega_p * scale[:, None, None]
        omega_n = omega_n * scale[:, None, None]

        H = np.einsum("nki,nkl,nlj->ij", Jp, omega_p, Jp) + np.einsum(
            "nki,nkl,nlj->ij", Jn, omega_n, Jn
        )
        b = np.einsum("nki,nkl,nl->i", Jp, omega_p, point_error) + np.einsum(
            "nki,nkl,nl->i", Jn, omega_n, normal_error
        )
        H = 0.5 * (H + H.T)

        error = float(np.sum(scale * chi2))
        return H, b, error, int(np.sum(inlier))
