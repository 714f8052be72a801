import numpy as np
import scipy.linalg

from depth_odometry.config.config import OdometryConfig
from depth_odometry.datatypes import Frame
from depth_odometry.modules.correspondence_finder import (
    CorrespondenceFinder,
    CorrespondenceResult,
)
from depth_odometry.modules.linearizer import Linearizer
from depth_odometry.modules.utils import normalize_transform, se3_exp
from depth_odometry.utils.enums import AlignerStatus


class Aligner:
    """
    Iterative alignment of a current frame onto a reference frame.

    Each inner step searches correspondences at the current estimate, linearizes
    and applies the solution of H dx = -b through the SE(3) exponential map. After
    each outer iteration the residual error is compared with the previous one and
    the loop stops once it settles.
    """

    def __init__(
        self,
        correspondence_finder: CorrespondenceFinder,
        linearizer: Linearizer,
        config: OdometryConfig,
        debug: bool = False,
    ) -> None:
        """
        Initialize the aligner.

        Args:
            correspondence_finder: Matches the current frame against the reference.
            linearizer: Builds the normal equations of each step.
            config: Configuration object.
            debug: Print every inner iteration.

        Raises:
            ValueError: If the inner or outer iteration count is below one.

        """
        if config.inner_iterations < 1 or config.outer_iterations < 1:
            msg = (
                "Iteration counts must be at least 1, got "
                f"inner={config.inner_iterations}, outer={config.outer_iterations}"
            )
            raise ValueError(msg)
        self.correspondence_finder = correspondence_finder
        self.linearizer = linearizer
        self.cfg = config
        self.debug = debug

        self._T = np.eye(4)
        self.status = AlignerStatus.IDLE
        self.error = 0.0
        self.inliers = 0
        self.num_correspondences = 0
        # last correspondence search, for diagnostics
        self.last_result = CorrespondenceResult()

    @property
    def T(self) -> np.ndarray:
        """
        Transform current -> reference of the last alignment.

        After a failed alignment this holds the initial guess of that call, not the
        last converged transform.

        """
        return self._T.copy()

    def clear(self) -> None:
        self._T = np.eye(4)
        self.status = AlignerStatus.IDLE
        self.error = 0.0
        self.inliers = 0
        self.num_correspondences = 0
        self.last_result = CorrespondenceResult()

    def _solve(self, H: np.ndarray, b: np.ndarray) -> np.ndarray | None:
        """Solve H dx = -b, or None when H is rank deficient."""
        H = H + self.cfg.damping * np.eye(6)
        if not np.all(np.isfinite(H)):
            return None
        with np.errstate(divide="ignore"):
            if np.linalg.cond(H) > self.cfg.max_condition_number:
                return None
        try:
            factor = scipy.linalg.cho_factor(H)
        except np.linalg.LinAlgError:
            return None
        return scipy.linalg.cho_solve(factor, -b)

    def _fail(self, reason: str, T_initial: np.ndarray) -> bool:
        if self.debug:
            print(f"Alignment failed: {reason}")
        self._T = T_initial
        self.status = AlignerStatus.FAILED
        return False

    def align(
        self,
        reference: Frame,
        current: Frame,
        initial_guess: np.ndarray | None = None,
    ) -> bool:
        """
        Align the current frame onto the reference frame.

        Args:
            reference: Reference frame
            current: Current frame
            initial_guess: Initial transform current -> reference (identity if None)

        Returns:
            True if the alignment converged; on failure T() is the initial guess.

        """
        T_initial = normalize_transform(
            np.eye(4) if initial_guess is None else initial_guess
        )
        T = T_initial.copy()
        prev_error = None

        for outer in range(self.cfg.outer_iterations):
            for inner in range(self.cfg.inner_iterations):
                result = self.correspondence_finder.compute(reference, current, T)
                self.last_result = result
                self.num_correspondences = len(result)
                if len(result) == 0:
                    return self._fail("no correspondences", T_initial)

                H, b, error, inliers = self.linearizer.update(
                    reference, current, result.correspondences, T
                )
                self.error = error
                self.inliers = inliers
                if inliers < self.cfg.min_inliers:
                    return self._fail(
                        f"too few inliers ({inliers} < {self.cfg.min_inliers})",
                        T_initial,
                    )

                dx = self._solve(H, b)
                if dx is None:
                    return self._fail("rank deficient system", T_initial)

                T = normalize_transform(se3_exp(dx) @ T)

                if self.debug:
                    print(
                        f"Outer {outer:02d} | Inner {inner:02d} | "
                        f"Corr: {len(result):05d} | Inliers: {inliers:05d} | "
                        f"Error: {error:.6f} | |dx|: {np.linalg.norm(dx):.2e}"
                    )

            # residual settled
            if prev_error is not None and abs(prev_error - self.error) <= (
                self.cfg.convergence_threshold * max(prev_error, 1e-12)
            ):
                break
            prev_error = self.error

        self._T = T
        self.status = AlignerStatus.CONVERGED
        return True
