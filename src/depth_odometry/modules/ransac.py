"""Generalized RANSAC over arbitrary correspondences."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import numpy as np

from depth_odometry.config.config import RansacConfig
from depth_odometry.datatypes import Correspondence

# (correspondences, index subset) -> transform, or None when no transform exists
MinimalSetSolver = Callable[[Sequence[Correspondence], np.ndarray], np.ndarray | None]
# (transform, correspondences) -> (N,) error of every correspondence
CorrespondenceScorer = Callable[[np.ndarray, Sequence[Correspondence]], np.ndarray]
# (correspondences, index subset, depth) -> False to prune the subset prefix
CorrespondenceValidator = Callable[[Sequence[Correspondence], np.ndarray, int], bool]


@dataclass
class MinimalSetSearch:
    """
    State of the enumeration of k-combinations over N correspondences.

    `indices` is strictly increasing; advancing position `depth` resets every deeper
    position right after it.
    """

    indices: np.ndarray
    num_correspondences: int

    @classmethod
    def start(cls, minimal_set_size: int, num_correspondences: int) -> "MinimalSetSearch":
        return cls(np.arange(minimal_set_size), num_correspondences)

    @property
    def size(self) -> int:
        return len(self.indices)

    def last_index(self, depth: int) -> int:
        """Largest value position `depth` can take."""
        return self.num_correspondences - (self.size - depth)

    @property
    def exhausted(self) -> bool:
        return self.indices[0] > self.last_index(0)

    def advance(self, depth: int) -> None:
        self.indices[depth] += 1
        tail = self.size - depth - 1
        self.indices[depth + 1 :] = self.indices[depth] + 1 + np.arange(tail)


@dataclass
class HypothesisReport:
    """What the hypothesis hook receives for every scored hypothesis."""

    iteration: int
    minimal_set: np.ndarray
    transform: np.ndarray
    inliers: np.ndarray
    mean_error: float
    errors: np.ndarray = field(repr=False, default_factory=lambda: np.empty(0))


class GeneralizedRansac:
    """
    Hypothesize-and-test estimation of a transform from noisy correspondences.

    Minimal sets are enumerated in lexicographic order; validators prune partial
    sets before the solver runs. A hypothesis replaces the best one only when it
    has more inliers and a lower mean inlier error. The best transform is refined
    by the solver on all its inliers.
    """

    def __init__(
        self,
        minimal_set_size: int,
        solver: MinimalSetSolver,
        scorer: CorrespondenceScorer,
        validators: Sequence[CorrespondenceValidator] = (),
        config: RansacConfig | None = None,
        on_hypothesis: Callable[[HypothesisReport], None] | None = None,
        debug: bool = False,
    ) -> None:
        """
        Initialize the estimator.

        Args:
            minimal_set_size: Number of correspondences the solver needs.
            solver: Computes a transform from a subset of the correspondences.
            scorer: Computes the error of every correspondence under a transform.
            validators: Predicates over partial minimal sets.
            config: RANSAC settings, defaults if None.
            on_hypothesis: Hook called with every scored hypothesis.
            debug: Print the progress of the search.

        Raises:
            ValueError: If the minimal set size is not positive or the
                iteration budget is below one.

        """
        if minimal_set_size <= 0:
            msg = f"Minimal set size must be positive, got {minimal_set_size}"
            raise ValueError(msg)
        self.minimal_set_size = minimal_set_size
        self.solver = solver
        self.scorer = scorer
        self.validators = list(validators)
        self.cfg = RansacConfig() if config is None else config
        if self.cfg.max_iterations < 1:
            msg = f"Max iterations must be at least 1, got {self.cfg.max_iterations}"
            raise ValueError(msg)
        self.on_hypothesis = on_hypothesis
        self.debug = debug

        self._correspondences: list[Correspondence] = []
        self.errors = np.empty(0)
        self.inlier_indices: list[int] = []
        self.iterations = 0

    @property
    def correspondences(self) -> list[Correspondence]:
        return self._correspondences

    def set_correspondences(self, correspondences: Sequence[Correspondence]) -> None:
        self._correspondences = list(correspondences)

    def validate(self, indices: np.ndarray, depth: int) -> bool:
        """Run every validator on the prefix indices[: depth + 1]."""
        return all(v(self._correspondences, indices, depth) for v in self.validators)

    def compute_minimal_set(self, search: MinimalSetSearch, depth: int = 0) -> bool:
        """
        Move the search to the next validated minimal set.

        Returns:
            True if search.indices holds a complete minimal set, False once the
            combinations are exhausted

        """
        while search.indices[depth] <= search.last_index(depth):
            if not self.validate(search.indices, depth):
                search.advance(depth)
                continue
            if depth == search.size - 1:
                return True
            if self.compute_minimal_set(search, depth + 1):
                return True
            search.advance(depth)
        return False

    def keep_best_friend(self, inliers: np.ndarray, errors: np.ndarray) -> np.ndarray:
        """
        Keep the inliers that are the lowest error match of both their features.

        Args:
            inliers: (K,) indices of inlier correspondences
            errors: (N,) error of every correspondence

        Returns:
            The mutually best inliers, in their original order

        """
        if len(inliers) == 0:
            return inliers
        ref = np.array([self._correspondences[i].reference_index for i in inliers])
        cur = np.array([self._correspondences[i].current_index for i in inliers])
        err = errors[inliers]

        best_ref = np.zeros(len(inliers), dtype=bool)
        best_cur = np.zeros(len(inliers), dtype=bool)
        for ids, best in ((ref, best_ref), (cur, best_cur)):
            order = np.lexsort((err, ids))
            _, first = np.unique(ids[order], return_index=True)
            best[order[first]] = True
        keep = best_ref & best_cur
        return inliers[keep]

    def run(
        self, initial_transform: np.ndarray | None = None
    ) -> tuple[bool, np.ndarray | None, list[int]]:
        """
        Search the transform supported by the most correspondences.

        Args:
            initial_transform: Returned unchanged when nothing is found.

        Returns:
            found: True if a transform with enough inliers was found
            transform: refined best transform, or initial_transform
            inliers: indices of the inlier correspondences (empty on failure)

        """
        n = len(self._correspondences)
        k = self.minimal_set_size
        self.errors = np.empty(0)
        self.inlier_indices = []
        self.iterations = 0
        if n < k:
            if self.debug:
                print(f"RANSAC: {n} correspondences, minimal set needs {k}")
            return False, initial_transform, []

        search = MinimalSetSearch.start(k, n)
        best_inliers = np.empty(0, dtype=np.int64)
        best_error = np.inf
        best_transform = initial_transform
        found = False

        while self.iterations < self.cfg.max_iterations and not search.exhausted:
            if not self.compute_minimal_set(search):
                break
            self.iterations += 1
            minimal_set = search.indices.copy()
            search.advance(k - 1)

            transform = self.solver(self._correspondences, minimal_set)
            if transform is None:
                if self.debug:
                    print(f"iteration {self.iterations}: no transform for {minimal_set}")
                continue

            errors = np.asarray(self.scorer(transform, self._correspondences))
            inliers = np.flatnonzero(errors < self.cfg.inlier_error_threshold)
            if self.cfg.best_friend_filter:
                inliers = self.keep_best_friend(inliers, errors)
            mean_error = float(np.mean(errors[inliers])) if len(inliers) else np.inf

            if self.on_hypothesis is not None:
                self.on_hypothesis(
                    HypothesisReport(
                        iteration=self.iterations,
                        minimal_set=minimal_set,
                        transform=transform,
                        inliers=inliers,
                        mean_error=mean_error,
                        errors=errors,
                    )
                )

            if len(inliers) < k:
                if self.debug:
                    print(f"iteration {self.iterations}: too few inliers {len(inliers)}")
                continue

            if len(inliers) > len(best_inliers):
                if mean_error < best_error:
                    if self.debug:
                        print(
                            f"iteration {self.iterations}: best so far, "
                            f"{len(inliers)} inliers, error {mean_error:.6f}"
                        )
                    best_error = mean_error
                    best_inliers = inliers
                    best_transform = transform
                    self.errors = errors
                    found = True
                if len(best_inliers) / n > self.cfg.inlier_stop_fraction:
                    if self.debug:
                        print(f"excellent inlier fraction: {100.0 * len(best_inliers) / n:.1f}%")
                    break

        if found:
            refined = self.solver(self._correspondences, best_inliers)
            if refined is not None:
                best_transform = refined
                self.errors = np.asarray(self.scorer(refined, self._correspondences))

        self.inlier_indices = best_inliers.tolist()
        return found, best_transform, self.inlier_indices
