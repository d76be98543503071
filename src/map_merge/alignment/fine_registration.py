"""
ICP Registration Implementation

This module implements the Iterative Closest Point (ICP) algorithm used to
refine pairwise map transforms from an initial guess.
"""

from typing import Optional, Tuple
import time

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation, estimate_rigid_transform, transform_change

logger = setup_logger(__name__)

# Need at least 3 points to define a rigid fit
MIN_CORRESPONDENCES = 3


class ICPRegistration:
    """
    Implementation of point-to-point ICP for point cloud registration.

    The ICP algorithm iteratively:
    1. Finds closest point correspondences within max_correspondence_distance
    2. Estimates the incremental rigid transformation by SVD
    3. Rejects correspondences whose residual under that estimate exceeds
       outlier_rejection_threshold and re-estimates
    4. Repeats until the incremental transform change drops below
       transformation_epsilon, the MSE change drops below tolerance, or the
       iteration budget is exhausted
    """

    def __init__(
        self,
        max_iterations: int = 100,
        tolerance: float = 1e-6,
        max_correspondence_distance: float = 1.0,
        outlier_rejection_threshold: Optional[float] = None,
        transformation_epsilon: float = 0.0,
    ):
        """
        Initialize ICP parameters.

        Args:
            max_iterations: Maximum number of ICP iterations.
            tolerance: Convergence tolerance on change in mean squared error.
            max_correspondence_distance: Maximum distance for point correspondences.
            outlier_rejection_threshold: Residual (after the trial fit) above which a
                correspondence is rejected. None disables the rejection step.
            transformation_epsilon: Squared Frobenius norm of (delta - I) below
                which the algorithm is considered converged.
        """
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.max_correspondence_distance = max_correspondence_distance
        self.outlier_rejection_threshold = outlier_rejection_threshold
        self.transformation_epsilon = transformation_epsilon
        self.converged_: bool = False
        self.n_iterations_: int = 0

    def refine(
        self,
        source: np.ndarray,
        target: np.ndarray,
        initial_guess: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Refine an initial source -> target transform.

        Returns:
            4x4 transform that already includes the initial guess.
        """
        _, transform, _ = self.align_point_clouds(source, target, initial_transform=initial_guess)
        return transform

    def align_point_clouds(
        self,
        source: np.ndarray,
        target: np.ndarray,
        initial_transform: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, np.ndarray, float]:
        """
        Align source point cloud to target using ICP.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3).
            initial_transform: Initial transformation matrix (4 x 4) or None.

        Returns:
            Tuple of (aligned_source_points, transformation_matrix, final_error).
        """
        n_src = len(source)
        n_tgt = len(target)
        logger.debug(
            "Starting ICP alignment with %d source points and %d target points.",
            n_src,
            n_tgt,
        )

        if initial_transform is None:
            transform = np.eye(4)
        else:
            transform = np.asarray(initial_transform, dtype=np.float64).copy()

        self.converged_ = False
        self.n_iterations_ = 0

        if n_src == 0 or n_tgt == 0:
            logger.warning(
                "ICP called with empty source or target (source=%d, target=%d); "
                "returning initial transform and infinite error.",
                n_src,
                n_tgt,
            )
            return source.copy(), transform, float("inf")

        # Build the nearest-neighbor search structure for the target ONCE.
        nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)

        current_source = apply_transformation(source, transform)
        previous_error = float("inf")
        icp_start = time.time()

        for iteration in range(self.max_iterations):
            correspondences, distances = self.find_correspondences(current_source, nbrs=nbrs)

            valid_mask = distances < self.max_correspondence_distance
            if np.sum(valid_mask) < MIN_CORRESPONDENCES:
                logger.warning("Not enough valid correspondences found. Stopping ICP.")
                break

            valid_source = current_source[valid_mask]
            valid_target = target[correspondences[valid_mask]]
            delta_transform = estimate_rigid_transform(valid_source, valid_target)

            if self.outlier_rejection_threshold is not None:
                residuals = np.linalg.norm(
                    apply_transformation(valid_source, delta_transform) - valid_target, axis=1
                )
                inliers = residuals < self.outlier_rejection_threshold
                if MIN_CORRESPONDENCES <= np.sum(inliers) < len(inliers):
                    delta_transform = estimate_rigid_transform(valid_source[inliers], valid_target[inliers])

            # new_transform = delta_transform * current_transform
            transform = delta_transform @ transform

            # Apply the cumulative transformation to the ORIGINAL source cloud
            current_source = apply_transformation(source, transform)

            current_error = float(np.mean(distances[valid_mask] ** 2))
            change = transform_change(delta_transform)
            self.n_iterations_ = iteration + 1

            logger.debug(
                "Iteration %d: MSE=%.6f, transform change=%.6e",
                self.n_iterations_,
                current_error,
                change,
            )

            if change < self.transformation_epsilon:
                self.converged_ = True
                logger.debug(
                    "ICP converged after %d iterations (transform change %.3e < %.3e).",
                    self.n_iterations_,
                    change,
                    self.transformation_epsilon,
                )
                break

            if abs(previous_error - current_error) < self.tolerance:
                self.converged_ = True
                logger.debug(
                    "ICP converged after %d iterations (MSE change < %.3e).",
                    self.n_iterations_,
                    self.tolerance,
                )
                break

            previous_error = current_error
        else:
            logger.info("ICP did not converge after %d iterations.", self.max_iterations)

        final_error = self.compute_registration_error(current_source, target, nbrs)
        logger.info(
            "ICP finished in %.4f s (%d iterations, converged=%s). Final RMSE: %.6f",
            time.time() - icp_start,
            self.n_iterations_,
            self.converged_,
            final_error,
        )

        return current_source, transform, final_error

    def find_correspondences(
        self,
        source: np.ndarray,
        target: Optional[np.ndarray] = None,
        nbrs: Optional[NearestNeighbors] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find closest point correspondences between source and target.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3). Only used if `nbrs` is None,
                in which case a KD-tree is built on this array.
            nbrs: Optional pre-built NearestNeighbors instance for the target.

        Returns:
            Tuple of (correspondence_indices, distances).
        """
        if nbrs is None:
            if target is None:
                raise ValueError("Either 'target' or a pre-built 'nbrs' must be provided.")
            nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)

        distances, indices = nbrs.kneighbors(source)
        return indices.ravel(), distances.ravel()

    def compute_registration_error(
        self,
        source: np.ndarray,
        target: np.ndarray,
        nbrs: Optional[NearestNeighbors] = None,
    ) -> float:
        """
        Compute the registration error (RMSE) between aligned source and target point clouds.

        Only correspondences closer than max_correspondence_distance count.
        """
        if source.size == 0 or target.size == 0:
            return float("inf")
        _, distances = self.find_correspondences(source, target, nbrs)

        valid_mask = distances < self.max_correspondence_distance
        if np.sum(valid_mask) == 0:
            logger.warning("No valid correspondences found for error computation.")
            return float("inf")

        return float(np.sqrt(np.mean(distances[valid_mask] ** 2)))


def estimate_transform_icp(
    source_points: np.ndarray,
    target_points: np.ndarray,
    initial_guess: np.ndarray,
    max_correspondence_distance: float,
    outlier_rejection_threshold: float,
    max_iterations: int = 100,
    transformation_epsilon: float = 0.0,
) -> np.ndarray:
    """Refine ``initial_guess`` with ICP; the result includes the initial guess."""
    icp = ICPRegistration(
        max_iterations=max_iterations,
        max_correspondence_distance=max_correspondence_distance,
        outlier_rejection_threshold=outlier_rejection_threshold,
        transformation_epsilon=transformation_epsilon,
    )
    return icp.refine(source_points, target_points, initial_guess)
