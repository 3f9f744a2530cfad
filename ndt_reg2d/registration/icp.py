"""
Planar point-to-point Iterative Closest Point refinement.

GENERATIVE MODEL:
    Given source points S = {s_i} and target points T = {t_j} in the plane:

    1. True transform: T* in SE(2)
    2. Correspondence: each s_i has a partner t_{c(i)} within
       max_correspondence_distance (pairs farther apart are outliers)
    3. Measurement model:
           observed_match = T* s_i + eps,  eps ~ N(0, sigma^2 I)

ICP alternates:
    - E-step: c(i) = nearest target point (k-d tree), gated by distance
    - M-step: closed-form SE(2) least squares via SVD (Arun et al. 1987)

and stops once the MSE changes by less than `tolerance`.

COVARIANCE MODEL:
    Sigma = sigma^2 (J^T J)^{-1},  J_i = [I_2 | perp(p_i)],  perp(p) = (-p_y, p_x)

    with sigma^2 the final MSE, evaluated at the transformed source points
    (tangent space at identity, basis [dx, dy, dtheta]).

Reference:
    - Besl & McKay (1992) for ICP algorithm
    - Censi (2007) for ICP covariance
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.spatial import cKDTree

from ndt_reg2d.common import constants
from ndt_reg2d.common.param_models import ICPParams
from ndt_reg2d.common.pointcloud import as_cloud
from ndt_reg2d.common.transforms.se2 import as_pose, pose_to_matrix, rot_z, se2_compose
from ndt_reg2d.registration.result import RegistrationResult, RegistrationStatus

_logger = logging.getLogger(__name__)


@dataclass
class ICPResult:
    """ICP solver outcome with the metadata needed for covariance and auditing."""
    transform: np.ndarray       # Estimated SE(2) pose [x, y, theta]
    mse: float                  # Final mean squared error (sigma^2 estimate)
    iterations: int             # Iterations actually used
    initial_objective: float    # MSE before optimization
    src_transformed: np.ndarray # Inlier source points after transform (K, 2)
    n_inliers: int              # Correspondences used in the last M-step
    converged: bool             # Whether tolerance was reached


# =============================================================================
# ICP Solver
# =============================================================================


def best_fit_se2(src: np.ndarray, tgt: np.ndarray) -> np.ndarray:
    """
    Closed-form SE(2) registration via SVD (Arun et al. 1987).

    Finds T = argmin_T ||T src - tgt||^2 for given correspondences (K, 2).
    """
    src_cent = np.mean(src, axis=0)
    tgt_cent = np.mean(tgt, axis=0)
    H = (src - src_cent).T @ (tgt - tgt_cent)
    U, _, Vt = np.linalg.svd(H)
    R = Vt.T @ U.T

    # Handle reflection case
    if np.linalg.det(R) < 0.0:
        Vt[1, :] *= -1.0
        R = Vt.T @ U.T

    t = tgt_cent - R @ src_cent
    return np.array([t[0], t[1], math.atan2(R[1, 0], R[0, 0])], dtype=float)


def _apply(pose: np.ndarray, xy: np.ndarray) -> np.ndarray:
    return xy @ rot_z(pose[2])[:2, :2].T + pose[:2]


def icp_2d(
    source: np.ndarray,
    target: np.ndarray,
    init: Optional[np.ndarray] = None,
    max_iter: int = constants.ICP_MAX_ITER_DEFAULT,
    tol: float = constants.ICP_TOLERANCE_DEFAULT,
    max_correspondence_distance: float = constants.ICP_MAX_CORRESPONDENCE_DIST_DEFAULT,
) -> ICPResult:
    """
    Planar ICP registration.

    Args:
        source: Source points (N, 2)
        target: Target points (M, 2)
        init: Initial pose [x, y, theta]
        max_iter: Maximum iterations
        tol: Convergence tolerance on MSE change
        max_correspondence_distance: Pairs farther apart are rejected

    Returns:
        ICPResult; converged=False when too few correspondences remain
    """
    source = np.asarray(source, dtype=float)
    target = np.asarray(target, dtype=float)
    transform = as_pose(init)

    empty = np.zeros((0, 2), dtype=float)
    if source.shape[0] == 0 or target.shape[0] == 0:
        return ICPResult(transform, 0.0, 0, 0.0, empty, 0, False)

    tree = cKDTree(target)
    prev_mse = None
    initial_objective = None
    iters = 0
    n_inliers = 0
    src_tf_final = empty
    converged = False

    for i in range(max_iter):
        iters = i + 1
        src_tf = _apply(transform, source)

        # Correspondences (E-step)
        dist, nn_idx = tree.query(src_tf, k=1, distance_upper_bound=max_correspondence_distance)
        inliers = np.isfinite(dist)
        n_inliers = int(np.count_nonzero(inliers))
        if n_inliers < constants.ICP_MIN_CORRESPONDENCES:
            _logger.debug(f"[ICP]: only {n_inliers} correspondences at iteration {iters}")
            break
        matched = target[nn_idx[inliers]]

        # Transform update (M-step)
        delta = best_fit_se2(src_tf[inliers], matched)
        transform = se2_compose(delta, transform)

        src_tf_final = _apply(transform, source[inliers])
        res = matched - src_tf_final
        mse = float(np.mean(np.sum(res * res, axis=1)))
        if initial_objective is None:
            initial_objective = float(np.mean(dist[inliers] ** 2))

        if prev_mse is not None and abs(prev_mse - mse) < tol:
            prev_mse = mse
            converged = True
            break
        prev_mse = mse

    return ICPResult(
        transform=transform,
        mse=float(prev_mse) if prev_mse is not None else 0.0,
        iterations=iters,
        initial_objective=initial_objective if initial_objective is not None else 0.0,
        src_transformed=src_tf_final,
        n_inliers=n_inliers,
        converged=converged,
    )


# =============================================================================
# ICP Covariance
# =============================================================================


def icp_covariance_tangent(src_transformed: np.ndarray, mse: float) -> np.ndarray:
    """
    ICP covariance in the se(2) tangent space at identity, basis [dx, dy, dtheta].

        Sigma = sigma^2 (J^T J)^{-1},  J_i = d(R p + t)/d[dt, dtheta] = [I | perp(p)]
    """
    src_transformed = np.asarray(src_transformed, dtype=float)
    if src_transformed.size == 0:
        return np.eye(3, dtype=float) * 1e6

    n = src_transformed.shape[0]
    px = src_transformed[:, 0]
    py = src_transformed[:, 1]
    JtJ = np.array([
        [n, 0.0, -np.sum(py)],
        [0.0, n, np.sum(px)],
        [-np.sum(py), np.sum(px), np.sum(px * px + py * py)],
    ], dtype=float)

    sigma2 = max(mse, 1e-12)
    try:
        cov = sigma2 * np.linalg.inv(JtJ)
    except np.linalg.LinAlgError:
        cov = sigma2 * np.linalg.pinv(JtJ)
    return cov


# =============================================================================
# Aligner
# =============================================================================


class PlanarICP:
    """ICP refinement exposed through the common align() capability."""

    def __init__(self, params: Optional[ICPParams] = None):
        self.params = params if params is not None else ICPParams()

    def align(self, source: np.ndarray, target: np.ndarray, guess=None) -> RegistrationResult:
        p = self.params
        source = as_cloud(source)
        target = as_cloud(target)
        result = icp_2d(
            source[:, :2],
            target[:, :2],
            init=as_pose(guess),
            max_iter=p.max_iterations,
            tol=p.tolerance,
            max_correspondence_distance=p.max_correspondence_distance,
        )
        _logger.debug(
            f"[ICP]: pose {result.transform} mse {result.mse:.6f} "
            f"iterations {result.iterations} converged {result.converged}"
        )
        if not result.converged:
            return RegistrationResult.failure(
                RegistrationStatus.NOT_CONVERGED,
                iteration_count=result.iterations,
            )

        cov = icp_covariance_tangent(result.src_transformed, result.mse)
        return RegistrationResult(
            final_transform=pose_to_matrix(result.transform),
            converged=True,
            transformation_probability=result.n_inliers / source.shape[0],
            covariance=cov,
            information_matrix=np.linalg.pinv(cov),
            iteration_count=result.iterations,
            status=RegistrationStatus.CONVERGED,
        )
