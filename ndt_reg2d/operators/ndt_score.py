"""
Distribution-to-distribution NDT score with closed-form gradient and Hessian.

GENERATIVE MODEL:
    Source and target clouds are summarized as sets of Gaussian cells
    (mu_i, C_i). For a candidate planar pose p = (x, y, theta) each source cell
    is moved to (T(p) mu_i, R C_i R^T). A source cell is compared against its
    two nearest target cells j with

        d_ij   = T(p) mu_i - mu_j
        B_ij   = (R C_i R^T + C_j)^{-1}
        dist   = d_ij^T B_ij d_ij
        score += -d1 exp(-d2/2 dist)

    The total is a Gaussian-mixture log-likelihood surrogate that the
    optimizer maximizes (eq. 6.9-6.10 [Magnusson 2009], D2D form after
    [Stoyanov et al. 2012]).

DERIVATIVES:
    J  = d(T mu)/dp          -> [[1, 0, -y], [0, 1, x], [0, 0, 0]]
    Z  = dC/dtheta           -> only the theta block of a 3x9 layout is non-zero
    H  = d2(T mu)/dtheta2    -> (-x, -y, 0) in the theta-theta column
    Zh = d2C/dtheta2         -> only the theta-theta block of a 9x9 layout

    Q        = 2 x^T B J - x^T B Z B x
    factor   = -d2/2 * value
    gradient = factor * Q
    hessian  = factor * (2 J^T B J + 2 x^T B H - x^T B Zh B x
                         - 2 (x^T B Z B J)^T - 2 x^T B Z B J
                         + x^T B Z B Z B x + (x^T B Z B Z B x)^T
                         - d2/2 Q Q^T)

    The derivatives are exact for poses with zero translation and use the
    usual incremental approximation elsewhere (J is built from the
    transformed mean).

SKIPPED PAIRS:
    - singular covariance sum (|det| <= 1e-12): contributes exactly zero
    - non-finite Mahalanobis distance: contributes exactly zero

PARALLEL REDUCTION:
    ScoreAndDerivatives is a commutative monoid under addition. Source cells
    are split into contiguous chunks, each worker of a small fork-join pool
    accumulates a private partial sum, and the caller adds the partials.
    The aligner keeps one pool alive for a whole align() call and passes it
    to every evaluation, line-search trials included.
    Results agree across worker counts up to floating-point summation order.
"""

from __future__ import annotations

import math
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import reduce
from typing import Iterable, List, Optional, Sequence

import numpy as np

from ndt_reg2d.common import constants
from ndt_reg2d.common.transforms.se2 import pose_to_matrix
from ndt_reg2d.operators.fitting import FittingParameters
from ndt_reg2d.structures.distribution_grid import DistributionCell, DistributionGrid


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class ScoreAndDerivatives:
    """Objective value with its gradient and Hessian w.r.t. (x, y, theta)."""
    value: float = 0.0
    gradient: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=float))
    hessian: np.ndarray = field(default_factory=lambda: np.zeros((3, 3), dtype=float))

    @classmethod
    def zero(cls) -> "ScoreAndDerivatives":
        return cls()

    def __add__(self, other: "ScoreAndDerivatives") -> "ScoreAndDerivatives":
        return ScoreAndDerivatives(
            value=self.value + other.value,
            gradient=self.gradient + other.gradient,
            hessian=self.hessian + other.hessian,
        )

    def __iadd__(self, other: "ScoreAndDerivatives") -> "ScoreAndDerivatives":
        self.value += other.value
        self.gradient += other.gradient
        self.hessian += other.hessian
        return self

    def copy(self) -> "ScoreAndDerivatives":
        return ScoreAndDerivatives(self.value, self.gradient.copy(), self.hessian.copy())


def sum_contributions(parts: Iterable[ScoreAndDerivatives]) -> ScoreAndDerivatives:
    """Monoid reduction: identity is ScoreAndDerivatives.zero()."""
    return reduce(lambda acc, part: acc + part, parts, ScoreAndDerivatives.zero())


@dataclass
class JacobianHessianBlocks:
    """
    Pose derivatives of one transformed source cell.

    Layouts mirror the 3-parameter stacking: block j of cov_jacobian is
    dC/dp_j, block (i, j) of cov_hessian is d2C/dp_i dp_j, rows 3i..3i+2 of
    point_hessian hold d2(T mu)/dp_i dp_j in column j.
    """
    jacobian: np.ndarray       # (3, 3)
    point_hessian: np.ndarray  # (9, 3)
    cov_jacobian: np.ndarray   # (3, 9)
    cov_hessian: np.ndarray    # (9, 9)


# =============================================================================
# Derivative blocks
# =============================================================================


def compute_derivatives(mean: np.ndarray, cov: np.ndarray, calc_hessian: bool) -> JacobianHessianBlocks:
    """
    Derivative blocks for a transformed source mean and rotated covariance.

    Args:
        mean: Transformed source cell mean (3,)
        cov: Rotated source cell covariance (3, 3)
        calc_hessian: Fill the second-order blocks
    """
    x = mean
    c = cov
    jacobian = np.zeros((3, 3), dtype=float)
    jacobian[0, 0] = 1.0
    jacobian[1, 1] = 1.0
    jacobian[0, 2] = -x[1]
    jacobian[1, 2] = x[0]

    cov_jacobian = np.zeros((3, 9), dtype=float)
    cov_jacobian[:, 6:9] = [
        [-2.0 * c[0, 1], c[0, 0] - c[1, 1], -c[1, 2]],
        [c[0, 0] - c[1, 1], 2.0 * c[0, 1], c[0, 2]],
        [-c[1, 2], c[0, 2], 0.0],
    ]

    point_hessian = np.zeros((9, 3), dtype=float)
    cov_hessian = np.zeros((9, 9), dtype=float)
    if calc_hessian:
        point_hessian[6:9, 2] = [-x[0], -x[1], 0.0]
        cov_hessian[6:9, 6:9] = [
            [2.0 * c[1, 1] - 2.0 * c[0, 0], -4.0 * c[0, 1], -c[0, 2]],
            [-4.0 * c[0, 1], 2.0 * c[0, 0] - 2.0 * c[1, 1], -c[1, 2]],
            [-c[0, 2], -c[1, 2], 0.0],
        ]

    return JacobianHessianBlocks(
        jacobian=jacobian,
        point_hessian=point_hessian,
        cov_jacobian=cov_jacobian,
        cov_hessian=cov_hessian,
    )


# =============================================================================
# Single cell pair
# =============================================================================


def source_cell_score(
    mean_source: np.ndarray,
    cov_source: np.ndarray,
    cell_target: DistributionCell,
    deriv: JacobianHessianBlocks,
    param: FittingParameters,
    calc_hessian: bool,
) -> ScoreAndDerivatives:
    """Contribution of one (transformed source cell, target cell) pair."""
    res = ScoreAndDerivatives.zero()

    diff_mean = mean_source - cell_target.mean
    cov_sum = cell_target.covariance + cov_source
    det = np.linalg.det(cov_sum)
    if not abs(det) > constants.COV_SUM_DET_EPSILON:
        return res
    icov = np.linalg.inv(cov_sum)
    dist = float(diff_mean @ icov @ diff_mean)
    if not math.isfinite(dist):
        return res

    res.value = -param.d1 * math.exp(-param.d2_half * dist)

    J = deriv.jacobian
    xtB = diff_mean @ icov
    xtBJ = xtB @ J

    tmp1 = xtB @ deriv.cov_jacobian[:, 6:9] @ icov
    xtBZBx = np.zeros(3, dtype=float)
    xtBZBx[2] = tmp1 @ diff_mean

    Q = 2.0 * xtBJ - xtBZBx
    factor = -param.d2_half * res.value
    res.gradient = Q * factor

    if calc_hessian:
        xtBZBJ = np.zeros((3, 3), dtype=float)
        xtBH = np.zeros((3, 3), dtype=float)
        xtBZBZBx = np.zeros((3, 3), dtype=float)
        xtBZhBx = np.zeros((3, 3), dtype=float)
        icov_diff = icov @ diff_mean

        xtBZBJ[:, 2] = tmp1 @ J
        for j in range(3):
            xtBH[2, j] = xtB @ deriv.point_hessian[6:9, j]
            xtBZBZBx[2, j] = tmp1 @ deriv.cov_jacobian[:, 3 * j:3 * j + 3] @ icov_diff
            xtBZhBx[2, j] = xtB @ deriv.cov_hessian[6:9, 3 * j:3 * j + 3] @ icov_diff

        res.hessian = factor * (
            2.0 * J.T @ icov @ J
            + 2.0 * xtBH
            - xtBZhBx
            - 2.0 * xtBZBJ.T
            - 2.0 * xtBZBJ
            + xtBZBZBx
            + xtBZBZBx.T
            - param.d2_half * np.outer(Q, Q)
        )

    return res


# =============================================================================
# Whole-grid evaluation
# =============================================================================


def _score_cells(
    cells: Sequence[DistributionCell],
    indices: np.ndarray,
    R: np.ndarray,
    t: np.ndarray,
    target_grid: DistributionGrid,
    param: FittingParameters,
    calc_hessian: bool,
) -> ScoreAndDerivatives:
    """Worker body: private accumulator over one chunk of source cells."""
    acc = ScoreAndDerivatives.zero()
    means = np.vstack([cells[i].mean for i in indices]) @ R.T + t
    neighborhoods = target_grid.nearest_batch(means, constants.NDT_NEIGHBOR_COUNT)
    for i, mean_source, neighborhood in zip(indices, means, neighborhoods):
        cov_source = R @ cells[i].covariance @ R.T
        partial_derivatives = compute_derivatives(mean_source, cov_source, calc_hessian)
        for cell_target in neighborhood:
            acc += source_cell_score(
                mean_source, cov_source, cell_target, partial_derivatives, param, calc_hessian
            )
    return acc


def partition_cells(n_cells: int, num_workers: int) -> List[np.ndarray]:
    """Split range(n_cells) into at most num_workers non-empty contiguous chunks."""
    if n_cells == 0:
        return []
    n_chunks = max(1, min(int(num_workers), n_cells))
    return [chunk for chunk in np.array_split(np.arange(n_cells), n_chunks) if chunk.size > 0]


def calc_score(
    param: FittingParameters,
    source_grid: DistributionGrid,
    pose: np.ndarray,
    target_grid: DistributionGrid,
    calc_hessian: bool,
    num_workers: int = constants.NDT_NUM_WORKERS_DEFAULT,
    executor: Optional[Executor] = None,
) -> ScoreAndDerivatives:
    """
    Score, gradient and (optionally) Hessian of a candidate pose.

    Args:
        param: Fitting constants of the active layer
        source_grid: Source distribution grid
        pose: Candidate pose (x, y, theta)
        target_grid: Target distribution grid
        calc_hessian: False during line-search trials
        num_workers: Number of chunks (1 runs inline)
        executor: Pool reused across evaluations; a temporary pool of
            num_workers threads is created when None

    Returns:
        Sum of all cell-pair contributions
    """
    pose = np.asarray(pose, dtype=float).reshape(3)
    cells = source_grid.cells()
    if not cells or len(target_grid) == 0 or not np.all(np.isfinite(pose)):
        return ScoreAndDerivatives.zero()

    T = pose_to_matrix(pose)
    R = T[:3, :3]
    t = T[:3, 3]
    chunks = partition_cells(len(cells), num_workers)

    if len(chunks) == 1:
        partials = [_score_cells(cells, chunks[0], R, t, target_grid, param, calc_hessian)]
    elif executor is not None:
        partials = _fork_join(executor, cells, chunks, R, t, target_grid, param, calc_hessian)
    else:
        with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
            partials = _fork_join(pool, cells, chunks, R, t, target_grid, param, calc_hessian)

    return sum_contributions(partials)


def _fork_join(executor, cells, chunks, R, t, target_grid, param, calc_hessian) -> List[ScoreAndDerivatives]:
    futures = [
        executor.submit(_score_cells, cells, chunk, R, t, target_grid, param, calc_hessian)
        for chunk in chunks
    ]
    return [future.result() for future in futures]
