"""
Multi-resolution distribution-to-distribution NDT registration in the plane.

Per layer (one cell size) a Newton iteration maximizes the D2D score:

    1. score, gradient g and Hessian H at the current pose
    2. Newton step from H delta = -g, solved by SVD least squares because H
       is not guaranteed positive definite far from a good alignment
    3. zero or non-finite step -> layer is degenerate ("not enough overlap")
    4. More-Thuente line search along delta / |delta|
    5. converged when the iteration cap is hit or the accepted step is
       shorter than transformation_epsilon (after at least one iteration)

Layers run coarse to fine, each seeded with the previous layer's pose. A
single degenerate layer fails the whole run: no partial result is returned.
One score-evaluation thread pool serves every layer of an align() call.

On success the Hessian of the last evaluation is reported as `covariance` and
its inverse as `information_matrix`.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from ndt_reg2d.common.param_models import NDTParams
from ndt_reg2d.common.pointcloud import as_cloud
from ndt_reg2d.common.transforms.se2 import as_pose, matrix_to_pose, pose_to_matrix
from ndt_reg2d.operators.fitting import FittingParameters
from ndt_reg2d.operators.line_search import compute_step_length
from ndt_reg2d.operators.ndt_score import ScoreAndDerivatives, calc_score
from ndt_reg2d.registration.result import RegistrationResult, RegistrationStatus
from ndt_reg2d.structures.distribution_grid import DistributionGrid

_logger = logging.getLogger(__name__)


@dataclass
class LayerResult:
    """Outcome of the Newton loop at one resolution."""
    pose: np.ndarray
    converged: bool
    status: RegistrationStatus
    transformation_probability: float
    iterations: int
    covariance: np.ndarray = field(default_factory=lambda: np.eye(3, dtype=float))
    information_matrix: np.ndarray = field(default_factory=lambda: np.eye(3, dtype=float))


def newton_step(score: ScoreAndDerivatives) -> np.ndarray:
    """
    Solve H delta = -g with an SVD-based least-squares solver.

    Negative gradient because the score is maximized. Returns a NaN vector
    when the system cannot be solved.
    """
    if not (np.all(np.isfinite(score.hessian)) and np.all(np.isfinite(score.gradient))):
        return np.full(3, np.nan)
    try:
        delta, *_ = np.linalg.lstsq(score.hessian, -score.gradient, rcond=None)
    except np.linalg.LinAlgError:
        return np.full(3, np.nan)
    return delta


def _inverse(M: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.inv(M)
    except np.linalg.LinAlgError:
        return np.linalg.pinv(M)


class D2DNDT2D:
    """
    Coarse-to-fine D2D-NDT aligner.

    Holds configuration only; every align() call owns its grids, fitting
    constants and accumulators.
    """

    def __init__(self, params: Optional[NDTParams] = None):
        self.params = params if params is not None else NDTParams()

    def compute_single_grid(
        self,
        source_grid: DistributionGrid,
        guess: np.ndarray,
        target_grid: DistributionGrid,
        param: FittingParameters,
        n_source_points: int,
        executor: Optional[Executor] = None,
    ) -> LayerResult:
        """
        Newton iterations at one resolution.

        Args:
            source_grid: Source cells at this resolution
            guess: Initial pose (x, y, theta)
            target_grid: Target cells at this resolution
            param: Fitting constants of this resolution
            n_source_points: Raw source point count (probability normalization)
            executor: Score evaluation pool shared by every evaluation of the layer

        Returns:
            LayerResult (status DEGENERATE_STEP when the Newton step vanishes)
        """
        p = self.params
        x = matrix_to_pose(pose_to_matrix(as_pose(guess)))
        norm = float(n_source_points) if n_source_points > 0 else 1.0

        def evaluate(pose: np.ndarray) -> ScoreAndDerivatives:
            return calc_score(param, source_grid, pose, target_grid, False, p.num_workers, executor)

        iterations = 0
        converged = False
        trans_probability = 0.0
        score = ScoreAndDerivatives.zero()
        while not converged:
            score = calc_score(param, source_grid, x, target_grid, True, p.num_workers, executor)
            delta = newton_step(score)
            delta_norm = float(np.linalg.norm(delta))
            if delta_norm == 0.0 or not math.isfinite(delta_norm):
                trans_probability = score.value / norm
                _logger.warning(
                    f"[D2D_NDT2D]: Not enough overlap at cell size {source_grid.cell_size}. "
                    f"Probability: {trans_probability:.6f}"
                )
                return LayerResult(
                    pose=x,
                    converged=False,
                    status=RegistrationStatus.DEGENERATE_STEP,
                    transformation_probability=trans_probability,
                    iterations=iterations,
                )

            search = compute_step_length(
                x,
                delta / delta_norm,
                delta_norm,
                p.step_size,
                p.transformation_epsilon / 2.0,
                score,
                evaluate,
                mu=p.line_search_mu,
                nu=p.line_search_nu,
                max_trials=p.line_search_max_trials,
            )
            step_length = search.step_length
            x = x + search.step_dir * step_length
            iterations += 1
            trans_probability = score.value / norm
            _logger.debug(
                f"[D2D_NDT2D]: iter {iterations} step {step_length:.6f} "
                f"score {score.value:.6f} pose {x}"
            )

            if iterations >= p.max_iterations or abs(step_length) < p.transformation_epsilon:
                converged = True

        return LayerResult(
            pose=matrix_to_pose(pose_to_matrix(x)),
            converged=True,
            status=RegistrationStatus.CONVERGED,
            transformation_probability=trans_probability,
            iterations=iterations,
            covariance=score.hessian.copy(),
            information_matrix=_inverse(score.hessian),
        )

    def align(self, source: np.ndarray, target: np.ndarray, guess=None) -> RegistrationResult:
        """
        Register source onto target, coarse to fine.

        Args:
            source: Source cloud (N, 3) or (N, 2)
            target: Target cloud (M, 3) or (M, 2)
            guess: Initial pose (3,), matrix (4, 4) or None for identity

        Returns:
            RegistrationResult; identity and converged=False if any layer fails
        """
        p = self.params
        source = as_cloud(source)
        target = as_cloud(target)
        pose = as_pose(guess)
        _logger.debug(f"[D2D_NDT2D]: guess: {pose}")

        with ThreadPoolExecutor(max_workers=p.num_workers) as executor:
            return self._align_layers(source, target, pose, executor)

    def _align_layers(
        self,
        source: np.ndarray,
        target: np.ndarray,
        pose: np.ndarray,
        executor: Executor,
    ) -> RegistrationResult:
        p = self.params
        total_iterations = 0
        layer: Optional[LayerResult] = None
        for cell_size in p.resolved_cell_sizes():
            param = FittingParameters.from_outlier_ratio(p.outlier_ratio, 1.0 / cell_size)
            target_grid = DistributionGrid.build(
                target, cell_size, p.min_points_per_cell, p.min_covar_eigvalue_mult
            )
            source_grid = DistributionGrid.build(
                source, cell_size, p.min_points_per_cell, p.min_covar_eigvalue_mult
            )
            layer = self.compute_single_grid(
                source_grid, pose, target_grid, param, source.shape[0], executor
            )
            total_iterations += layer.iterations
            if not layer.converged:
                return RegistrationResult.failure(
                    RegistrationStatus.LAYER_FAILURE,
                    transformation_probability=layer.transformation_probability,
                    iteration_count=total_iterations,
                )
            pose = layer.pose

        _logger.debug(f"[D2D_NDT2D]: final trans: {pose}")
        return RegistrationResult(
            final_transform=pose_to_matrix(pose),
            converged=True,
            transformation_probability=layer.transformation_probability,
            covariance=layer.covariance,
            information_matrix=layer.information_matrix,
            iteration_count=total_iterations,
            status=RegistrationStatus.CONVERGED,
        )
