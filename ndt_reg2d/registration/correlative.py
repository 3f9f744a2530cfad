"""
Correlative (exhaustive window) coarse aligner.

Candidate poses around the guess are scored by the mean likelihood of the
transformed source in a lookup table built on the target:

    pass 1: translation step = table cell size over +- linear_window,
            rotation step = angular_step over +- angular_window
    pass 2: half steps in every axis around the best pass-1 candidate

Pass 1 snaps translations to whole cells, so for each rotation the source is
rasterized once and every translation is an integer shift of the indices.

The result converges when the best mean likelihood reaches min_score. It is
only meant to bring a badly seeded problem into the basin of the NDT
optimizer, not to be precise.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from ndt_reg2d.common.param_models import CorrelativeParams
from ndt_reg2d.common.pointcloud import as_cloud
from ndt_reg2d.common.transforms.se2 import as_pose, pose_to_matrix, rot_z, wrap_angle
from ndt_reg2d.registration.result import RegistrationResult, RegistrationStatus
from ndt_reg2d.structures.lookup_table import LikelihoodLookupTable

_logger = logging.getLogger(__name__)


def _symmetric_range(half_width: float, step: float) -> np.ndarray:
    n = int(np.floor(half_width / step + 1e-9))
    return np.arange(-n, n + 1, dtype=float) * step


class CorrelativeEstimation:
    """Brute-force pose search over a likelihood lookup table."""

    def __init__(self, params: Optional[CorrelativeParams] = None):
        self.params = params if params is not None else CorrelativeParams()

    def _coarse_pass(
        self,
        table: LikelihoodLookupTable,
        xy: np.ndarray,
        guess: np.ndarray,
    ) -> Tuple[np.ndarray, float, int]:
        p = self.params
        n_shift = int(np.floor(p.linear_window / table.cell_size + 1e-9))
        shifts = np.arange(-n_shift, n_shift + 1)
        di, dj = np.meshgrid(shifts, shifts, indexing="ij")
        offsets = np.stack([di.ravel(), dj.ravel()], axis=-1)  # (K, 2)

        best_pose = guess.copy()
        best_score = -np.inf
        evaluated = 0
        for d_theta in _symmetric_range(p.angular_window, p.angular_step):
            theta = guess[2] + d_theta
            moved = xy @ rot_z(theta)[:2, :2].T + guess[:2]
            base = table.cell_indices(moved)  # (N, 2)
            values = table.lookup_indices(base[None, :, :] + offsets[:, None, :])  # (K, N)
            means = values.mean(axis=1)
            k = int(np.argmax(means))
            evaluated += means.size
            if means[k] > best_score:
                best_score = float(means[k])
                best_pose = np.array(
                    [
                        guess[0] + offsets[k, 0] * table.cell_size,
                        guess[1] + offsets[k, 1] * table.cell_size,
                        theta,
                    ],
                    dtype=float,
                )
        return best_pose, best_score, evaluated

    def _fine_pass(
        self,
        table: LikelihoodLookupTable,
        xy: np.ndarray,
        center: np.ndarray,
        center_score: float,
    ) -> Tuple[np.ndarray, float, int]:
        p = self.params
        half_t = 0.5 * table.cell_size
        half_a = 0.5 * p.angular_step
        best_pose = center
        best_score = center_score
        evaluated = 0
        for d_theta in (-half_a, 0.0, half_a):
            theta = center[2] + d_theta
            rotated = xy @ rot_z(theta)[:2, :2].T
            for dx in (-half_t, 0.0, half_t):
                for dy in (-half_t, 0.0, half_t):
                    if dx == 0.0 and dy == 0.0 and d_theta == 0.0:
                        continue
                    t = center[:2] + np.array([dx, dy])
                    score = table.likelihood(rotated + t)
                    evaluated += 1
                    if score > best_score:
                        best_score = score
                        best_pose = np.array([t[0], t[1], theta], dtype=float)
        return best_pose, best_score, evaluated

    def align(self, source: np.ndarray, target: np.ndarray, guess=None) -> RegistrationResult:
        """
        Search the window around guess for the pose mapping source onto target.

        Returns:
            RegistrationResult with transformation_probability = best mean
            likelihood; NOT_CONVERGED below min_score
        """
        p = self.params
        source = as_cloud(source)
        target = as_cloud(target)
        guess = as_pose(guess)
        if source.shape[0] == 0 or target.shape[0] == 0:
            _logger.warning("[CORRELATIVE]: empty cloud, nothing to search")
            return RegistrationResult.failure(RegistrationStatus.NOT_CONVERGED)

        table = LikelihoodLookupTable.build(target, p.cell_size)
        xy = source[:, :2]

        pose, score, n_coarse = self._coarse_pass(table, xy, guess)
        pose, score, n_fine = self._fine_pass(table, xy, pose, score)
        pose[2] = wrap_angle(pose[2])
        evaluated = n_coarse + n_fine
        _logger.debug(f"[CORRELATIVE]: best pose {pose} likelihood {score:.4f} ({evaluated} candidates)")

        if score < p.min_score:
            _logger.warning(
                f"[CORRELATIVE]: best likelihood {score:.4f} below min_score {p.min_score}"
            )
            return RegistrationResult.failure(
                RegistrationStatus.NOT_CONVERGED,
                transformation_probability=score,
                iteration_count=evaluated,
            )

        return RegistrationResult(
            final_transform=pose_to_matrix(pose),
            converged=True,
            transformation_probability=score,
            iteration_count=evaluated,
            status=RegistrationStatus.CONVERGED,
        )
