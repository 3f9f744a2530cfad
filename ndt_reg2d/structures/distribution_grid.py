"""
Voxel grid of local Gaussian distributions (NDT cells).

Each occupied voxel with enough points is summarized by its sample mean and
covariance. The grid answers "k nearest cells to a query point" through a
k-d tree over the cell means.

Cell construction follows the voxel-grid-covariance convention:
    - voxel index = floor(p / cell_size) on all three axes
    - voxels with fewer than min_points_per_cell points are dropped
    - covariance is the unbiased sample covariance (n - 1)
    - eigenvalues below min_covar_eigvalue_mult * lambda_max are raised to
      that floor, which keeps flat cells (planar scans, z = 0) invertible

A cell whose points all coincide has lambda_max = 0; its covariance stays
singular and the score evaluator skips every pair it takes part in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from ndt_reg2d.common import constants
from ndt_reg2d.common.pointcloud import as_cloud


@dataclass(frozen=True)
class DistributionCell:
    """Gaussian summary of the points falling in one voxel."""
    point_count: int
    mean: np.ndarray        # (3,)
    covariance: np.ndarray  # (3, 3), symmetric PSD

    @staticmethod
    def create(point_count: int, mean: np.ndarray, covariance: np.ndarray) -> "DistributionCell":
        """Build a cell with read-only copies of its arrays."""
        mean = np.array(mean, dtype=float).reshape(3)
        covariance = np.array(covariance, dtype=float).reshape(3, 3)
        mean.setflags(write=False)
        covariance.setflags(write=False)
        return DistributionCell(point_count=int(point_count), mean=mean, covariance=covariance)


def inflate_covariance(cov: np.ndarray, min_covar_eigvalue_mult: float) -> np.ndarray:
    """Raise small eigenvalues to min_covar_eigvalue_mult * lambda_max."""
    evals, evecs = np.linalg.eigh(cov)
    min_covar_eigvalue = min_covar_eigvalue_mult * evals[-1]
    if evals[0] < min_covar_eigvalue:
        evals = np.maximum(evals, min_covar_eigvalue)
        cov = evecs @ np.diag(evals) @ evecs.T
    return 0.5 * (cov + cov.T)


class DistributionGrid:
    """
    Immutable set of distribution cells at one resolution.

    Use DistributionGrid.build() to construct from a point cloud.
    """

    def __init__(self, cell_size: float, cells: Sequence[DistributionCell], n_points: int = 0):
        self.cell_size = float(cell_size)
        self.n_points = int(n_points)
        self._cells: Tuple[DistributionCell, ...] = tuple(cells)
        self._tree = cKDTree(np.vstack([c.mean for c in self._cells])) if self._cells else None

    @classmethod
    def build(
        cls,
        cloud: np.ndarray,
        cell_size: float,
        min_points_per_cell: int = constants.GRID_MIN_POINTS_PER_CELL,
        min_covar_eigvalue_mult: float = constants.GRID_MIN_COVAR_EIGVALUE_MULT,
    ) -> "DistributionGrid":
        """
        Partition a cloud into voxels of side cell_size and fit one Gaussian per voxel.

        Args:
            cloud: Point cloud (N, 3) or (N, 2)
            cell_size: Voxel side length (meters), > 0
            min_points_per_cell: Voxels with fewer points are dropped
            min_covar_eigvalue_mult: Eigenvalue floor relative to the largest eigenvalue

        Returns:
            DistributionGrid (possibly empty)
        """
        if cell_size <= 0.0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        if min_points_per_cell < 2:
            raise ValueError(f"min_points_per_cell must be at least 2, got {min_points_per_cell}")
        cloud = as_cloud(cloud)
        n_points = cloud.shape[0]
        if n_points == 0:
            return cls(cell_size, [], n_points=0)

        keys = np.floor(cloud / cell_size).astype(np.int64)
        _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
        inverse = np.asarray(inverse).reshape(-1)
        n_voxels = counts.shape[0]

        sums = np.zeros((n_voxels, 3), dtype=float)
        outer = np.zeros((n_voxels, 3, 3), dtype=float)
        np.add.at(sums, inverse, cloud)
        np.add.at(outer, inverse, cloud[:, :, None] * cloud[:, None, :])

        cells: List[DistributionCell] = []
        for v in range(n_voxels):
            n = int(counts[v])
            if n < min_points_per_cell:
                continue
            mean = sums[v] / n
            cov = (outer[v] - n * np.outer(mean, mean)) / (n - 1)
            cov = inflate_covariance(cov, min_covar_eigvalue_mult)
            cells.append(DistributionCell.create(n, mean, cov))

        return cls(cell_size, cells, n_points=n_points)

    def __len__(self) -> int:
        return len(self._cells)

    def cells(self) -> Tuple[DistributionCell, ...]:
        return self._cells

    def nearest(self, point: np.ndarray, k: int) -> List[DistributionCell]:
        """Up to k cells nearest to point (by mean), nearest first."""
        return self.nearest_batch(np.asarray(point, dtype=float).reshape(1, 3), k)[0]

    def nearest_batch(self, points: np.ndarray, k: int) -> List[List[DistributionCell]]:
        """Vectorized nearest(): one neighbor list per query point."""
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        k = min(int(k), len(self._cells))
        if k <= 0 or points.shape[0] == 0:
            return [[] for _ in range(points.shape[0])]
        # A list of ranks keeps the (n, k) output shape even for k == 1
        _, idx = self._tree.query(points, k=list(range(1, k + 1)))
        return [[self._cells[j] for j in row] for row in idx]
