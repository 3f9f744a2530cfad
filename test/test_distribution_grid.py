"""
Tests for the voxel distribution grid.
"""

import numpy as np
import pytest

from ndt_reg2d.structures.distribution_grid import (
    DistributionCell,
    DistributionGrid,
    inflate_covariance,
)


class TestBuild:
    """DistributionGrid.build."""

    def test_mean_and_covariance(self, numpy_seed):
        """One voxel: sample mean and unbiased covariance (before inflation)."""
        pts = np.random.uniform(0.1, 0.9, size=(50, 3))
        grid = DistributionGrid.build(pts, cell_size=1.0, min_covar_eigvalue_mult=0.0)
        assert len(grid) == 1
        cell = grid.cells()[0]
        assert cell.point_count == 50
        assert np.allclose(cell.mean, pts.mean(axis=0))
        assert np.allclose(cell.covariance, np.cov(pts.T, ddof=1))

    def test_sparse_voxels_dropped(self, numpy_seed):
        """Voxels with fewer than min_points_per_cell points produce no cell."""
        dense = np.random.uniform(0.1, 0.9, size=(10, 2))
        sparse = np.random.uniform(5.1, 5.9, size=(3, 2))
        grid = DistributionGrid.build(np.vstack([dense, sparse]), cell_size=1.0, min_points_per_cell=6)
        assert len(grid) == 1
        assert grid.n_points == 13
        assert grid.cells()[0].point_count == 10

    def test_planar_cells_invertible(self, numpy_seed):
        """(N, 2) input gets z = 0; inflation keeps the covariance invertible."""
        pts = np.random.uniform(0.1, 0.9, size=(30, 2))
        grid = DistributionGrid.build(pts, cell_size=1.0)
        cov = grid.cells()[0].covariance
        evals = np.linalg.eigvalsh(cov)
        assert np.allclose(cov, cov.T)
        assert evals[0] == pytest.approx(0.01 * evals[-1])
        assert abs(np.linalg.det(cov)) > 0.0

    def test_empty_cloud(self):
        grid = DistributionGrid.build(np.zeros((0, 3)), cell_size=0.5)
        assert len(grid) == 0
        assert grid.nearest(np.zeros(3), 2) == []

    def test_rejects_bad_cell_size(self):
        with pytest.raises(ValueError):
            DistributionGrid.build(np.zeros((10, 3)), cell_size=0.0)

    def test_min_points_per_cell_lower_bound(self):
        """Two points per cell is the smallest accepted minimum."""
        pts = np.array([[0.2, 0.3, 0.0], [0.6, 0.4, 0.0]])
        grid = DistributionGrid.build(pts, cell_size=1.0, min_points_per_cell=2)
        assert len(grid) == 1
        with pytest.raises(ValueError):
            DistributionGrid.build(pts, cell_size=1.0, min_points_per_cell=1)

    def test_cells_are_read_only(self, numpy_seed):
        grid = DistributionGrid.build(np.random.uniform(0, 1, (20, 3)), cell_size=2.0)
        with pytest.raises(ValueError):
            grid.cells()[0].mean[0] = 1.0


class TestNearest:
    """Nearest-cell queries."""

    @staticmethod
    def _grid():
        cells = [
            DistributionCell.create(10, [float(i), 0.0, 0.0], np.eye(3) * 0.1)
            for i in range(5)
        ]
        return DistributionGrid(1.0, cells)

    def test_nearest_ordered(self):
        grid = self._grid()
        near = grid.nearest(np.array([2.2, 0.0, 0.0]), 2)
        assert [c.mean[0] for c in near] == [2.0, 3.0]

    def test_k_capped_at_cell_count(self):
        grid = self._grid()
        assert len(grid.nearest(np.zeros(3), 10)) == 5

    def test_batch_matches_single(self):
        grid = self._grid()
        queries = np.array([[0.1, 0.0, 0.0], [3.9, 0.5, 0.0]])
        batch = grid.nearest_batch(queries, 2)
        for q, row in zip(queries, batch):
            single = grid.nearest(q, 2)
            assert [c.mean[0] for c in row] == [c.mean[0] for c in single]

    def test_single_neighbor(self):
        grid = self._grid()
        row = grid.nearest(np.array([4.4, 0.0, 0.0]), 1)
        assert len(row) == 1
        assert row[0].mean[0] == 4.0


def test_inflate_covariance_floor():
    """Eigenvalues below mult * lambda_max are raised to that floor."""
    cov = np.diag([1.0, 1e-6, 0.0])
    inflated = inflate_covariance(cov, 0.01)
    assert np.allclose(np.sort(np.linalg.eigvalsh(inflated)), [0.01, 0.01, 1.0])
