"""
Likelihood lookup table over a planar target cloud.

The table rasterizes the target's xy footprint (plus a margin) into square
cells. Cells containing at least one target point are occupied; every other
cell stores a Gaussian falloff of its distance to the nearest occupied cell:

    L(cell) = exp(-1/2 (d / sigma)^2),   sigma = cell_size

so an occupied cell scores 1, a 4-neighbour exp(-1/2) ~ 0.61 and a diagonal
neighbour exp(-1) ~ 0.37. Distances come from scipy's Euclidean distance
transform.

Two readouts:
    score(cloud)       fraction of points landing in a cell with L >= threshold
                       (used to verify a registration result, "proof grid")
    likelihood(cloud)  mean of L over the points (scores the candidates of the
                       correlative half-step pass; the whole-cell pass shifts
                       precomputed indices through lookup_indices() instead)

Points that fall outside the table contribute L = 0.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.ndimage import distance_transform_edt

from ndt_reg2d.common import constants
from ndt_reg2d.common.pointcloud import as_cloud


@dataclass(frozen=True)
class LikelihoodLookupTable:
    """Rasterized likelihood field of a target cloud."""
    cell_size: float
    origin: np.ndarray  # xy of the lower corner of cell (0, 0)
    table: np.ndarray   # (nx, ny) likelihood in [0, 1]
    occupancy_threshold: float = constants.PROOF_OCCUPANCY_THRESHOLD_DEFAULT

    @classmethod
    def build(
        cls,
        target: np.ndarray,
        cell_size: float,
        occupancy_threshold: float = constants.PROOF_OCCUPANCY_THRESHOLD_DEFAULT,
        margin_cells: int = constants.LOOKUP_MARGIN_CELLS,
    ) -> "LikelihoodLookupTable":
        """
        Rasterize a target cloud.

        Args:
            target: Target cloud (M, 3) or (M, 2); z is ignored
            cell_size: Table resolution (m), also the falloff sigma
            occupancy_threshold: Likelihood a point needs to count in score()
            margin_cells: Padding around the target bounds

        Returns:
            LikelihoodLookupTable (all zeros for an empty target)
        """
        if not cell_size > 0.0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        cloud = as_cloud(target)
        if cloud.shape[0] == 0:
            return cls(
                cell_size=float(cell_size),
                origin=np.zeros(2, dtype=float),
                table=np.zeros((1, 1), dtype=float),
                occupancy_threshold=float(occupancy_threshold),
            )

        xy = cloud[:, :2]
        origin = xy.min(axis=0) - margin_cells * cell_size
        upper = xy.max(axis=0) + margin_cells * cell_size
        shape = np.floor((upper - origin) / cell_size).astype(int) + 1

        idx = np.floor((xy - origin) / cell_size).astype(int)
        idx = np.clip(idx, 0, shape - 1)
        occupied = np.zeros(tuple(shape), dtype=bool)
        occupied[idx[:, 0], idx[:, 1]] = True

        # Distance in cells; sigma = one cell
        dist = distance_transform_edt(~occupied)
        table = np.exp(-0.5 * dist**2)
        table.flags.writeable = False
        origin.flags.writeable = False

        return cls(
            cell_size=float(cell_size),
            origin=origin,
            table=table,
            occupancy_threshold=float(occupancy_threshold),
        )

    @property
    def shape(self) -> tuple:
        return self.table.shape

    def cell_indices(self, xy: np.ndarray) -> np.ndarray:
        """Integer (i, j) cell index of each xy point, unbounded."""
        return np.floor((np.asarray(xy, dtype=float) - self.origin) / self.cell_size).astype(int)

    def lookup_indices(self, idx: np.ndarray) -> np.ndarray:
        """Likelihood at integer cell indices (..., 2); 0 outside the table."""
        nx, ny = self.table.shape
        i = idx[..., 0]
        j = idx[..., 1]
        inside = (i >= 0) & (i < nx) & (j >= 0) & (j < ny)
        values = np.zeros(i.shape, dtype=float)
        values[inside] = self.table[i[inside], j[inside]]
        return values

    def lookup(self, cloud: np.ndarray) -> np.ndarray:
        """Per-point likelihood of a cloud (N,) ."""
        pts = as_cloud(cloud)
        if pts.shape[0] == 0:
            return np.zeros(0, dtype=float)
        return self.lookup_indices(self.cell_indices(pts[:, :2]))

    def score(self, cloud: np.ndarray) -> float:
        """Fraction of points whose cell likelihood reaches occupancy_threshold, in [0, 1]."""
        values = self.lookup(cloud)
        if values.size == 0:
            return 0.0
        return float(np.count_nonzero(values >= self.occupancy_threshold)) / values.size

    def likelihood(self, cloud: np.ndarray) -> float:
        """Mean cell likelihood of the points, in [0, 1]."""
        values = self.lookup(cloud)
        if values.size == 0:
            return 0.0
        return float(values.mean())
