"""
Tests for the likelihood lookup table (verification scorer).
"""

import math

import numpy as np
import pytest

from ndt_reg2d.structures.lookup_table import LikelihoodLookupTable


class TestLikelihoodLookupTable:
    """Build, score and likelihood readouts."""

    def test_target_scores_itself_fully(self, room_scan):
        table = LikelihoodLookupTable.build(room_scan, 0.25, 0.5)
        assert table.score(room_scan) == pytest.approx(1.0)
        assert table.likelihood(room_scan) == pytest.approx(1.0)

    def test_scores_bounded(self, room_scan):
        table = LikelihoodLookupTable.build(room_scan, 0.25, 0.5)
        shifted = room_scan + np.array([0.3, 0.2, 0.0])
        for cloud in (room_scan, shifted):
            assert 0.0 <= table.score(cloud) <= 1.0
            assert 0.0 <= table.likelihood(cloud) <= 1.0
        assert table.score(shifted) < table.score(room_scan)

    def test_gaussian_falloff(self):
        """Occupied cell 1, edge neighbour exp(-1/2), diagonal exp(-1)."""
        target = np.array([[0.25, 0.25, 0.0]])
        table = LikelihoodLookupTable.build(target, 0.5, 0.5)
        queries = np.array([[0.3, 0.3], [0.8, 0.3], [0.8, 0.8]])
        assert np.allclose(table.lookup(queries), [1.0, math.exp(-0.5), math.exp(-1.0)])
        # edge neighbour passes the 0.5 threshold, diagonal does not
        assert table.score(queries) == pytest.approx(2.0 / 3.0)

    def test_outside_points_miss(self, room_scan):
        table = LikelihoodLookupTable.build(room_scan, 0.25, 0.5)
        far = room_scan + np.array([1000.0, 0.0, 0.0])
        assert table.score(far) == 0.0
        assert table.likelihood(far) == 0.0

    def test_empty_clouds(self, room_scan):
        table = LikelihoodLookupTable.build(room_scan, 0.25)
        assert table.score(np.zeros((0, 3))) == 0.0
        empty = LikelihoodLookupTable.build(np.zeros((0, 3)), 0.25)
        assert empty.score(room_scan) == 0.0

    def test_rejects_bad_cell_size(self, room_scan):
        with pytest.raises(ValueError):
            LikelihoodLookupTable.build(room_scan, -1.0)
