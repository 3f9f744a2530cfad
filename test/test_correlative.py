"""
Tests for the correlative window-search coarse aligner.
"""

import numpy as np
import pytest

from ndt_reg2d.common.param_models import CorrelativeParams
from ndt_reg2d.common.pointcloud import transform_cloud
from ndt_reg2d.common.transforms.se2 import pose_to_matrix, se2_inverse
from ndt_reg2d.registration.correlative import CorrelativeEstimation
from ndt_reg2d.registration.result import RegistrationStatus
from ndt_reg2d.structures.lookup_table import LikelihoodLookupTable


class TestCorrelativeEstimation:
    """CorrelativeEstimation.align."""

    def test_recovers_known_offset(self, room_scan):
        true_pose = np.array([0.3, -0.2, 0.1])
        source = transform_cloud(room_scan, pose_to_matrix(se2_inverse(true_pose)))
        result = CorrelativeEstimation().align(source, room_scan)
        assert result.converged
        assert result.status == RegistrationStatus.CONVERGED
        pose = result.final_pose
        assert np.allclose(pose[:2], true_pose[:2], atol=0.1)
        assert pose[2] == pytest.approx(true_pose[2], abs=0.03)
        assert result.transformation_probability > 0.9

    def test_reported_likelihood_matches_table(self, room_scan):
        """transformation_probability is the table likelihood of the source at the returned pose."""
        true_pose = np.array([0.3, -0.2, 0.1])
        source = transform_cloud(room_scan, pose_to_matrix(se2_inverse(true_pose)))
        params = CorrelativeParams()
        result = CorrelativeEstimation(params).align(source, room_scan)
        table = LikelihoodLookupTable.build(room_scan, params.cell_size)
        moved = transform_cloud(source, result.final_transform)
        assert table.likelihood(moved) == pytest.approx(result.transformation_probability, abs=0.01)

    def test_search_is_centered_on_guess(self, room_scan):
        """The window moves with the guess."""
        true_pose = np.array([1.8, 0.0, 0.0])
        source = transform_cloud(room_scan, pose_to_matrix(se2_inverse(true_pose)))
        params = CorrelativeParams(linear_window=0.5, angular_window=0.1)
        result = CorrelativeEstimation(params).align(source, room_scan, np.array([1.5, 0.2, 0.0]))
        assert result.converged
        assert np.allclose(result.final_pose, true_pose, atol=0.1)

    def test_no_overlap_not_converged(self, room_scan):
        source = room_scan + np.array([100.0, 0.0, 0.0])
        result = CorrelativeEstimation().align(source, room_scan)
        assert not result.converged
        assert result.status == RegistrationStatus.NOT_CONVERGED
        assert np.allclose(result.final_transform, np.eye(4))

    def test_empty_source(self, room_scan):
        result = CorrelativeEstimation().align(np.zeros((0, 3)), room_scan)
        assert not result.converged
