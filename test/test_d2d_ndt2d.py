"""
Tests for the multi-resolution D2D-NDT aligner on synthetic planar scenes.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

import ndt_reg2d.operators.ndt_score as ndt_score_module
import ndt_reg2d.registration.d2d_ndt2d as d2d_module
from ndt_reg2d.common.param_models import NDTParams
from ndt_reg2d.common.pointcloud import transform_cloud
from ndt_reg2d.common.transforms.se2 import pose_to_matrix, se2_inverse
from ndt_reg2d.operators.fitting import FittingParameters
from ndt_reg2d.registration.d2d_ndt2d import D2DNDT2D, newton_step
from ndt_reg2d.registration.result import RegistrationStatus
from ndt_reg2d.operators.ndt_score import ScoreAndDerivatives
from ndt_reg2d.structures.distribution_grid import DistributionGrid


def _params(**overrides):
    values = dict(cell_sizes=[2.0, 1.0, 0.5, 0.25], transformation_epsilon=0.01, max_iterations=35)
    values.update(overrides)
    return NDTParams(**values)


class TestAlign:
    """D2DNDT2D.align."""

    def test_identity_roundtrip(self, room_scan):
        """Aligning a cloud onto itself from identity stays at identity with a near-perfect fit."""
        params = _params()
        result = D2DNDT2D(params).align(room_scan, room_scan)
        assert result.converged
        assert result.status == RegistrationStatus.CONVERGED
        pose = result.final_pose
        assert np.linalg.norm(pose[:2]) < 0.05
        assert abs(pose[2]) < 0.02
        assert result.iteration_count >= 4

        # Finest layer: each cell meets its own copy (contribution close to -d1)
        # plus one other neighbour (contribution in [0, -d1]).
        finest = params.resolved_cell_sizes()[-1]
        param = FittingParameters.from_outlier_ratio(params.outlier_ratio, 1.0 / finest)
        n_cells = len(DistributionGrid.build(room_scan, finest))
        per_cell = -param.d1 * n_cells / room_scan.shape[0]
        assert 0.8 * per_cell <= result.transformation_probability <= 2.0 * per_cell

    def test_recovers_small_offset(self, room_scan):
        """A small known offset is recovered from an identity guess."""
        true_pose = np.array([0.15, -0.1, 0.05])
        source = transform_cloud(room_scan, pose_to_matrix(se2_inverse(true_pose)))
        result = D2DNDT2D(_params()).align(source, room_scan)
        assert result.converged
        pose = result.final_pose
        assert np.allclose(pose[:2], true_pose[:2], atol=0.05)
        assert pose[2] == pytest.approx(true_pose[2], abs=0.02)

    def test_covariance_and_information_are_inverse(self, room_scan):
        result = D2DNDT2D(_params()).align(room_scan, room_scan)
        assert np.allclose(result.covariance @ result.information_matrix, np.eye(3), atol=1e-6)

    def test_accepts_planar_input_and_matrix_guess(self, room_scan):
        result = D2DNDT2D(_params()).align(room_scan[:, :2], room_scan[:, :2], np.eye(4))
        assert result.converged

    def test_no_overlap_fails_whole_run(self, room_scan):
        """Far-apart clouds give a vanishing Newton step on the first layer."""
        source = room_scan + np.array([100.0, 100.0, 0.0])
        result = D2DNDT2D(_params()).align(source, room_scan)
        assert not result.converged
        assert result.status == RegistrationStatus.LAYER_FAILURE
        assert np.allclose(result.final_transform, np.eye(4))
        assert np.allclose(result.covariance, np.eye(3))
        assert result.iteration_count == 0

    def test_empty_source(self, room_scan):
        result = D2DNDT2D(_params()).align(np.zeros((0, 3)), room_scan)
        assert not result.converged
        assert result.status == RegistrationStatus.LAYER_FAILURE

    def test_iterations_bounded(self, room_scan):
        """Per-layer iteration cap bounds the total."""
        true_pose = np.array([0.3, 0.2, 0.1])
        source = transform_cloud(room_scan, pose_to_matrix(se2_inverse(true_pose)))
        params = _params(max_iterations=2, transformation_epsilon=1e-6)
        result = D2DNDT2D(params).align(source, room_scan)
        assert result.iteration_count <= 2 * len(params.resolved_cell_sizes())

    def test_rejects_malformed_cloud(self, room_scan):
        with pytest.raises(ValueError):
            D2DNDT2D(_params()).align(np.zeros((10, 4)), room_scan)


class TestSingleGrid:
    """D2DNDT2D.compute_single_grid."""

    def test_degenerate_step(self, room_scan):
        cell_size = 0.5
        target = DistributionGrid.build(room_scan, cell_size)
        source = DistributionGrid.build(room_scan + np.array([50.0, 0.0, 0.0]), cell_size)
        param = FittingParameters.from_outlier_ratio(0.55, 1.0 / cell_size)
        layer = D2DNDT2D(_params()).compute_single_grid(
            source, np.zeros(3), target, param, room_scan.shape[0]
        )
        assert not layer.converged
        assert layer.status == RegistrationStatus.DEGENERATE_STEP
        assert layer.iterations == 0

    def test_newton_step_solves_system(self):
        H = np.array([[-4.0, 1.0, 0.0], [1.0, -3.0, 0.0], [0.0, 0.0, -2.0]])
        g = np.array([1.0, 2.0, -1.0])
        delta = newton_step(ScoreAndDerivatives(value=0.0, gradient=g, hessian=H))
        assert np.allclose(H @ delta, -g)

    def test_newton_step_non_finite(self):
        bad = ScoreAndDerivatives(value=0.0, gradient=np.array([np.nan, 0.0, 0.0]))
        assert not np.all(np.isfinite(newton_step(bad)))


class TestScorePool:
    """Score evaluation thread pool lifetime."""

    def test_one_pool_per_align(self, room_scan, monkeypatch):
        created = []

        class CountingPool(ThreadPoolExecutor):
            def __init__(self, *args, **kwargs):
                created.append(kwargs.get("max_workers"))
                super().__init__(*args, **kwargs)

        def _no_temporary_pool(*args, **kwargs):
            raise AssertionError("score evaluation created its own pool")

        monkeypatch.setattr(d2d_module, "ThreadPoolExecutor", CountingPool)
        monkeypatch.setattr(ndt_score_module, "ThreadPoolExecutor", _no_temporary_pool)
        result = D2DNDT2D(_params(num_workers=3)).align(room_scan, room_scan)
        assert result.converged
        assert created == [3]
