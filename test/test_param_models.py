"""
Tests for the pydantic parameter models and YAML loading.
"""

import pytest
from pydantic import ValidationError

from ndt_reg2d.common.param_models import (
    CorrelativeParams,
    ICPParams,
    NDTParams,
    RobustParams,
    load_params,
)


class TestNDTParams:

    def test_default_schedule_doubles_base(self):
        params = NDTParams()
        assert params.resolved_cell_sizes() == [2.0, 1.0, 0.5, 0.25]

    def test_explicit_schedule_sorted_coarse_to_fine(self):
        params = NDTParams(cell_sizes=[0.5, 2.0, 1.0])
        assert params.resolved_cell_sizes() == [2.0, 1.0, 0.5]

    @pytest.mark.parametrize("sizes", [[], [1.0, 1.0], [1.0, -0.5]])
    def test_invalid_schedule(self, sizes):
        with pytest.raises(ValidationError):
            NDTParams(cell_sizes=sizes)

    @pytest.mark.parametrize("ratio", [0.0, 1.0, 1.2])
    def test_outlier_ratio_domain(self, ratio):
        with pytest.raises(ValidationError):
            NDTParams(outlier_ratio=ratio)

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            NDTParams(resolution=1.0)

    def test_min_points_per_cell_matches_grid(self):
        """Two points are the fewest that give a sample covariance."""
        assert NDTParams(min_points_per_cell=2).min_points_per_cell == 2
        with pytest.raises(ValidationError):
            NDTParams(min_points_per_cell=1)

    def test_validate_assignment(self):
        params = NDTParams()
        with pytest.raises(ValidationError):
            params.step_size = -1.0


class TestRobustParams:

    def test_defaults(self):
        params = RobustParams()
        assert params.ndt.resolved_cell_sizes() == [2.0, 1.0, 0.5, 0.25]
        assert params.ndt.max_iterations == 10
        assert params.ndt.outlier_ratio == 0.55
        assert (params.accept_threshold, params.refined_threshold, params.first_attempt_threshold) == (0.7, 0.4, 0.6)
        assert params.proof_cell_size == 0.25
        assert params.proof_occupancy_threshold == 0.5


class TestLoadParams:

    def test_shipped_config_matches_defaults(self, default_config_path):
        assert load_params(default_config_path) == RobustParams()

    def test_ros_wrapper(self, tmp_path):
        path = tmp_path / "params.yaml"
        path.write_text("/**:\n  ros__parameters:\n    accept_threshold: 0.8\n    ndt:\n      max_iterations: 5\n")
        params = load_params(str(path))
        assert params.accept_threshold == 0.8
        assert params.ndt.max_iterations == 5

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_params(str(path)) == RobustParams()

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("refined_threshold: 2.0\n")
        with pytest.raises(ValidationError):
            load_params(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_params(str(tmp_path / "nope.yaml"))

    def test_shipped_config_covers_every_field(self, default_config):
        """Every tunable appears in the shipped file, and nothing else does."""
        assert set(default_config) == set(RobustParams.model_fields)
        for section, model in (("ndt", NDTParams), ("correlative", CorrelativeParams), ("icp", ICPParams)):
            expected = set(model.model_fields)
            if section == "ndt":
                # the explicit schedule replaces base_cell_size / layer_count
                expected -= {"base_cell_size", "layer_count"}
            assert set(default_config[section]) == expected
