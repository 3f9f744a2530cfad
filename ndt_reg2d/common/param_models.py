"""Pydantic parameter models for ndt_reg2d aligners."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ndt_reg2d.common import constants


class BaseRegistrationParams(BaseModel):
    """Shared parameter base."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class NDTParams(BaseRegistrationParams):
    """D2D-NDT optimizer parameter model."""

    outlier_ratio: float = Field(constants.NDT_OUTLIER_RATIO_DEFAULT, gt=0.0, lt=1.0)
    base_cell_size: float = Field(constants.NDT_BASE_CELL_SIZE_DEFAULT, gt=0.0)
    layer_count: int = Field(constants.NDT_LAYER_COUNT_DEFAULT, ge=1)
    # Explicit schedule; overrides base_cell_size/layer_count when set
    cell_sizes: Optional[List[float]] = None

    step_size: float = Field(constants.NDT_STEP_SIZE_DEFAULT, gt=0.0)
    transformation_epsilon: float = Field(constants.NDT_TRANSFORMATION_EPSILON_DEFAULT, gt=0.0)
    max_iterations: int = Field(constants.NDT_MAX_ITERATIONS_DEFAULT, ge=1)
    num_workers: int = Field(constants.NDT_NUM_WORKERS_DEFAULT, ge=1)

    line_search_mu: float = Field(constants.LINE_SEARCH_MU, gt=0.0, lt=1.0)
    line_search_nu: float = Field(constants.LINE_SEARCH_NU, gt=0.0, lt=1.0)
    line_search_max_trials: int = Field(constants.LINE_SEARCH_MAX_TRIALS, ge=1)

    min_points_per_cell: int = Field(constants.GRID_MIN_POINTS_PER_CELL, ge=2)
    min_covar_eigvalue_mult: float = Field(constants.GRID_MIN_COVAR_EIGVALUE_MULT, ge=0.0, le=1.0)

    @field_validator("cell_sizes")
    @classmethod
    def _check_cell_sizes(cls, value: Optional[List[float]]) -> Optional[List[float]]:
        if value is None:
            return value
        if len(value) == 0:
            raise ValueError("cell_sizes must not be empty")
        if any(size <= 0.0 for size in value):
            raise ValueError(f"cell sizes must be positive, got {value}")
        if len(set(value)) != len(value):
            raise ValueError(f"cell sizes must be distinct, got {value}")
        return value

    def resolved_cell_sizes(self) -> List[float]:
        """
        Cell sizes of the multi-resolution schedule, coarse to fine.

        Without an explicit schedule the finest layer uses base_cell_size and
        every coarser layer doubles it, e.g. 2.0, 1.0, 0.5, 0.25.
        """
        if self.cell_sizes is not None:
            return sorted((float(s) for s in self.cell_sizes), reverse=True)
        return [self.base_cell_size * 2.0**i for i in range(self.layer_count - 1, -1, -1)]


class CorrelativeParams(BaseRegistrationParams):
    """Correlative (exhaustive window search) coarse aligner parameters."""

    cell_size: float = Field(constants.CORR_CELL_SIZE_DEFAULT, gt=0.0)
    linear_window: float = Field(constants.CORR_LINEAR_WINDOW_DEFAULT, ge=0.0)
    angular_window: float = Field(constants.CORR_ANGULAR_WINDOW_DEFAULT, ge=0.0)
    angular_step: float = Field(constants.CORR_ANGULAR_STEP_DEFAULT, gt=0.0)
    min_score: float = Field(constants.CORR_MIN_SCORE_DEFAULT, ge=0.0, le=1.0)


class ICPParams(BaseRegistrationParams):
    """Planar point-to-point ICP parameters."""

    max_iterations: int = Field(constants.ICP_MAX_ITER_DEFAULT, ge=1)
    tolerance: float = Field(constants.ICP_TOLERANCE_DEFAULT, gt=0.0)
    max_correspondence_distance: float = Field(constants.ICP_MAX_CORRESPONDENCE_DIST_DEFAULT, gt=0.0)


def _robust_ndt_defaults() -> NDTParams:
    return NDTParams(
        cell_sizes=list(constants.ROBUST_CELL_SIZES),
        max_iterations=constants.ROBUST_MAX_ITERATIONS,
    )


class RobustParams(BaseRegistrationParams):
    """Robust orchestrator parameter model (nests every aligner it drives)."""

    ndt: NDTParams = Field(default_factory=_robust_ndt_defaults)
    correlative: CorrelativeParams = Field(default_factory=CorrelativeParams)
    icp: ICPParams = Field(default_factory=ICPParams)
    use_icp_refinement: bool = True

    accept_threshold: float = Field(constants.ROBUST_ACCEPT_THRESHOLD, ge=0.0, le=1.0)
    refined_threshold: float = Field(constants.ROBUST_REFINED_THRESHOLD, ge=0.0, le=1.0)
    first_attempt_threshold: float = Field(constants.ROBUST_FIRST_ATTEMPT_THRESHOLD, ge=0.0, le=1.0)

    proof_cell_size: float = Field(constants.PROOF_CELL_SIZE_DEFAULT, gt=0.0)
    proof_occupancy_threshold: float = Field(constants.PROOF_OCCUPANCY_THRESHOLD_DEFAULT, ge=0.0, le=1.0)


def unwrap_ros_parameters(data: Dict[str, Any]) -> Dict[str, Any]:
    # ROS2 YAML files wrap parameters in /**:/ros__parameters:
    if "/**" in data and "ros__parameters" in data.get("/**", {}):
        return data["/**"]["ros__parameters"]
    return data


def load_params(path: str) -> RobustParams:
    """
    Load and validate a YAML parameter file.

    Raises:
        FileNotFoundError: if path does not exist
        pydantic.ValidationError: if the file holds unknown or invalid keys
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"parameter file not found: {path}")
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return RobustParams.model_validate(unwrap_ros_parameters(data))
