"""
Registration result and the aligner capability shared by every registration method.

Every aligner (D2D-NDT, correlative, ICP, robust orchestrator) exposes

    align(source, target, guess) -> RegistrationResult

and returns a fresh immutable result per call. Failure is an expected
outcome reported through `converged` and `status`, never an exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

import numpy as np

from ndt_reg2d.common.transforms.se2 import matrix_to_pose


class RegistrationStatus(str, Enum):
    """Which branch produced a result."""
    CONVERGED = "converged"
    ACCEPTED_REFINED = "accepted_refined"
    ACCEPTED_FIRST_ATTEMPT = "accepted_first_attempt"
    NOT_CONVERGED = "not_converged"      # coarse or refinement aligner gave up
    DEGENERATE_STEP = "degenerate_step"  # zero or non-finite Newton step
    LAYER_FAILURE = "layer_failure"      # a multi-resolution layer degenerated
    FALLBACK_FAILURE = "fallback_failure"
    LOW_CONFIDENCE = "low_confidence"


@dataclass(frozen=True)
class RegistrationResult:
    """
    Outcome of one align() call.

    Attributes:
        final_transform: 4x4 homogeneous transform (identity on failure)
        converged: Whether the caller may use final_transform
        transformation_probability: Score normalized by source point count
        covariance: 3x3 (x, y, theta) block reported by the aligner
        information_matrix: 3x3 inverse of covariance
        iteration_count: Iterations spent by the producing aligner
        status: Branch of the outcome taxonomy
        verification_score: Proof-grid score, when the result was verified
    """
    final_transform: np.ndarray
    converged: bool
    transformation_probability: float = 0.0
    covariance: np.ndarray = field(default_factory=lambda: np.eye(3, dtype=float))
    information_matrix: np.ndarray = field(default_factory=lambda: np.eye(3, dtype=float))
    iteration_count: int = 0
    status: RegistrationStatus = RegistrationStatus.CONVERGED
    verification_score: Optional[float] = None

    @property
    def final_pose(self) -> np.ndarray:
        """(x, y, theta) of final_transform."""
        return matrix_to_pose(self.final_transform)

    @classmethod
    def failure(
        cls,
        status: RegistrationStatus,
        transformation_probability: float = 0.0,
        iteration_count: int = 0,
        verification_score: Optional[float] = None,
    ) -> "RegistrationResult":
        """Not converged, identity transform, identity covariance/information."""
        return cls(
            final_transform=np.eye(4, dtype=float),
            converged=False,
            transformation_probability=transformation_probability,
            iteration_count=iteration_count,
            status=status,
            verification_score=verification_score,
        )


class Aligner(Protocol):
    """Registration capability: estimate the transform mapping source onto target."""

    def align(self, source: np.ndarray, target: np.ndarray, guess=None) -> RegistrationResult:
        ...
