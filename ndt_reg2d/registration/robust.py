"""
Robust D2D-NDT registration with a coarse-search fallback.

DECISION POLICY:
    1. Run the primary NDT aligner from the guess and verify its result
       (fraction of transformed source points that land on the target's
       proof grid). A non-converged primary result verifies as 0.
    2. Converged and score1 > accept_threshold            -> accept primary
    3. Otherwise run the coarse aligner from the guess;
       not converged                                     -> FALLBACK_FAILURE
    4. Optionally polish the coarse estimate with ICP; an ICP run that does
       not converge leaves the coarse estimate unchanged
    5. Re-run the primary aligner from the (refined) coarse estimate;
       not converged                                     -> FALLBACK_FAILURE
    6. score2 >= refined_threshold                       -> accept refined
       score1 > first_attempt_threshold                  -> accept first attempt
       otherwise                                         -> LOW_CONFIDENCE

The thresholds (0.7 / 0.4 / 0.6 by default) are tunable policy and live in
RobustParams. Failures return the identity transform with converged=False.

The orchestrator holds its collaborators only; every align() call keeps its
attempts local.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable, Optional, Protocol

import numpy as np

from ndt_reg2d.common.param_models import RobustParams
from ndt_reg2d.common.pointcloud import as_cloud, transform_cloud
from ndt_reg2d.common.transforms.se2 import as_pose
from ndt_reg2d.registration.correlative import CorrelativeEstimation
from ndt_reg2d.registration.d2d_ndt2d import D2DNDT2D
from ndt_reg2d.registration.icp import PlanarICP
from ndt_reg2d.registration.result import Aligner, RegistrationResult, RegistrationStatus
from ndt_reg2d.structures.lookup_table import LikelihoodLookupTable

_logger = logging.getLogger(__name__)


class VerificationScorer(Protocol):
    """Scores how well a transformed cloud overlaps the target, in [0, 1]."""

    def score(self, cloud: np.ndarray) -> float:
        ...


# (target, cell_size, occupancy_threshold) -> scorer
ScorerFactory = Callable[[np.ndarray, float, float], VerificationScorer]


class RobustD2DNDT2D:
    """
    Primary NDT aligner guarded by verification and a coarse-search fallback.

    Args:
        primary: Precise aligner (D2D-NDT)
        coarse: Wide-basin aligner used when the primary result is rejected
        scorer_factory: Builds the verification scorer from the target cloud
        refiner: Optional aligner polishing the coarse estimate (ICP)
        params: Thresholds and proof-grid settings
    """

    def __init__(
        self,
        primary: Aligner,
        coarse: Aligner,
        scorer_factory: ScorerFactory = LikelihoodLookupTable.build,
        refiner: Optional[Aligner] = None,
        params: Optional[RobustParams] = None,
    ):
        self.primary = primary
        self.coarse = coarse
        self.scorer_factory = scorer_factory
        self.refiner = refiner
        self.params = params if params is not None else RobustParams()

    @classmethod
    def from_params(cls, params: Optional[RobustParams] = None) -> "RobustD2DNDT2D":
        """Default stack: D2D-NDT, correlative search, optional ICP, lookup-table proof grid."""
        params = params if params is not None else RobustParams()
        return cls(
            primary=D2DNDT2D(params.ndt),
            coarse=CorrelativeEstimation(params.correlative),
            scorer_factory=LikelihoodLookupTable.build,
            refiner=PlanarICP(params.icp) if params.use_icp_refinement else None,
            params=params,
        )

    def _verify(self, scorer: VerificationScorer, source: np.ndarray, result: RegistrationResult) -> float:
        if not result.converged:
            return 0.0
        score = float(scorer.score(transform_cloud(source, result.final_transform)))
        _logger.debug(f"[ROBUST]: proof score {score:.4f}")
        return score

    def align(self, source: np.ndarray, target: np.ndarray, guess=None) -> RegistrationResult:
        """
        Register source onto target, falling back to coarse search when needed.

        Returns:
            RegistrationResult with status naming the accepting branch and
            verification_score of the accepted attempt
        """
        p = self.params
        source = as_cloud(source)
        target = as_cloud(target)
        guess = as_pose(guess)
        scorer = self.scorer_factory(target, p.proof_cell_size, p.proof_occupancy_threshold)

        # Standard match for good initial guesses
        first = self.primary.align(source, target, guess)
        score1 = self._verify(scorer, source, first)
        if first.converged and score1 > p.accept_threshold:
            _logger.info(f"[ROBUST]: primary accepted, score {score1:.4f}")
            return dataclasses.replace(first, verification_score=score1)

        _logger.info(
            f"[ROBUST]: primary rejected (converged={first.converged}, score {score1:.4f}), "
            f"running coarse search"
        )
        coarse = self.coarse.align(source, target, guess)
        iterations = first.iteration_count + coarse.iteration_count
        if not coarse.converged:
            _logger.warning("[ROBUST]: coarse search did not converge")
            return RegistrationResult.failure(
                RegistrationStatus.FALLBACK_FAILURE,
                iteration_count=iterations,
                verification_score=score1,
            )

        seed = coarse.final_transform
        if self.refiner is not None:
            refined = self.refiner.align(source, target, seed)
            iterations += refined.iteration_count
            if refined.converged:
                seed = refined.final_transform
            else:
                _logger.info("[ROBUST]: refinement did not converge, keeping coarse estimate")

        # Precise alignment from the coarse estimate
        second = self.primary.align(source, target, seed)
        iterations += second.iteration_count
        if not second.converged:
            _logger.warning("[ROBUST]: primary re-run from coarse estimate did not converge")
            return RegistrationResult.failure(
                RegistrationStatus.FALLBACK_FAILURE,
                iteration_count=iterations,
                verification_score=score1,
            )

        score2 = self._verify(scorer, source, second)
        if score2 >= p.refined_threshold:
            _logger.info(f"[ROBUST]: refined result accepted, score {score2:.4f}")
            return dataclasses.replace(
                second,
                status=RegistrationStatus.ACCEPTED_REFINED,
                verification_score=score2,
            )

        if score1 > p.first_attempt_threshold:
            _logger.info(
                f"[ROBUST]: refined score {score2:.4f} too low, first attempt accepted ({score1:.4f})"
            )
            return dataclasses.replace(
                first,
                status=RegistrationStatus.ACCEPTED_FIRST_ATTEMPT,
                verification_score=score1,
            )

        _logger.warning(
            f"[ROBUST]: low confidence (first {score1:.4f}, refined {score2:.4f}), "
            f"clouds probably do not overlap"
        )
        return RegistrationResult.failure(
            RegistrationStatus.LOW_CONFIDENCE,
            iteration_count=iterations,
            verification_score=score2,
        )


def register_clouds(
    source: np.ndarray,
    target: np.ndarray,
    initial_guess=None,
    params: Optional[RobustParams] = None,
) -> RegistrationResult:
    """
    Register a planar source cloud onto a target cloud.

    Args:
        source: Source cloud (N, 3) or (N, 2)
        target: Target cloud (M, 3) or (M, 2)
        initial_guess: Pose (3,), matrix (4, 4) or None for identity
        params: RobustParams (defaults when None)

    Returns:
        RegistrationResult of the robust aligner
    """
    return RobustD2DNDT2D.from_params(params).align(source, target, initial_guess)
