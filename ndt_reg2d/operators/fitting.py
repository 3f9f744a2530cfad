"""
Gaussian fitting constants for one NDT resolution layer.

The score of a cell pair mixes a normal distribution with a uniform outlier
floor (eq. 6.7-6.8 [Magnusson 2009]):

    c1 = 10 (1 - outlier_ratio)
    c2 = outlier_ratio / resolution^2
    d3 = -ln(c2)
    d1 = -ln(c1 + c2) - d3
    d2 = -2 ln((-ln(c1 e^{-1/2} + c2) - d3) / d1)

The values are shared read-only by every cell-score evaluation at a layer.

Domain: 0 < outlier_ratio < 1 and resolution > 0. Nothing is clamped here;
out-of-domain input produces non-finite constants and callers validate first
(see NDTParams).
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from ndt_reg2d.common import constants


def _safe_log(x: float) -> float:
    # log of a non-positive or NaN argument is NaN (not an exception)
    if not x > 0.0:
        return float("nan")
    return math.log(x)


@dataclass(frozen=True)
class FittingParameters:
    """Per-layer normalization constants d1, d2 and d2/2."""
    d1: float
    d2: float
    d2_half: float

    @classmethod
    def from_outlier_ratio(cls, outlier_ratio: float, resolution: float) -> "FittingParameters":
        if not (0.0 < outlier_ratio < 1.0 and resolution > 0.0):
            nan = float("nan")
            return cls(d1=nan, d2=nan, d2_half=nan)
        c1 = constants.NDT_GAUSS_C1_SCALE * (1.0 - outlier_ratio)
        c2 = outlier_ratio / resolution**2
        d3 = -_safe_log(c2)
        d1 = -_safe_log(c1 + c2) - d3
        d2 = -2.0 * _safe_log((-_safe_log(c1 * math.exp(-0.5) + c2) - d3) / d1) if d1 != 0.0 else float("nan")
        return cls(d1=d1, d2=d2, d2_half=d2 / 2.0)

    def is_finite(self) -> bool:
        return math.isfinite(self.d1) and math.isfinite(self.d2)
