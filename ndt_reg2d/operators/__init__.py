"""
Numerical operators of the D2D-NDT optimizer.

Pure functions and small value types; no operator keeps state between calls.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "FittingParameters",
    "ScoreAndDerivatives",
    "calc_score",
    "LineSearchResult",
    "compute_step_length",
]

_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "FittingParameters": ("ndt_reg2d.operators.fitting", "FittingParameters"),
    "ScoreAndDerivatives": ("ndt_reg2d.operators.ndt_score", "ScoreAndDerivatives"),
    "calc_score": ("ndt_reg2d.operators.ndt_score", "calc_score"),
    "LineSearchResult": ("ndt_reg2d.operators.line_search", "LineSearchResult"),
    "compute_step_length": ("ndt_reg2d.operators.line_search", "compute_step_length"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
