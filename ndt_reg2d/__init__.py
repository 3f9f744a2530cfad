"""
ndt_reg2d: planar D2D-NDT scan registration.

Structure:
- common/: constants, pydantic parameter models, SE(2) codec, cloud helpers
- structures/: DistributionGrid (NDT cells), LikelihoodLookupTable (proof grid)
- operators/: fitting constants, score evaluator, More-Thuente line search
- registration/: D2D-NDT aligner, correlative search, ICP, robust orchestrator
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "D2DNDT2D",
    "RobustD2DNDT2D",
    "RegistrationResult",
    "RegistrationStatus",
    "register_clouds",
    "load_params",
]

_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "D2DNDT2D": ("ndt_reg2d.registration.d2d_ndt2d", "D2DNDT2D"),
    "RobustD2DNDT2D": ("ndt_reg2d.registration.robust", "RobustD2DNDT2D"),
    "RegistrationResult": ("ndt_reg2d.registration.result", "RegistrationResult"),
    "RegistrationStatus": ("ndt_reg2d.registration.result", "RegistrationStatus"),
    "register_clouds": ("ndt_reg2d.registration.robust", "register_clouds"),
    "load_params": ("ndt_reg2d.common.param_models", "load_params"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
