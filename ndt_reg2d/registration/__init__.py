"""
Registration aligners.

Every aligner exposes align(source, target, guess) -> RegistrationResult.

- d2d_ndt2d.py: multi-resolution D2D-NDT (primary)
- correlative.py: exhaustive window search (coarse fallback)
- icp.py: planar point-to-point ICP (refinement)
- robust.py: verification + fallback orchestrator, register_clouds()
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "Aligner",
    "RegistrationResult",
    "RegistrationStatus",
    "D2DNDT2D",
    "CorrelativeEstimation",
    "PlanarICP",
    "RobustD2DNDT2D",
    "register_clouds",
]

_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "Aligner": ("ndt_reg2d.registration.result", "Aligner"),
    "RegistrationResult": ("ndt_reg2d.registration.result", "RegistrationResult"),
    "RegistrationStatus": ("ndt_reg2d.registration.result", "RegistrationStatus"),
    "D2DNDT2D": ("ndt_reg2d.registration.d2d_ndt2d", "D2DNDT2D"),
    "CorrelativeEstimation": ("ndt_reg2d.registration.correlative", "CorrelativeEstimation"),
    "PlanarICP": ("ndt_reg2d.registration.icp", "PlanarICP"),
    "RobustD2DNDT2D": ("ndt_reg2d.registration.robust", "RobustD2DNDT2D"),
    "register_clouds": ("ndt_reg2d.registration.robust", "register_clouds"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
