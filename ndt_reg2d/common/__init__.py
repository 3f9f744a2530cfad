"""
Common package for ndt_reg2d.

Shared utilities used by structures, operators and aligners.

Subpackages:
- transforms/: SE(2) pose <-> homogeneous matrix codec
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "NDTParams",
    "RobustParams",
    "load_params",
    "constants",
]

_LAZY_ATTRS: dict[str, tuple[str, str | None]] = {
    "NDTParams": ("ndt_reg2d.common.param_models", "NDTParams"),
    "RobustParams": ("ndt_reg2d.common.param_models", "RobustParams"),
    "load_params": ("ndt_reg2d.common.param_models", "load_params"),
    # Expose as submodule, but do not eagerly import it at package import time.
    "constants": ("ndt_reg2d.common.constants", None),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    module = import_module(module_name)
    return module if attr_name is None else getattr(module, attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
