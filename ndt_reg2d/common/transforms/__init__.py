"""
Transforms package for ndt_reg2d.

Planar SE(2) pose helpers with a homogeneous-matrix codec.
"""

from __future__ import annotations

from ndt_reg2d.common.transforms.se2 import (
    as_pose,
    matrix_to_pose,
    pose_to_matrix,
    rot_z,
    se2_compose,
    se2_inverse,
    wrap_angle,
)

__all__ = [
    "as_pose",
    "matrix_to_pose",
    "pose_to_matrix",
    "rot_z",
    "se2_compose",
    "se2_inverse",
    "wrap_angle",
]
