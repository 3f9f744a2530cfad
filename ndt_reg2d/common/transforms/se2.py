"""
Planar rigid-body geometry: SE(2) poses embedded in 4x4 homogeneous matrices.

State representation: (x, y, theta) where:
- (x, y): translation in the plane
- theta: rotation about +Z in radians, canonical range (-pi, pi]

Registration works on 3D point arrays whose z coordinate is carried along
untouched, so every pose has an equivalent homogeneous matrix:

    T = [[cos -sin 0 x],
         [sin  cos 0 y],
         [ 0    0  1 0],
         [ 0    0  0 1]]

The conversion back extracts theta with atan2(R10, R00). The planar form of
the input matrix is a precondition and is not checked: off-plane rotation or
z translation is silently dropped.
"""

import math
from typing import Optional, Union

import numpy as np


# =============================================================================
# Angle helpers
# =============================================================================


def wrap_angle(theta: float) -> float:
    """Wrap an angle to (-pi, pi]."""
    wrapped = math.atan2(math.sin(theta), math.cos(theta))
    # atan2 returns [-pi, pi]; fold -pi onto +pi
    if wrapped <= -math.pi:
        wrapped = math.pi
    return wrapped


def rot_z(theta: float) -> np.ndarray:
    """3x3 rotation about +Z."""
    c = math.cos(theta)
    s = math.sin(theta)
    return np.array([
        [c, -s, 0.0],
        [s, c, 0.0],
        [0.0, 0.0, 1.0],
    ], dtype=float)


# =============================================================================
# Pose <-> homogeneous matrix
# =============================================================================


def pose_to_matrix(pose: np.ndarray) -> np.ndarray:
    """
    Build the 4x4 homogeneous transform of a planar pose (x, y, theta).

    Rotation block is a pure Z rotation, translation is (x, y, 0).
    """
    pose = np.asarray(pose, dtype=float).reshape(-1)
    T = np.eye(4, dtype=float)
    T[:3, :3] = rot_z(float(pose[2]))
    T[0, 3] = pose[0]
    T[1, 3] = pose[1]
    return T


def matrix_to_pose(T: np.ndarray) -> np.ndarray:
    """Extract (x, y, theta) from a planar 4x4 homogeneous transform."""
    T = np.asarray(T, dtype=float)
    theta = math.atan2(T[1, 0], T[0, 0])
    return np.array([T[0, 3], T[1, 3], theta], dtype=float)


def as_pose(guess: Optional[Union[np.ndarray, list, tuple]]) -> np.ndarray:
    """
    Normalize an initial guess into a pose vector.

    Accepts None (identity), a pose (3,) or a homogeneous matrix (4, 4).
    """
    if guess is None:
        return np.zeros(3, dtype=float)
    arr = np.asarray(guess, dtype=float)
    if arr.shape == (4, 4):
        return matrix_to_pose(arr)
    if arr.shape == (3,):
        return arr.copy()
    raise ValueError(f"guess must be a pose (3,) or a matrix (4, 4), got shape {arr.shape}")


# =============================================================================
# SE(2) group operations on pose vectors
# =============================================================================


def se2_compose(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Compose two planar transforms: T_a * T_b.

    This is exact group composition; the result angle is canonical.
    """
    a = np.asarray(a, dtype=float).reshape(-1)
    b = np.asarray(b, dtype=float).reshape(-1)
    c = math.cos(a[2])
    s = math.sin(a[2])
    x = a[0] + c * b[0] - s * b[1]
    y = a[1] + s * b[0] + c * b[1]
    return np.array([x, y, wrap_angle(a[2] + b[2])], dtype=float)


def se2_inverse(a: np.ndarray) -> np.ndarray:
    """For T = (R, t), T^{-1} = (R^T, -R^T t)."""
    a = np.asarray(a, dtype=float).reshape(-1)
    c = math.cos(a[2])
    s = math.sin(a[2])
    x = -(c * a[0] + s * a[1])
    y = -(-s * a[0] + c * a[1])
    return np.array([x, y, wrap_angle(-a[2])], dtype=float)
