"""
Point cloud helpers.

Clouds are plain float64 numpy arrays of shape (N, 3). Planar scans given as
(N, 2) are padded with z = 0 so the same code path handles both.
"""

import numpy as np


def as_cloud(points) -> np.ndarray:
    """
    Validate and normalize a point cloud to a float64 (N, 3) array.

    Raises:
        ValueError: if the array is not (N, 2) or (N, 3), or holds non-finite values
    """
    arr = np.asarray(points, dtype=float)
    if arr.ndim == 1 and arr.size == 0:
        return np.zeros((0, 3), dtype=float)
    if arr.ndim != 2 or arr.shape[1] not in (2, 3):
        raise ValueError(f"point cloud must have shape (N, 2) or (N, 3), got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("point cloud contains non-finite coordinates")
    if arr.shape[1] == 2:
        arr = np.hstack([arr, np.zeros((arr.shape[0], 1), dtype=float)])
    return arr


def transform_cloud(cloud: np.ndarray, T: np.ndarray) -> np.ndarray:
    """Apply a 4x4 homogeneous transform, returning a new (N, 3) array."""
    cloud = np.asarray(cloud, dtype=float)
    T = np.asarray(T, dtype=float)
    if cloud.shape[0] == 0:
        return cloud.copy()
    return cloud @ T[:3, :3].T + T[:3, 3]
