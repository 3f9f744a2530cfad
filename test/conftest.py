import os
import sys
from typing import Any, Dict

import numpy as np
import pytest
import yaml

# Ensure local package import works for pytest collection.
_TEST_DIR = os.path.dirname(__file__)
_PKG_ROOT = os.path.abspath(os.path.join(_TEST_DIR, ".."))
if _PKG_ROOT not in sys.path:
    sys.path.insert(0, _PKG_ROOT)

from ndt_reg2d.common.param_models import unwrap_ros_parameters  # noqa: E402
from ndt_reg2d.registration.result import RegistrationResult, RegistrationStatus  # noqa: E402
from ndt_reg2d.common.transforms.se2 import pose_to_matrix  # noqa: E402

# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def default_config_path() -> str:
    """Path of the shipped default parameter file."""
    path = os.path.join(_PKG_ROOT, "config", "ndt_reg2d.yaml")
    if not os.path.exists(path):
        pytest.skip("config/ndt_reg2d.yaml not found")
    return path


@pytest.fixture
def default_config(default_config_path) -> Dict[str, Any]:
    """Raw dict of the shipped default parameter file, ROS wrapper removed."""
    with open(default_config_path) as f:
        return unwrap_ros_parameters(yaml.safe_load(f) or {})


# =============================================================================
# Synthetic scenes
# =============================================================================


def _sample_segment(rng, a, b, n, noise):
    t = rng.uniform(0.0, 1.0, size=n)
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    pts = a[None, :] + t[:, None] * (b - a)[None, :]
    return pts + rng.normal(0.0, noise, size=pts.shape)


def make_room_scan(seed: int = 0, density: float = 60.0, noise: float = 0.01) -> np.ndarray:
    """
    Irregular planar scene (N, 3): an asymmetric room with an inner box and a
    slanted wall. Points are sampled at random along each segment.
    """
    rng = np.random.default_rng(seed)
    segments = [
        # outer walls (8 x 6 room with a notch)
        ((0.0, 0.0), (8.0, 0.0)),
        ((8.0, 0.0), (8.0, 4.0)),
        ((8.0, 4.0), (6.5, 6.0)),
        ((6.5, 6.0), (0.0, 6.0)),
        ((0.0, 6.0), (0.0, 0.0)),
        # inner box
        ((2.0, 2.0), (3.5, 2.0)),
        ((3.5, 2.0), (3.5, 3.0)),
        ((3.5, 3.0), (2.0, 3.0)),
        ((2.0, 3.0), (2.0, 2.0)),
        # pillar wall
        ((5.0, 1.0), (5.0, 3.5)),
    ]
    parts = []
    for a, b in segments:
        length = float(np.hypot(b[0] - a[0], b[1] - a[1]))
        parts.append(_sample_segment(rng, a, b, max(8, int(density * length)), noise))
    xy = np.vstack(parts)
    return np.hstack([xy, np.zeros((xy.shape[0], 1))])


@pytest.fixture
def room_scan() -> np.ndarray:
    """Seeded synthetic room scan (N, 3)."""
    return make_room_scan(seed=7)


@pytest.fixture
def numpy_seed():
    """Set numpy random seed for reproducible tests."""
    np.random.seed(42)
    yield


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeAligner:
    """Aligner returning scripted results in order, recording every call."""

    def __init__(self, *results: RegistrationResult):
        self._results = list(results)
        self.calls = []

    def align(self, source, target, guess=None) -> RegistrationResult:
        self.calls.append(np.array(guess, dtype=float) if guess is not None else None)
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


class FakeScorer:
    """Verification scorer keyed on the x translation of the candidate cloud's first point."""

    def __init__(self, scores_by_x: Dict[float, float], default: float = 0.0):
        self.scores_by_x = scores_by_x
        self.default = default

    def score(self, cloud) -> float:
        x = round(float(np.asarray(cloud)[0, 0]), 6)
        return self.scores_by_x.get(x, self.default)


def converged_result(x: float, iterations: int = 1) -> RegistrationResult:
    """Converged result translating by (x, 0)."""
    return RegistrationResult(
        final_transform=pose_to_matrix(np.array([x, 0.0, 0.0])),
        converged=True,
        transformation_probability=0.5,
        iteration_count=iterations,
        status=RegistrationStatus.CONVERGED,
    )


def failed_result() -> RegistrationResult:
    return RegistrationResult.failure(RegistrationStatus.LAYER_FAILURE)
