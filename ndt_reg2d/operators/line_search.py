"""
More-Thuente line search along a Newton direction.

The optimizer maximizes the NDT score, so the line search minimizes
phi(a) = -score(x + a d). A step a is accepted once it satisfies

    sufficient decrease   psi(a) = phi(a) - phi(0) - mu a phi'(0) <= 0   (eq. 1.1)
    curvature             phi'(a) <= -nu phi'(0)                          (eq. 1.2)

Until the bracketing interval I is known to be closed, trial values and
interval updates work on the auxiliary function psi (eq. 2.1); afterwards
they switch to phi itself (Modified Updating Algorithm). Trial values come
from cubic/quadratic interpolation of the interval end points with four
cases depending on the slopes [More, Thuente 1994], formulas from
[Sun, Yuan 2006].

Only gradients are needed at trial points, so the evaluation callback is
expected to skip the Hessian.

Termination:
    - both conditions hold
    - the interval collapsed
    - the trial budget is exhausted (the last trial step is returned)

Every trial is clamped to [step_min, step_max]. The caller's pose is never
modified; the (possibly reversed) direction is returned with the step.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

import numpy as np

from ndt_reg2d.common import constants
from ndt_reg2d.operators.ndt_score import ScoreAndDerivatives


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class LineSearchResult:
    """Accepted step along step_dir."""
    step_length: float
    step_dir: np.ndarray  # unit direction, reversed if the input was an ascent direction
    trials: int           # interpolation trials after the initial evaluation
    satisfied: bool       # sufficient decrease and curvature both held


@dataclass
class SearchInterval:
    """End points of the bracketing interval I with values and slopes."""
    a_l: float
    f_l: float
    g_l: float
    a_u: float
    f_u: float
    g_u: float


# =============================================================================
# Auxiliary function
# =============================================================================


def auxiliary_psi(a: float, f_a: float, f_0: float, g_0: float, mu: float = constants.LINE_SEARCH_MU) -> float:
    """psi(a), eq. 1.6 [More, Thuente 1994]."""
    return f_a - f_0 - mu * g_0 * a


def auxiliary_dpsi(g_a: float, g_0: float, mu: float = constants.LINE_SEARCH_MU) -> float:
    """psi'(a), derivative of eq. 1.6 [More, Thuente 1994]."""
    return g_a - mu * g_0


# =============================================================================
# Interval update and trial value selection
# =============================================================================


def update_interval(interval: SearchInterval, a_t: float, f_t: float, g_t: float) -> bool:
    """
    Updating Algorithm (cases U1-U3) / Modified Updating Algorithm (cases a-c).

    Mutates interval in place.

    Returns:
        True if the interval converged (no case applied)
    """
    # Case U1 / a
    if f_t > interval.f_l:
        interval.a_u, interval.f_u, interval.g_u = a_t, f_t, g_t
        return False
    # Case U2 / b
    if g_t * (interval.a_l - a_t) > 0:
        interval.a_l, interval.f_l, interval.g_l = a_t, f_t, g_t
        return False
    # Case U3 / c
    if g_t * (interval.a_l - a_t) < 0:
        interval.a_u, interval.f_u, interval.g_u = interval.a_l, interval.f_l, interval.g_l
        interval.a_l, interval.f_l, interval.g_l = a_t, f_t, g_t
        return False
    return True


def _cubic_minimizer(a_0, f_0, g_0, a_t, f_t, g_t):
    # Minimizer of the cubic interpolating f_0, f_t, g_0, g_t
    # Equations 2.4.52 and 2.4.56 [Sun, Yuan 2006]
    z = 3.0 * (f_t - f_0) / (a_t - a_0) - g_t - g_0
    w = np.sqrt(z * z - g_t * g_0)
    return a_0 + (a_t - a_0) * (w - g_0 - z) / (g_t - g_0 + 2.0 * w)


def trial_value_selection(
    interval: SearchInterval,
    a_t: float,
    f_t: float,
    g_t: float,
) -> float:
    """
    Trial Value Selection [More, Thuente 1994].

    Arithmetic runs in numpy float64 so degenerate configurations
    (coincident points, negative discriminant) produce inf/nan instead of
    raising; the caller replaces a non-finite trial.
    """
    a_l, f_l, g_l = np.float64(interval.a_l), np.float64(interval.f_l), np.float64(interval.g_l)
    a_u, f_u, g_u = np.float64(interval.a_u), np.float64(interval.f_u), np.float64(interval.g_u)
    a_t, f_t, g_t = np.float64(a_t), np.float64(f_t), np.float64(g_t)

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        # Case 1: higher function value
        if f_t > f_l:
            a_c = _cubic_minimizer(a_l, f_l, g_l, a_t, f_t, g_t)
            # Quadratic interpolating f_l, f_t and g_l, eq. 2.4.2 [Sun, Yuan 2006]
            a_q = a_l - 0.5 * (a_l - a_t) * g_l / (g_l - (f_l - f_t) / (a_l - a_t))
            if abs(a_c - a_l) < abs(a_q - a_l):
                return float(a_c)
            return float(0.5 * (a_q + a_c))

        # Case 2: derivatives of opposite sign
        if g_t * g_l < 0:
            a_c = _cubic_minimizer(a_l, f_l, g_l, a_t, f_t, g_t)
            # Quadratic interpolating g_l and g_t, eq. 2.4.5 [Sun, Yuan 2006]
            a_s = a_l - (a_l - a_t) / (g_l - g_t) * g_l
            if abs(a_c - a_t) >= abs(a_s - a_t):
                return float(a_c)
            return float(a_s)

        # Case 3: derivative magnitude decreases
        if abs(g_t) <= abs(g_l):
            a_c = _cubic_minimizer(a_l, f_l, g_l, a_t, f_t, g_t)
            a_s = a_l - (a_l - a_t) / (g_l - g_t) * g_l
            a_t_next = a_c if abs(a_c - a_t) < abs(a_s - a_t) else a_s
            bound = a_t + constants.LINE_SEARCH_CASE3_DELTA * (a_u - a_t)
            if a_t > a_l:
                return float(min(bound, a_t_next))
            return float(max(bound, a_t_next))

        # Case 4: derivative magnitude does not decrease
        return float(_cubic_minimizer(a_u, f_u, g_u, a_t, f_t, g_t))


# =============================================================================
# Step length
# =============================================================================


def _clamp(a: float, step_min: float, step_max: float) -> float:
    return max(min(a, step_max), step_min)


def compute_step_length(
    x: np.ndarray,
    step_dir: np.ndarray,
    step_init: float,
    step_max: float,
    step_min: float,
    score: ScoreAndDerivatives,
    evaluate: Callable[[np.ndarray], ScoreAndDerivatives],
    mu: float = constants.LINE_SEARCH_MU,
    nu: float = constants.LINE_SEARCH_NU,
    max_trials: int = constants.LINE_SEARCH_MAX_TRIALS,
) -> LineSearchResult:
    """
    Step length with guaranteed sufficient decrease [More, Thuente 1994].

    Args:
        x: Current pose (not modified)
        step_dir: Unit search direction
        step_init: Initial trial step (Newton step norm)
        step_max: Maximum step length
        step_min: Minimum step length
        score: Score and derivatives at x
        evaluate: pose -> ScoreAndDerivatives (gradient only is consulted)
        mu: Sufficient decrease constant
        nu: Curvature condition constant
        max_trials: Interpolation trial budget

    Returns:
        LineSearchResult; step_length is 0 when no progress is possible
    """
    x = np.asarray(x, dtype=float)
    step_dir = np.array(step_dir, dtype=float)

    # phi(0) and phi'(0), eq. 1.3
    phi_0 = -score.value
    d_phi_0 = -float(score.gradient @ step_dir)

    if d_phi_0 >= 0:
        # Not a descent direction
        if d_phi_0 == 0:
            return LineSearchResult(step_length=0.0, step_dir=step_dir, trials=0, satisfied=False)
        d_phi_0 *= -1
        step_dir *= -1

    # Initial end points of interval I; psi is used until I is closed, eq. 2.1
    interval = SearchInterval(
        a_l=0.0,
        f_l=auxiliary_psi(0.0, phi_0, phi_0, d_phi_0, mu),
        g_l=auxiliary_dpsi(d_phi_0, d_phi_0, mu),
        a_u=0.0,
        f_u=auxiliary_psi(0.0, phi_0, phi_0, d_phi_0, mu),
        g_u=auxiliary_dpsi(d_phi_0, d_phi_0, mu),
    )

    # step_min == step_max skips the search
    interval_converged = step_max <= step_min
    open_interval = True

    a_t = _clamp(step_init, step_min, step_max)
    score_vals = evaluate(x + step_dir * a_t)
    phi_t = -score_vals.value
    d_phi_t = -float(score_vals.gradient @ step_dir)
    psi_t = auxiliary_psi(a_t, phi_t, phi_0, d_phi_0, mu)
    d_psi_t = auxiliary_dpsi(d_phi_t, d_phi_0, mu)

    step_iterations = 0
    while (
        not interval_converged
        and step_iterations < max_trials
        and not (psi_t <= 0 and d_phi_t <= -nu * d_phi_0)
    ):
        if open_interval:
            a_t = trial_value_selection(interval, a_t, psi_t, d_psi_t)
        else:
            a_t = trial_value_selection(interval, a_t, phi_t, d_phi_t)
        if not math.isfinite(a_t):
            a_t = 0.5 * (interval.a_l + interval.a_u)
        a_t = _clamp(a_t, step_min, step_max)

        score_vals = evaluate(x + step_dir * a_t)
        phi_t = -score_vals.value
        d_phi_t = -float(score_vals.gradient @ step_dir)
        psi_t = auxiliary_psi(a_t, phi_t, phi_0, d_phi_0, mu)
        d_psi_t = auxiliary_dpsi(d_phi_t, d_phi_0, mu)

        # Check if I is now a closed interval
        if open_interval and (psi_t <= 0 and d_psi_t >= 0):
            open_interval = False
            # Convert end points from psi to phi
            interval.f_l = interval.f_l + phi_0 + mu * d_phi_0 * interval.a_l
            interval.g_l = interval.g_l + mu * d_phi_0
            interval.f_u = interval.f_u + phi_0 + mu * d_phi_0 * interval.a_u
            interval.g_u = interval.g_u + mu * d_phi_0

        if open_interval:
            interval_converged = update_interval(interval, a_t, psi_t, d_psi_t)
        else:
            interval_converged = update_interval(interval, a_t, phi_t, d_phi_t)

        step_iterations += 1

    satisfied = bool(psi_t <= 0 and d_phi_t <= -nu * d_phi_0)
    return LineSearchResult(
        step_length=float(a_t),
        step_dir=step_dir,
        trials=step_iterations,
        satisfied=satisfied,
    )
