"""
ndt_reg2d constants only.

=============================================================================
CONVENTION QUICK REFERENCE
=============================================================================

POSES:
  Internal 3D: [x, y, theta] (theta in radians, canonical (-pi, pi])
  Matrix form: 4x4 homogeneous, Z rotation by theta, translation (x, y, 0)

POINT CLOUDS:
  float64 arrays of shape (N, 3); (N, 2) input is padded with z = 0

CELL SIZES:
  Ordered coarse -> fine (strictly decreasing) for one multi-resolution run.
  The default schedule doubles the base size per layer: 2.0, 1.0, 0.5, 0.25
=============================================================================
"""

# =============================================================================
# NDT optimizer defaults
# =============================================================================

NDT_OUTLIER_RATIO_DEFAULT = 0.55
NDT_BASE_CELL_SIZE_DEFAULT = 0.25  # finest layer cell size (m)
NDT_LAYER_COUNT_DEFAULT = 4
NDT_STEP_SIZE_DEFAULT = 0.1  # max line-search step length
NDT_TRANSFORMATION_EPSILON_DEFAULT = 0.1  # step length convergence threshold
NDT_MAX_ITERATIONS_DEFAULT = 35  # Newton iterations per layer

# Fixed neighbor count for target cell lookup (2 hops in the k-d tree)
NDT_NEIGHBOR_COUNT = 2

# Score evaluator fork-join pool size
NDT_NUM_WORKERS_DEFAULT = 2

# Gaussian fitting constant c1 = 10 (1 - outlier_ratio), eq. 6.8 [Magnusson 2009]
NDT_GAUSS_C1_SCALE = 10.0

# =============================================================================
# More-Thuente line search
# =============================================================================

LINE_SEARCH_MU = 1.0e-4  # sufficient decrease constant, eq. 1.1
LINE_SEARCH_NU = 0.9  # curvature condition constant, eq. 1.2
LINE_SEARCH_MAX_TRIALS = 10
# Safeguard fraction used in trial value case 3
LINE_SEARCH_CASE3_DELTA = 0.66

# =============================================================================
# Distribution grid (voxel grid covariance)
# =============================================================================

GRID_MIN_POINTS_PER_CELL = 6
GRID_MIN_COVAR_EIGVALUE_MULT = 0.01

# Determinant threshold for an invertible covariance sum (Eigen dummy_precision)
COV_SUM_DET_EPSILON = 1.0e-12

# =============================================================================
# Robust orchestrator policy
# =============================================================================
# Tunable policy thresholds, not derived quantities.

ROBUST_ACCEPT_THRESHOLD = 0.7  # primary result accepted without fallback
ROBUST_REFINED_THRESHOLD = 0.4  # fallback result accepted
ROBUST_FIRST_ATTEMPT_THRESHOLD = 0.6  # primary result rescued when fallback scores low

# Robust variant schedule and budget
ROBUST_CELL_SIZES = (2.0, 1.0, 0.5, 0.25)
ROBUST_MAX_ITERATIONS = 10

# Verification ("proof") grid
PROOF_CELL_SIZE_DEFAULT = 0.25
PROOF_OCCUPANCY_THRESHOLD_DEFAULT = 0.5

# =============================================================================
# Likelihood lookup table / correlative coarse aligner
# =============================================================================

LOOKUP_MARGIN_CELLS = 5  # table padding around the target bounds

CORR_CELL_SIZE_DEFAULT = 0.1
CORR_LINEAR_WINDOW_DEFAULT = 1.0  # +- meters around the guess
CORR_ANGULAR_WINDOW_DEFAULT = 0.5  # +- radians around the guess
CORR_ANGULAR_STEP_DEFAULT = 0.02  # radians
CORR_MIN_SCORE_DEFAULT = 0.4  # mean likelihood required to report convergence

# =============================================================================
# Planar ICP
# =============================================================================

ICP_MAX_ITER_DEFAULT = 30
ICP_TOLERANCE_DEFAULT = 1.0e-6
ICP_MAX_CORRESPONDENCE_DIST_DEFAULT = 0.5
ICP_MIN_CORRESPONDENCES = 3  # SE(2) needs at least 2; 3 for a stable SVD
