VERBOSE = 3

# rooted tree
MIN_TIPS = 3
ROOT_ANCHOR = "root"

# penalized likelihood
SMOOTHING = 1.0
MODEL = "relaxed"
MODELS = ("strict", "relaxed", "uncorrelated")

# optimizer control
TOL = 1e-8                  # function tolerance of the optimizer
ITER_MAX = 10000            # maximal number of optimizer iterations
MAX_INIT_TRIES = 1000       # attempts to find starting ages consistent with the calibrations
MIN_RATE = 1e-8             # lower bound of relative rates
MIN_DURATION = 1e-8         # minimal branch duration relative to the root age
MAX_ROOT_FACTOR = 10        # upper bound of an unconstrained root age relative to its starting value
SUPERTINY_NUMBER = 1e-24
SOFT_BOUND_WEIGHT = 100.0   # weight of the quadratic penalty for violated soft bounds
BOUND_TOL = 1e-6            # relative tolerance when checking hard bounds after optimization
MAX_RESTARTS = 5           # restarts from new starting ages after a numerical breakdown of the optimizer
ULTRAMETRIC_TOL = 1e-6

# output
BRANCH_LENGTH_FORMAT = "%1.6f"

# plotting
MINOR_TICKS = 5
MAJOR_TICKS = 10
FIGSIZE = (8, 6)
TIME_LABEL = "Time (Million Years Ago)"
MAX_TIP_LABELS = 60

SUCCESS = "success"
