"""Constants for schedule optimization and conflict resolution."""

# Alternative slots and candidate domains are scanned in 15-minute steps
SLOT_STEP_MINUTES = 15

# Number of alternative slots proposed per blocking conflict
DEFAULT_MAX_ALTERNATIVES = 3

# Days before/after the requested date searched for alternatives
DEFAULT_ALTERNATIVE_SEARCH_DAYS = 1

# Upper bound of candidate placements kept per session
MAX_CANDIDATES_PER_SESSION = 400

DEFAULT_MAX_SESSIONS_PER_DAY = 8
DEFAULT_BREAK_DURATION_MINUTES = 15

# Standard working day used for utilization metrics (8 hours)
WORKDAY_MINUTES = 480

# Genetic algorithm defaults
GA_POPULATION_SIZE = 50
GA_GENERATIONS = 100
GA_MUTATION_RATE = 0.1
GA_CROSSOVER_RATE = 0.8
GA_ELITE_PERCENTAGE = 0.2
GA_CONVERGENCE_THRESHOLD = 0.001
GA_STAGNATION_GENERATIONS = 10
GA_TOURNAMENT_SIZE = 3

# Simulated annealing defaults
SA_INITIAL_TEMPERATURE = 1000.0
SA_COOLING_RATE = 0.95
SA_MIN_TEMPERATURE = 1.0
SA_ITERATIONS_PER_TEMPERATURE = 100
SA_MAX_ITERATIONS = 10000

# Energy differences are scaled so temperatures in the hundreds are meaningful
SA_ENERGY_SCALE = 1000.0

# Constraint satisfaction defaults
CSP_MAX_BACKTRACKS = 10000
CSP_CP_SAT_TIME_LIMIT = 10.0

# Hybrid defaults
HYBRID_TIME_BUDGET_SECONDS = 2.0
HYBRID_NEIGHBOR_SEARCH_PASSES = 3

# Fitness penalty per conflicted or unassigned session (relative to n sessions)
CONFLICT_PENALTY = 1.0
UNASSIGNED_PENALTY = 0.5

# Bulk rescheduling
BULK_MAX_SESSIONS = 1000
EMERGENCY_TIME_BUDGET_SECONDS = 5.0
EMERGENCY_DEFAULT_MAX_DAY_OFFSET = 3

# Freeze rules
FREEZE_MIN_REASON_LENGTH = 5
FREEZE_MAX_DAYS = 30

# date.weekday() values treated as weekend for business-day programs
WEEKEND_DAYS = (5, 6)

# Retry policy for external collaborators
RETRY_MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = (0.1, 0.2, 0.4)

# Objective weights must sum to one within this tolerance
WEIGHT_SUM_TOLERANCE = 1e-6
