"""
Project-wide constants for screenplay coverage analysis
"""  # noqa: D200, D212, D415

# ==============================================================================
# Model Calls
# ==============================================================================

# Retry and timeout settings
MAX_RETRIES = 2
RETRY_BASE_DELAY = 1.0  # seconds, doubled per attempt
CALL_TIMEOUT = 120.0  # seconds
DEFAULT_MAX_OUTPUT_TOKENS = 1500

# Temperatures
CHEAP_TIER_TEMPERATURE = 0.2
DEFAULT_TEMPERATURE = 0.3
PROSE_TEMPERATURE = 0.6

# ==============================================================================
# Escalation Thresholds
# ==============================================================================

ESCALATE_TO_BASE = 0.65  # heuristic confidence split for notes
ESCALATE_TO_THINKING = 0.50  # mean/individual model confidence
BEAT_DISAGREEMENT_PAGES = 6  # INCITING..MIDPOINT distance below this is ambiguous
MIN_EVIDENCE_NOTES = 2  # notes per rubric category

# ==============================================================================
# Pipeline
# ==============================================================================

DEFAULT_PAGE_COUNT = 110
SUMMARY_ACTION_CHARS = 200
RECOMMEND_THRESHOLD = 8.0
CONSIDER_THRESHOLD = 6.0
DEFAULT_BATCH_SIZE = 20
WEBHOOK_TIMEOUT = 10.0  # seconds
