"""Default values shared across flowgate."""

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MODEL_PROVIDER = "openai"

SUBWORKFLOW_POLL_INTERVAL = 0.2
SUBWORKFLOW_TIMEOUT = 300.0

DEFAULT_AGENT_MAX_ITERATIONS = 10
DEFAULT_CONFIDENCE_THRESHOLD = 0.5

# Judges recommend "flag" between this fraction of the threshold and the threshold.
JUDGE_FLAG_RATIO = 0.6

INTERRUPTED_RUN_ERROR = "Run was interrupted (process restart)"
