"""Default values shared across agentdag."""

DEFAULT_MAX_CONCURRENT = 3
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_LARGE_WORKFLOW_THRESHOLD = 50

CONFIG_ENV_VAR = "AGENTDAG_CONFIG"
DATABASE_URL_ENV_VAR = "AGENTDAG_DATABASE_URL"
DEFAULT_CONFIG_PATH = "agentdag.yaml"
DEFAULT_STATE_DIR = ".workflow-states"

ESTIMATED_TOKENS_PER_STEP = 5000
ESTIMATED_STEP_DURATION_MS = 120_000
ESTIMATED_COST_PER_TOKEN = 0.0001
