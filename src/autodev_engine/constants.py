STATE_DIR_NAME = ".autodev"
TASKS_DIR_NAME = "tasks"
ARCHIVE_DIR_NAME = "archive"
INDEX_FILE = "index.json"
STATE_FILE = "state.json"
CONFIG_FILE = "config.yaml"
PROGRESS_LOG_FILE = "progress.log"
CIRCUIT_BREAKER_LOG_FILE = "circuit-breaker.log"
TASK_FILE_SUFFIX = ".yaml"

INDEX_VERSION = "1.0.0"

# Retry defaults (seconds)
DEFAULT_RETRY_MAX_ATTEMPTS = 3
DEFAULT_RETRY_INITIAL_DELAY = 0.1
DEFAULT_RETRY_MAX_DELAY = 5.0
DEFAULT_RETRY_BACKOFF_MULTIPLIER = 2.0
# Busy, not-yet-available, would-block, timed-out
DEFAULT_RETRYABLE_ERRORS = ("EBUSY", "ENOENT", "EAGAIN", "ETIMEDOUT")

DEFAULT_CIRCUIT_FAILURE_THRESHOLD = 5
DEFAULT_CIRCUIT_TIMEOUT_SECONDS = 60.0

DEFAULT_TASK_PRIORITY = 1
DEFAULT_TASK_ESTIMATE_MINUTES = 30
DEFAULT_LIST_LIMIT = 100
