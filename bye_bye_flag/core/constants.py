"""Constants used throughout bye-bye-flag."""


# Config discovery
CONFIG_FILENAME = "bye-bye-flag-config.json"

# Worktree settings (override via worktrees.basePath)
DEFAULT_WORKTREE_BASE_PATH = "/tmp/bye-bye-flag-worktrees"
WORKSPACE_METADATA_FILENAME = ".bye-bye-flag-workspace.json"
WORKSPACE_CREATOR = "bye-bye-flag"

# Branch naming
BRANCH_PREFIX = "remove-flag/"
LEGACY_WORKSPACE_PREFIX = "remove-flag-"

# Orchestrator defaults
DEFAULT_CONCURRENCY = 3
DEFAULT_MAX_PRS = 10
DEFAULT_LOG_DIR = "./bye-bye-flag-logs"
CODE_SEARCH_BATCH_SIZE = 10
MAX_CONSECUTIVE_FAILURES = 3

# Agent settings
DEFAULT_AGENT_TYPE = "claude"
DEFAULT_AGENT_TIMEOUT_MINUTES = 60
DEFAULT_PROMPT_ARG = "-p"
DEFAULT_VERSION_ARGS = ["--version"]
MAX_NORMALIZE_SECONDS = 5 * 60
MAX_NORMALIZE_PROMPT_OUTPUT_LENGTH = 12_000
NORMALIZE_HEAD_CHARS = 4000
NORMALIZE_TAIL_CHARS = 8000
OUTPUT_PREVIEW_CHARS = 800

# Must be a valid UUID; namespace for generated session ids
SESSION_NAMESPACE = "f5d6289e-e44a-4f23-a24e-858af0371ed4"

# Review system
DECLINED_MARKER = "[DECLINED]"
PR_LIST_LIMIT = 1000
PR_JSON_FIELDS = "url,state,title,headRefName,createdAt"

# Setup command failures
SETUP_OUTPUT_CLIP_CHARS = 4000

# Process shutdown
SHUTDOWN_GRACE_SECONDS = 1.0
SIGNAL_EXIT_CODES = {
    "SIGINT": 130,
    "SIGTERM": 143,
}

NO_CODE_REFERENCES_REASON = "No code references found"

# PostHog fetcher
POSTHOG_DEFAULT_HOST = "https://app.posthog.com"
POSTHOG_API_KEY_ENV = "POSTHOG_API_KEY"
POSTHOG_DEFAULT_STALE_DAYS = 30
POSTHOG_REQUEST_TIMEOUT = 30
