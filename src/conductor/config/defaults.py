"""Default configuration values."""

# Stuck detector windows
SAME_ACTION_OBS_THRESHOLD = 4
SAME_ACTION_ERROR_THRESHOLD = 3
MONOLOGUE_THRESHOLD = 3
ALTERNATING_WINDOW = 12
COMPACTION_LOOP_THRESHOLD = 10

# Trailing tool-call history kept per execution
DEFAULT_HISTORY_LIMIT = 256

# Characters kept from signature values and assistant messages
SIGNATURE_VALUE_LIMIT = 100
MESSAGE_LIMIT = 500

# Input keys that identify a tool call independent of its payload
SIGNATURE_KEYS = (
    "filePath",
    "file_path",
    "path",
    "fileId",
    "old_text",
    "query",
    "pattern",
    "scope",
)

# Coordinator policy
DEFAULT_MAX_WORKER_RETRIES = 2
DEFAULT_RETRY_DELAY_MS = 500
DEFAULT_APPROVAL_CONFIDENCE = 0.7
DEFAULT_TOOL_CALL_TIMEOUT_S = 30.0
DEFAULT_EXECUTION_TIMEOUT_S = 120.0
DEFAULT_MAX_STUCK_ESCALATIONS = 1

# Block-anchor similarity thresholds
SINGLE_CANDIDATE_SIMILARITY = 0.6
MULTI_CANDIDATE_SIMILARITY = 0.5

# Context-aware interior match ratio
CONTEXT_AWARE_MATCH_RATIO = 0.5
