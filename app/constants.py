"""Project-wide constants and mappings.

Task names of the recurring jobs, quota costs of upstream operations and
the markers that identify a quota-exhausted response.
"""

# Recurring job names (one JobStatus row each)
TASK_CONTENT_SYNC = "content_sync"
TASK_MISSING_DATA_REPAIR = "missing_data_repair"
TASK_PENDING_SUBMISSION_RETRY = "pending_submission_retry"

ALL_TASK_NAMES = [
    TASK_CONTENT_SYNC,
    TASK_MISSING_DATA_REPAIR,
    TASK_PENDING_SUBMISSION_RETRY,
]

# YouTube Data API v3 quota units per operation
# https://developers.google.com/youtube/v3/determine_quota_cost
QUOTA_OPERATION_COSTS: dict[str, int] = {
    "search": 100,
    "videos.list": 1,
    "channels.list": 1,
    "playlistItems.list": 1,
    "read": 1,
}
DEFAULT_OPERATION_COST = 1

# Error text fragments that mean the key is out of quota for the day
QUOTA_EXHAUSTED_MARKERS = ("quotaExceeded", "dailyLimitExceeded")

DEFAULT_QUOTA_LIMIT = 10000

# Usage thresholds (percent of quota_limit) that trigger alerts
QUOTA_WARNING_PERCENT = 80
QUOTA_CRITICAL_PERCENT = 100

# Items requested per subscription per sync cycle
FETCH_PAGE_SIZE = 30

# Credentials drawn per fetch before giving up on quota exhaustion
MAX_CREDENTIAL_DRAWS = 3

# Items per missing-duration repair batch / pending re-scan
MISSING_DATA_BATCH_SIZE = 50
PENDING_RESCAN_LIMIT = 50

# Fallback interval when a schedule expression is not understood
DEFAULT_SCHEDULE_INTERVAL_MINUTES = 15
