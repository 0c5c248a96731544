"""Default configuration constants for sandboxmail."""

# HTTP settings (milliseconds)
DEFAULT_BASE_URL = "https://smtp.vaultsandbox.com"
DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_RETRY_DELAY_MS = 1_000
DEFAULT_MAX_RETRIES = 3

# Polling strategy settings (milliseconds)
DEFAULT_POLLING_INTERVAL_MS = 2_000
DEFAULT_POLLING_MAX_BACKOFF_MS = 30_000
DEFAULT_POLLING_BACKOFF_MULTIPLIER = 2.0
DEFAULT_POLLING_JITTER_FACTOR = 0.1

# SSE strategy settings (milliseconds)
DEFAULT_SSE_RECONNECT_INTERVAL_MS = 1_000
DEFAULT_SSE_MAX_RECONNECT_INTERVAL_MS = 30_000
DEFAULT_SSE_BACKOFF_MULTIPLIER = 2.0
DEFAULT_SSE_JITTER_FACTOR = 0.1

# Default retry status codes
DEFAULT_RETRY_STATUS_CODES = (408, 429, 500, 502, 503, 504)

# Subscriber channel capacity
FANOUT_CHANNEL_CAPACITY = 16

# Inbox TTL bounds (seconds)
MIN_TTL_SECONDS = 60

# Wait defaults (milliseconds)
DEFAULT_WAIT_TIMEOUT_MS = 30_000
