"""Global constants for omni-sidecar."""

TOOL_NAME = "omni-cache"

# Sidecar defaults
DEFAULT_HOST = "localhost:12321"
DEFAULT_VERSION = "latest"
SIDECAR_SUBCOMMAND = "sidecar"
LOG_FILE_NAME = "omni-cache.log"
STATE_FILE_NAME = "omni-cache-sidecar-state.json"

# Unix socket the sidecar binds (never created by us)
SOCKET_DIR_NAME = ".cirruslabs"
SOCKET_FILE_NAME = "omni-cache.sock"

# Environment keys understood by the sidecar binary
ENV_BUCKET = "OMNI_CACHE_BUCKET"
ENV_HOST = "OMNI_CACHE_HOST"
ENV_PREFIX = "OMNI_CACHE_PREFIX"
ENV_S3_ENDPOINT = "OMNI_CACHE_S3_ENDPOINT"

# Exported for descendant steps
ENV_ADDRESS = "OMNI_CACHE_ADDRESS"

# State keys shared between the start and stop phases
STATE_PID = "omni-cache-pid"
STATE_HOST = "omni-cache-host"
STATE_LOG = "omni-cache-log"
STATE_CREATE_TIME = "omni-cache-create-time"

# Published outputs
OUTPUT_VERSION = "version"
OUTPUT_ADDRESS = "cache-address"
OUTPUT_ENDPOINT = "cache-endpoint"
OUTPUT_SOCKET = "cache-socket"

# HTTP endpoints served by the sidecar
HEALTH_PATH = "/stats"
METRICS_PATH = "/metrics/cache"
STATS_ACCEPT_HEADER = "application/vnd.github-actions"
HTTP_TIMEOUT = 5.0

# Log line announcing the actual bind address
STARTUP_MARKER = "omni-cache started"

# Polling defaults
DISCOVERY_ATTEMPTS = 20
DISCOVERY_INTERVAL = 0.25
HEALTH_ATTEMPTS = 10
HEALTH_INTERVAL = 1.0
SHUTDOWN_TIMEOUT = 10.0
SHUTDOWN_POLL_INTERVAL = 0.5

# Release downloads
RELEASES_URL = "https://github.com/cirruslabs/omni-cache/releases"
