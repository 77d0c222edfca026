"""Constants for workspace-sync."""

# Configuration file at the workspace root
CONFIG_FILE = ".workspace-sync.yaml"

# Extra gitignore-style exclusions at the workspace root
IGNORE_FILE = ".workspaceignore"

# Directory names never listed, searched or watched
DEFAULT_EXCLUDE_DIRS = (
    "node_modules",
    ".git",
    "dist",
    "build",
    ".cache",
    "__pycache__",
    ".venv",
    ".pytest_cache",
    ".mypy_cache",
)

# Infix of the temp files behind atomic writes (".<name>.tmp-XXXX")
ATOMIC_TMP_INFIX = ".tmp-"

# Name reported for the tree root when the workspace basename is empty
ROOT_NODE_NAME = "project"

# Defaults for the network surface
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001
DEFAULT_FRONTEND_ORIGIN = "http://localhost:5173"

DEFAULT_DEBOUNCE_MS = 100
DEFAULT_SEARCH_MAX_RESULTS = 200
DEFAULT_SUBSCRIBER_BUFFER = 256
DEFAULT_GIT_TIMEOUT = 30.0

# Version
WORKSPACE_SYNC_VERSION = "0.1.0"
