"""Application-wide configuration constants."""

import platform
from pathlib import Path

# --- Identity ---
APP_NAME = "distrib"
VERSION = "0.1.0"

DEVICE_NAME = platform.node() or "unknown"  # default to hostname, --name overrides
PLATFORM = platform.system().lower()  # "windows" | "darwin" | "linux"

# --- Networking ---
API_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 9848
DEFAULT_DISCOVERY_PORT = 9847  # UDP
DEFAULT_DISCOVERY_TIMEOUT = 2.0  # seconds
PUSH_TIMEOUT = 30  # seconds per peer upload
NOTIFY_TIMEOUT = 15  # seconds per desktop notification

# --- Live updates ---
SUBSCRIBER_QUEUE_SIZE = 10  # pending frames per viewer before dropping
SSE_KEEPALIVE_INTERVAL = 15.0  # seconds

# --- Storage ---
DEFAULT_DATA_DIR = Path.home() / ".distrib"
MAX_UPLOAD_BYTES = 50 * 1024 * 1024  # 50 MB
