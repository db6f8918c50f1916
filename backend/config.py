"""Application-wide configuration constants."""

import os
import platform
from pathlib import Path

# --- Identity ---
APP_NAME = "LocalSend Lite"
PROTOCOL_VERSION = "2.0"
DEVICE_ALIAS = os.environ.get("LOCALSEND_ALIAS", "")  # empty -> random alias
DEVICE_MODEL = platform.system() or "Python"
DEVICE_TYPE = "headless"

# --- Networking ---
API_HOST = "0.0.0.0"
LOCALSEND_PORT = 53317
API_PREFIX = "/api/localsend/v2"
DEFAULT_SCHEME = "https"

PREPARE_TIMEOUT = 60  # seconds
UPLOAD_TIMEOUT = 30 * 60  # seconds

# --- Transfer ---
CHUNK_SIZE = 2 * 1024 * 1024  # 2 MB
CONDUIT_DEPTH = 4  # chunks buffered between file reader and request body
PROGRESS_INTERVAL = 0.2  # seconds between progress events
TOKEN_BYTES = 32

# Previews are only honoured for these names; content goes to the clipboard
TEXT_PREVIEW_EXTENSIONS = (".txt",)
PREVIEW_MAX_BYTES = 64 * 1024

# --- Storage ---
CONFIG_DIR = Path(
    os.environ.get("LOCALSEND_CONFIG_DIR", Path.home() / ".localsend-lite")
)
DEFAULT_SAVE_DIR = os.environ.get("LOCALSEND_SAVE_DIR", "uploads")
