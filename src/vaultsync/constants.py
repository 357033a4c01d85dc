"""
This module provides constants used throughout vaultsync and its CLI. It should be
kept free of memory heavy imports.
"""

# system imports
import platform


# app
APP_NAME = "vaultsync"
DEFAULT_CONFIG_NAME = "vaultsync"

# index
INDEX_VERSION = "1.0.0"
HISTORY_SIZE = 5
CONFLICT_ERROR_MSG = "Conflict detected: both local and remote modified"

# sync
TRACKED_EXTENSIONS = frozenset(
    [".md", ".txt", ".pdf", ".png", ".jpg", ".jpeg", ".gif", ".svg"]
)

BINARY_EXTENSIONS = frozenset(
    ["pdf", "png", "jpg", "jpeg", "gif", "svg", "webp", "mp4", "mp3", "wav"]
)

MIME_TYPES = {
    "md": "text/markdown",
    "txt": "text/plain",
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

# conflict policy
SIZE_DIFF_THRESHOLD = 1024  # bytes
CONCURRENT_EDIT_WINDOW = 60 * 1000  # ms
MERGE_LOCAL_MARKER = "<<<<<<< LOCAL VERSION"
MERGE_SEPARATOR = "======="
MERGE_REMOTE_MARKER = ">>>>>>> REMOTE VERSION"

# timers, all in seconds
REMOTE_CHECK_INTERVAL = 2 * 60
RECONCILE_INTERVAL = 5 * 60
RECONCILE_INITIAL_DELAY = 5
INITIAL_SYNC_DELAY = 2
DEBOUNCE_DELAY = 2.0
FULL_SYNC_MAX_AGE = 24 * 60 * 60
EVENT_IGNORE_TIMEOUT = 2.0

# remote
DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
CONTAINER_PREFIX = "vault_"
LIST_PAGE_SIZE = 1000

# state messages
IDLE = "Up to date"
SYNCING = "Syncing..."
RECONCILING = "Reconciling index..."
STOPPED = "Stopped"
CONNECTED = "Connected"
DISCONNECTED = "Connection lost"
NOT_LINKED = "Not linked"
SYNC_ERROR = "Sync error"

# conflict resolution defaults accepted in the config
CONFLICT_POLICIES = ("manual", "local", "remote", "auto")

# platform detection
IS_MACOS = platform.system() == "Darwin"
IS_LINUX = platform.system() == "Linux"
