"""Shared constants for the CodeSent scan client.

Wire-level names, polling defaults and archive settings used across modules
are defined here. Import from here rather than repeating literals.
"""

# ─── Remote API ──────────────────────────────────────────────────────────────

# Base URL of the CodeSent scan API. Overridable via config (api.base_url)
# or the CODESENT_BASE_URL environment variable.
DEFAULT_BASE_URL: str = "https://codesent.io/api/scan/v1"

# Per-request timeout applied to every HTTP call (seconds).
# The poll loop itself has no timeout unless polling.max_* is configured.
DEFAULT_REQUEST_TIMEOUT_S: float = 60.0

# Response body field names.
FIELD_PROXY_UUID: str = "proxy_uuid"
FIELD_TASK_UUID: str = "task_uuid"
FIELD_STATUS: str = "status"
FIELD_ONLINE_REPORT: str = "online_report"
FIELD_ERROR: str = "error"

# Fallback message when a failed response carries no usable `error` field.
UNKNOWN_ERROR_MESSAGE: str = "Unknown error"

# ─── Polling ─────────────────────────────────────────────────────────────────

# Delay between status polls (seconds).
DEFAULT_POLL_INTERVAL_S: float = 5.0

# Status values are compared lower-cased. Anything not listed here is "running".
STATUS_DONE: str = "done"
FAILED_STATUSES: frozenset[str] = frozenset({"failed", "error"})

# ─── Archive ─────────────────────────────────────────────────────────────────

# Multipart form field, filename and content type for the uploaded bundle.
ARCHIVE_FIELD_NAME: str = "file"
ARCHIVE_FILENAME: str = "proxy.zip"
ARCHIVE_CONTENT_TYPE: str = "application/zip"

# zlib level 9: smallest upload, archive sizes are small.
ARCHIVE_COMPRESS_LEVEL: int = 9

# Prefix for the temp file holding the archive between zip and upload.
ARCHIVE_TEMP_PREFIX: str = "codesent-"

# "file": temp file on disk, "memory": bytes buffer.
ARCHIVE_MODES: frozenset[str] = frozenset({"file", "memory"})

# ─── Local state ─────────────────────────────────────────────────────────────

# Environment variable read by EnvCredentialProvider.
ENV_API_KEY: str = "CODESENT_API_KEY"

# Default secret store file (FileCredentialProvider), created with mode 0600.
DEFAULT_CREDENTIALS_PATH: str = "~/.codesent/credentials"
CREDENTIALS_FILE_MODE: int = 0o600
