"""Project-wide named constants.

Constants defined here replace inline magic values across the codebase.
"""

# Intake endpoint. The override path is applied to every request made by the
# upload command regardless of the path the caller passes.
DEFAULT_BASE_URL: str = "https://pisco.kloudfuse.com"
DEFAULT_OVERRIDE_URL: str = "api/v2/srcmap"

API_KEY_HEADER: str = "KF-API-KEY"
APP_KEY_HEADER: str = "KF-APPLICATION-KEY"
API_KEY_ENV_VAR: str = "KF_API_KEY"

# Status codes for which a retry cannot succeed: malformed request body and
# payload too large. The backend enforces the size limit, the client does not.
DEFAULT_TERMINAL_STATUS_CODES: frozenset[int] = frozenset({400, 413})

# Five retries after the first attempt.
DEFAULT_MAX_ATTEMPTS: int = 6
DEFAULT_MAX_CONCURRENCY: int = 20

# Read size for file parts before compression. Bounds per-stream memory.
STREAM_CHUNK_SIZE: int = 64 * 1024

# Bump when the JSON layout of the repository part changes.
REPOSITORY_PAYLOAD_VERSION: int = 1
