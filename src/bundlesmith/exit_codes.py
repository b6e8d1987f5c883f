"""Exit codes for bundlesmith CLI commands."""

# Success
SUCCESS = 0

# Errors
GENERAL_ERROR = 1
INVALID_ARGS = 2
INVALID_CONFIG = 3
AUTH_ERROR = 4
TRANSPORT_ERROR = 5
INTEGRITY_ERROR = 6
GIT_ERROR = 7
CANCELLED = 130
