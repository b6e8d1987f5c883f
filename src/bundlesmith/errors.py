"""Error taxonomy and formatting utilities for bundlesmith.

Every failure of a resolution is raised as a subclass of ResolutionError and
carries enough context (URL, status, pattern, path) to render a single-line
message. Credentials never appear in these messages.
"""

import subprocess

import yaml
from pydantic import ValidationError

from bundlesmith import cli_logger, exit_codes


class ResolutionError(Exception):
    """Base class for every error a resolution can end with."""


class ConfigurationError(ResolutionError):
    """Raised when the caller-supplied configuration is unusable."""


class InvalidCredentialScopeError(ConfigurationError):
    """Raised when the credential scope pattern fails to compile."""

    def __init__(self, pattern: str, error: Exception) -> None:
        """Initialize with the malformed pattern and the underlying syntax error."""
        self.pattern = pattern
        self.error = error
        super().__init__(f"error parsing credential scope pattern `{pattern}`: {error}")


class CredentialMismatchError(ConfigurationError):
    """Raised when a credential variant is not supported by the source transport."""

    def __init__(self, credential_kind: str, transport: str, location: str) -> None:
        """Initialize with the credential kind, transport and source location."""
        self.credential_kind = credential_kind
        self.transport = transport
        self.location = location
        super().__init__(
            f"{credential_kind} credential cannot be used with {transport} source {location}"
        )


class InvalidReleaseDefinitionError(ConfigurationError):
    """Raised when the release definition file cannot be parsed."""


class AuthenticationRequiredError(ResolutionError):
    """Raised when a source demands credentials and none were attached."""

    def __init__(self, location: str) -> None:
        """Initialize with the location that rejected the anonymous request."""
        self.location = location
        super().__init__(f"authentication required for {location}")


class AuthenticationFailedError(ResolutionError):
    """Raised when a source rejects the credentials that were attached."""

    def __init__(self, location: str) -> None:
        """Initialize with the location that rejected the credentials."""
        self.location = location
        super().__init__(f"authentication failed for {location}: credentials were rejected")


class SourceUnreachableError(ResolutionError):
    """Raised on network, DNS or connection failures."""

    def __init__(self, location: str, reason: str) -> None:
        """Initialize with the location and a short description of the failure."""
        self.location = location
        self.reason = reason
        super().__init__(f"source {location} is unreachable: {reason}")


class TransportTimeoutError(SourceUnreachableError):
    """Raised when a network operation exceeds its timeout."""

    def __init__(self, location: str, timeout: float) -> None:
        """Initialize with the location and the timeout that was exceeded."""
        self.timeout = timeout
        super().__init__(location, f"timed out after {timeout:g}s")


class UpstreamTransportError(ResolutionError):
    """Raised when a web-transport fetch gets a non-success response.

    The message keeps the effective URL, the status code and the response
    body verbatim so operators can tell a 401 from a 404 at a glance.
    """

    def __init__(self, url: str, status: int, body: str, action: str = "read helm repo from") -> None:
        """Initialize with the effective URL, status code and raw response body."""
        self.url = url
        self.status = status
        self.body = body
        super().__init__(f"failed to {action} {url}, error code: {status}, response body: {body}")


class InvalidRepositoryIndexError(ResolutionError):
    """Raised when a package repository index document is malformed."""


class ChartNotFoundError(ResolutionError):
    """Raised when a chart or chart version is missing from the index."""


class InvalidArchiveError(ResolutionError):
    """Raised when a downloaded chart archive cannot be read."""


class GitSourceError(ResolutionError):
    """Raised when a git operation fails for a reason other than auth or network."""


class SourceNotFoundError(ResolutionError):
    """Raised when a local source or sub-path does not exist."""


class PathTraversalError(ResolutionError):
    """Raised when a collected path escapes its declared root."""

    def __init__(self, path: str, root: str) -> None:
        """Initialize with the offending path and the root it escapes."""
        self.path = path
        self.root = root
        super().__init__(f"path '{path}' escapes collection root '{root}'")


class DuplicateResourcePathError(ResolutionError):
    """Raised when two resources share the same relative path."""

    def __init__(self, path: str) -> None:
        """Initialize with the duplicated path."""
        self.path = path
        super().__init__(f"duplicate resource path '{path}'")


class ResolutionCancelledError(ResolutionError):
    """Raised when the caller cancels an in-flight resolution."""


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic ValidationError into clean, user-friendly message.

    Removes Pydantic-specific URLs and technical jargon, producing a message
    suitable for single-line output.

    Args:
        error: The Pydantic ValidationError to format.

    Returns:
        A clean, human-readable error message.
    """
    messages = []

    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"])
        error_type = err["type"]

        if error_type == "missing":
            messages.append(f"'{loc}': field is required")
        elif error_type == "string_type":
            messages.append(f"'{loc}': expected string")
        elif error_type == "list_type":
            messages.append(f"'{loc}': expected list")
        elif error_type in ("dict_type", "model_type"):
            messages.append(f"'{loc}': expected mapping")
        else:
            messages.append(f"'{loc}': {err['msg'].lower()}")

    return "; ".join(messages)


def exit_code_for(error: ResolutionError) -> int:
    """Map a resolution error onto a CLI exit code."""
    if isinstance(error, ConfigurationError):
        return exit_codes.INVALID_CONFIG
    if isinstance(error, (AuthenticationRequiredError, AuthenticationFailedError)):
        return exit_codes.AUTH_ERROR
    if isinstance(error, (SourceUnreachableError, UpstreamTransportError)):
        return exit_codes.TRANSPORT_ERROR
    if isinstance(error, (PathTraversalError, DuplicateResourcePathError)):
        return exit_codes.INTEGRITY_ERROR
    if isinstance(error, ResolutionCancelledError):
        return exit_codes.CANCELLED
    return exit_codes.GENERAL_ERROR


def handle_cli_error(error: Exception) -> int:
    """Handle an exception at the CLI boundary.

    Formats the error into a single-line message and returns an appropriate
    exit code. Raw tracebacks never reach the user.

    Args:
        error: The exception to handle.

    Returns:
        An exit code from exit_codes.
    """
    if isinstance(error, ResolutionError):
        cli_logger.error(str(error))
        return exit_code_for(error)

    if isinstance(error, ValidationError):
        cli_logger.error(f"Invalid configuration: {format_validation_errors(error)}")
        return exit_codes.INVALID_CONFIG

    if isinstance(error, subprocess.CalledProcessError):
        cmd_str = " ".join(str(c) for c in error.cmd) if isinstance(error.cmd, list) else str(error.cmd)
        cli_logger.error(f"Command failed (exit code {error.returncode}): {cmd_str}")
        return exit_codes.GENERAL_ERROR

    if isinstance(error, OSError):
        if error.filename:
            cli_logger.error(f"{error.strerror}: {error.filename}")
        else:
            cli_logger.error(str(error))
        return exit_codes.GENERAL_ERROR

    if isinstance(error, yaml.YAMLError):
        cli_logger.error(f"Invalid YAML: {error}")
        return exit_codes.GENERAL_ERROR

    cli_logger.error(f"Unexpected error: {error}")
    return exit_codes.GENERAL_ERROR
