"""Resolver configuration.

Settings come from BUNDLESMITH_* environment variables, optionally overlaid
on an env file. Process environment wins over the file.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError

from bundlesmith.errors import ConfigurationError, format_validation_errors
from bundlesmith.release_schema import RELEASE_DEFINITION_FILE

ENV_PREFIX = "BUNDLESMITH_"

DEFAULT_TIMEOUT_SECONDS = 30.0

# Environment variable suffix → settings field
_ENV_FIELDS = {
    "TIMEOUT": "timeout",
    "CREDENTIAL_SCOPE": "credential_scope",
    "RELEASE_FILE": "release_definition_file",
    "ON_ESCAPE": "on_escape",
}


class ResolverSettings(BaseModel):
    """Per-invocation resolver settings."""

    timeout: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds allowed for each network operation",
    )
    credential_scope: str | None = Field(
        default=None,
        description="Regular expression restricting where credentials are attached",
    )
    release_definition_file: str = Field(
        default=RELEASE_DEFINITION_FILE,
        description="Name of the release definition file at the collection root",
    )
    on_escape: Literal["error", "skip"] = Field(
        default="error",
        description="What to do with paths that escape the collection root",
    )


def load_env_file(path: Path) -> dict[str, str]:
    """Load variables from a .env file.

    Returns empty dict if file doesn't exist.
    """
    if not path.exists():
        return {}

    raw_values = dotenv_values(path)
    return {k: v for k, v in raw_values.items() if v is not None}


def load_settings(
    env_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: object,
) -> ResolverSettings:
    """Build ResolverSettings from an env file, the environment and overrides.

    Args:
        env_file: Optional dotenv file.
        environ: Environment to read; the process environment when None.
        **overrides: Explicit values (e.g. from CLI flags); None values are ignored.

    Raises:
        ConfigurationError: If a value is invalid.
    """
    merged: dict[str, str] = {}
    if env_file is not None:
        merged.update(load_env_file(env_file))
    merged.update(os.environ if environ is None else environ)

    values: dict[str, object] = {}
    for suffix, field_name in _ENV_FIELDS.items():
        raw = merged.get(ENV_PREFIX + suffix)
        if raw is not None and raw != "":
            values[field_name] = raw
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ResolverSettings.model_validate(values)
    except ValidationError as e:
        msg = f"Invalid settings: {format_validation_errors(e)}"
        raise ConfigurationError(msg) from e
