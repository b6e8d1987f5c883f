"""Release definition schema using Pydantic.

A release definition is a YAML file at the root of a source (bundle.yaml by
default) that names a packaged chart to resolve in addition to the source's
own files. The file itself is part of the bundle.
"""

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from bundlesmith.errors import InvalidReleaseDefinitionError, format_validation_errors

RELEASE_DEFINITION_FILE = "bundle.yaml"


class HelmReleaseOptions(BaseModel):
    """Chart to pull from a package repository."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    repo: str | None = Field(default=None, description="Package repository base URL")
    chart: str = Field(description="Chart name, or a direct URL to a .tgz archive")
    version: str | None = Field(default=None, description="Exact chart version; newest when omitted")
    release_name: str | None = Field(default=None, alias="releaseName")

    @model_validator(mode="after")
    def require_repo_or_archive_url(self) -> "HelmReleaseOptions":
        """A chart name only makes sense together with a repository."""
        if self.repo is None and not self.is_archive_url:
            msg = "helm.repo is required unless helm.chart is an archive URL"
            raise ValueError(msg)
        return self

    @property
    def is_archive_url(self) -> bool:
        """True if chart points straight at an archive."""
        return self.chart.startswith(("http://", "https://"))


class ReleaseDefinitionSchema(BaseModel):
    """Root schema for release definition files."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = Field(default=None, description="Bundle name override")
    default_namespace: str | None = Field(default=None, alias="defaultNamespace")
    helm: HelmReleaseOptions | None = None


def parse_release_definition(content: bytes, path: str = RELEASE_DEFINITION_FILE) -> ReleaseDefinitionSchema:
    """Parse and validate a release definition.

    Args:
        content: Raw file content.
        path: Path of the file, for error messages.

    Returns:
        Validated ReleaseDefinitionSchema instance.

    Raises:
        InvalidReleaseDefinitionError: If YAML is invalid or schema validation fails.
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in release definition '{path}': {e}"
        raise InvalidReleaseDefinitionError(msg) from e

    try:
        return ReleaseDefinitionSchema.model_validate(data or {})
    except ValidationError as e:
        clean_errors = format_validation_errors(e)
        msg = f"Invalid release definition '{path}': {clean_errors}"
        raise InvalidReleaseDefinitionError(msg) from e
