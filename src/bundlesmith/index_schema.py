"""Package repository index schema definitions using Pydantic.

This module defines the subset of a Helm-style index.yaml that the
package repository fetcher relies on. Unknown fields are ignored.
"""

from pydantic import BaseModel, ConfigDict, Field


class ChartVersionEntry(BaseModel):
    """One published version of a chart."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(description="Chart name")
    version: str = Field(description="Chart version")
    app_version: str | None = Field(default=None, alias="appVersion")
    urls: list[str] = Field(default_factory=list, description="Archive URLs, absolute or relative")
    digest: str | None = Field(default=None, description="SHA-256 of the archive")


class RepositoryIndexSchema(BaseModel):
    """Root schema for package repository index.yaml files."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    api_version: str = Field(default="v1", alias="apiVersion")
    entries: dict[str, list[ChartVersionEntry]] = Field(
        default_factory=dict,
        description="Chart name to published versions",
    )
