"""Bundle values and assembly.

A Bundle is the ordered, path-unique set of resources produced by one
resolution. Resources are sorted by path so identical source content always
yields an identical bundle.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import yaml

from bundlesmith.errors import DuplicateResourcePathError
from bundlesmith.release_schema import ReleaseDefinitionSchema
from bundlesmith.source import SourceDescriptor


@dataclass(frozen=True)
class Resource:
    """One file of a bundle."""

    path: str
    content: bytes = field(repr=False)
    content_hash: str = ""

    def __post_init__(self) -> None:
        if not self.content_hash:
            object.__setattr__(self, "content_hash", hashlib.sha256(self.content).hexdigest())


@dataclass(frozen=True)
class Bundle:
    """The canonical result of a resolution."""

    name: str
    source: SourceDescriptor
    resources: tuple[Resource, ...]
    release_definition: ReleaseDefinitionSchema | None = None
    revision: str | None = None

    def paths(self) -> list[str]:
        """Paths of all resources, in bundle order."""
        return [r.path for r in self.resources]


def ensure_unique_paths(resources: Iterable[Resource]) -> None:
    """Raise DuplicateResourcePathError on the first repeated path."""
    seen: set[str] = set()
    for resource in resources:
        if resource.path in seen:
            raise DuplicateResourcePathError(resource.path)
        seen.add(resource.path)


def assemble_bundle(
    name: str,
    source: SourceDescriptor,
    resources: Iterable[Resource],
    release_definition: ReleaseDefinitionSchema | None = None,
    revision: str | None = None,
) -> Bundle:
    """Freeze collected resources into a Bundle.

    Args:
        name: Bundle name.
        source: Descriptor the resources came from.
        resources: Collected resources, in any order. A release definition
            file must already be among them; it is not added again.
        release_definition: Parsed release definition, if one was found.
        revision: Resolved commit hash or chart version.

    Raises:
        DuplicateResourcePathError: If two resources share a path.
    """
    ordered = tuple(sorted(resources, key=lambda r: r.path))
    ensure_unique_paths(ordered)
    return Bundle(
        name=name,
        source=source,
        resources=ordered,
        release_definition=release_definition,
        revision=revision,
    )


def _render_resource(resource: Resource) -> dict[str, Any]:
    try:
        return {"name": resource.path, "content": resource.content.decode("utf-8")}
    except UnicodeDecodeError:
        return {
            "name": resource.path,
            "content": base64.b64encode(resource.content).decode("ascii"),
            "encoding": "base64",
        }


def bundle_to_dict(bundle: Bundle) -> dict[str, Any]:
    """Plain-data form of a bundle. Credentials are never included."""
    data: dict[str, Any] = {
        "name": bundle.name,
        "source": bundle.source.describe(),
    }
    if bundle.revision:
        data["revision"] = bundle.revision
    if bundle.release_definition is not None:
        data["releaseDefinition"] = bundle.release_definition.model_dump(
            mode="json", by_alias=True, exclude_none=True
        )
    data["resources"] = [_render_resource(r) for r in bundle.resources]
    return data


def dump_bundle(bundle: Bundle) -> str:
    """Render a bundle as YAML."""
    return yaml.safe_dump(bundle_to_dict(bundle), default_flow_style=False, sort_keys=False)
