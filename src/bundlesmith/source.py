"""Source descriptors.

A SourceDescriptor says where to fetch content from and how to authenticate.
describe_source() classifies raw user input when no kind is given explicitly.

Classification order:
1. Explicit path indicators (./  ../  /  ~/) → local
2. Path exists on disk → local
3. Matches git URL pattern → git
4. Otherwise → error (package repositories must be requested explicitly)
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from bundlesmith.credentials import Credential


class SourceKind(str, Enum):
    """Type of content source."""

    GIT = "git"
    HELM_REPO = "helm-repo"
    LOCAL = "local"


@dataclass(frozen=True)
class SourceDescriptor:
    """Immutable description of one source to resolve.

    For HELM_REPO sources, chart names the chart and revision its version.
    helm_credential authenticates against the chart repository named by a
    release definition; when None, credential is used there if it is
    BasicAuth.
    """

    kind: SourceKind
    location: str
    sub_path: str | None = None
    revision: str | None = None
    branch: str | None = None
    chart: str | None = None
    credential: Credential | None = None
    helm_credential: Credential | None = None

    def __post_init__(self) -> None:
        if not self.location.strip():
            msg = "Source location cannot be empty"
            raise ValueError(msg)
        if self.kind == SourceKind.HELM_REPO and not self.chart:
            msg = f"Package repository source '{self.location}' requires a chart name"
            raise ValueError(msg)
        if self.kind == SourceKind.HELM_REPO and self.sub_path:
            msg = "Sub-path is not supported for package repository sources"
            raise ValueError(msg)
        if self.kind != SourceKind.GIT and self.branch:
            msg = f"Branch is only valid for git sources, not {self.kind.value}"
            raise ValueError(msg)

    def describe(self) -> dict[str, str]:
        """Public fields of the descriptor, without credential material."""
        fields = {"kind": self.kind.value, "location": self.location}
        for key in ("sub_path", "revision", "branch", "chart"):
            value = getattr(self, key)
            if value:
                fields[key] = value
        return fields


def _is_explicit_path(source: str) -> bool:
    """Check if the source string is syntactically a filesystem path."""
    return source.startswith(("./", "../", "/", "~/", "~\\"))


def is_git_url(source: str) -> bool:
    """Check if the source string looks like a git URL.

    Recognized patterns:
    - https://host/org/repo[.git], ssh://..., file://...
    - git@host:org/repo[.git]
    - host.tld/org/repo  (shorthand, e.g. github.com/org/repo)
    """
    if "@" in source and ":" in source.split("@", 1)[1] and "://" not in source:
        return True

    if source.startswith(("https://", "http://", "ssh://", "file://")):
        return True

    if "/" in source:
        host_part = source.split("/", 1)[0]
        if "." in host_part:
            return True

    return False


def describe_source(
    source: str,
    kind: SourceKind | None = None,
    **options: object,
) -> SourceDescriptor:
    """Build a SourceDescriptor from raw input.

    Args:
        source: Path or URL as typed by the user.
        kind: Explicit kind; inferred from source when None.
        **options: Remaining SourceDescriptor fields (sub_path, revision, ...).

    Returns:
        The SourceDescriptor.

    Raises:
        ValueError: If source is empty or its kind cannot be inferred.
    """
    source = source.strip()
    if not source:
        msg = "Source cannot be empty"
        raise ValueError(msg)

    if kind is None:
        kind = _infer_kind(source)

    return SourceDescriptor(kind=kind, location=source, **options)  # type: ignore[arg-type]


def _infer_kind(source: str) -> SourceKind:
    if _is_explicit_path(source) or Path(source).exists():
        return SourceKind.LOCAL

    if is_git_url(source):
        return SourceKind.GIT

    msg = f"Cannot tell what kind of source '{source}' is; pass the kind explicitly"
    raise ValueError(msg)
