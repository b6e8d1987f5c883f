"""Bundle resolution.

One resolution runs fetch → collect → assemble for a single SourceDescriptor
and ends either with a complete Bundle or with a typed error, never both.

States: CREATED → FETCHING → COLLECTING → ASSEMBLED, or FAILED from any
non-terminal state. Nothing is retried.
"""

from __future__ import annotations

import logging
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from bundlesmith.bundle import Bundle, Resource, assemble_bundle
from bundlesmith.collector import collect_archive, collect_directory, resolve_sub_path
from bundlesmith.config import ResolverSettings
from bundlesmith.credentials import BasicAuth, Credential
from bundlesmith.errors import (
    ConfigurationError,
    InvalidCredentialScopeError,
    ResolutionCancelledError,
    ResolutionError,
    SourceNotFoundError,
)
from bundlesmith.git_source import fetch_git_source
from bundlesmith.helm_repo import HelmRepository, Transport
from bundlesmith.release_schema import HelmReleaseOptions, ReleaseDefinitionSchema, parse_release_definition
from bundlesmith.sanitize import bundle_name_from_location, sanitize_bundle_name
from bundlesmith.scope import CredentialScope, compile_scope, select_credential
from bundlesmith.source import SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

# Path prefix for files of a chart pulled in by a release definition.
CHART_PREFIX = ".chart"

DEFAULT_BUNDLE_NAME = "bundle"


class ResolutionState(str, Enum):
    """States of one resolution."""

    CREATED = "created"
    FETCHING = "fetching"
    COLLECTING = "collecting"
    ASSEMBLED = "assembled"
    FAILED = "failed"


_TRANSITIONS = {
    ResolutionState.CREATED: {ResolutionState.FETCHING, ResolutionState.FAILED},
    ResolutionState.FETCHING: {ResolutionState.COLLECTING, ResolutionState.FAILED},
    ResolutionState.COLLECTING: {ResolutionState.ASSEMBLED, ResolutionState.FAILED},
    ResolutionState.ASSEMBLED: set(),
    ResolutionState.FAILED: set(),
}


@dataclass(frozen=True)
class ResolutionSucceeded:
    """Resolution ended with a complete bundle."""

    bundle: Bundle


@dataclass(frozen=True)
class ResolutionFailed:
    """Resolution ended with an error.

    state is the state the resolution was in when the error happened.
    """

    state: ResolutionState
    error: ResolutionError


ResolutionOutcome = ResolutionSucceeded | ResolutionFailed


class Resolution:
    """Tracks the state of one resolution and honours cancellation."""

    def __init__(self, cancel: threading.Event | None = None) -> None:
        self.state = ResolutionState.CREATED
        self.history = [ResolutionState.CREATED]
        self._cancel = cancel

    def check_cancelled(self) -> None:
        """Raise ResolutionCancelledError if the caller asked to stop."""
        if self._cancel is not None and self._cancel.is_set():
            msg = f"resolution cancelled while {self.state.value}"
            raise ResolutionCancelledError(msg)

    def advance(self, state: ResolutionState) -> None:
        """Move to state, checking the transition is legal."""
        if state not in _TRANSITIONS[self.state]:
            msg = f"Illegal resolution transition {self.state.value} → {state.value}"
            raise RuntimeError(msg)
        if state != ResolutionState.FAILED:
            self.check_cancelled()
        logger.debug("Resolution %s → %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)


@dataclass
class _Fetched:
    """Raw content retrieved during the FETCHING state."""

    root: Path | None = None
    archive: bytes | None = None
    release_definition: ReleaseDefinitionSchema | None = None
    chart_archive: bytes | None = None
    revision: str | None = None


def _chart_credential(descriptor: SourceDescriptor) -> Credential | None:
    """Credential offered to the chart repository of a release definition.

    An SSH key for the source itself cannot authenticate against a chart
    repository, so the chart is then fetched anonymously.
    """
    if descriptor.helm_credential is not None:
        return descriptor.helm_credential
    if isinstance(descriptor.credential, BasicAuth):
        return descriptor.credential
    return None


class Resolver:
    """Resolves source descriptors into bundles.

    A Resolver holds only immutable settings, so one instance may serve
    concurrent resolutions of different sources.
    """

    def __init__(
        self,
        settings: ResolverSettings | None = None,
        *,
        transport: Transport | None = None,
    ) -> None:
        """Compile the credential scope up front.

        Raises:
            InvalidCredentialScopeError: If the scope pattern does not compile.
        """
        self._settings = settings or ResolverSettings()
        self._scope: CredentialScope = compile_scope(self._settings.credential_scope)
        self._transport = transport

    @property
    def settings(self) -> ResolverSettings:
        return self._settings

    def resolve(
        self,
        descriptor: SourceDescriptor,
        *,
        name: str | None = None,
        cancel: threading.Event | None = None,
    ) -> ResolutionOutcome:
        """Resolve one descriptor.

        Args:
            descriptor: Source to resolve.
            name: Bundle name; derived from the release definition or the
                location when None.
            cancel: Event that stops the resolution at the next step when set.

        Returns:
            ResolutionSucceeded with the bundle, or ResolutionFailed with the
            state and typed error.
        """
        resolution = Resolution(cancel)
        try:
            bundle = self._run(resolution, descriptor, name)
        except ResolutionError as e:
            failed_in = resolution.state
            resolution.advance(ResolutionState.FAILED)
            logger.debug("Resolution of %s failed while %s: %s", descriptor.location, failed_in.value, e)
            return ResolutionFailed(state=failed_in, error=e)
        return ResolutionSucceeded(bundle=bundle)

    def _credential_for(self, credential: Credential | None, location: str) -> Credential | None:
        return select_credential(credential, location, self._scope)

    def _run(self, resolution: Resolution, descriptor: SourceDescriptor, name: str | None) -> Bundle:
        # The working directory is removed on every exit path.
        with tempfile.TemporaryDirectory(prefix="bundlesmith-") as tmp:
            resolution.advance(ResolutionState.FETCHING)
            fetched = self._fetch(resolution, descriptor, Path(tmp))

            resolution.advance(ResolutionState.COLLECTING)
            resources = self._collect(descriptor, fetched)

            bundle = assemble_bundle(
                name=self._bundle_name(descriptor, fetched, name),
                source=descriptor,
                resources=resources,
                release_definition=fetched.release_definition,
                revision=fetched.revision,
            )
            resolution.advance(ResolutionState.ASSEMBLED)

        logger.debug("Assembled bundle %s with %d resources", bundle.name, len(bundle.resources))
        return bundle

    def _fetch(self, resolution: Resolution, descriptor: SourceDescriptor, work_dir: Path) -> _Fetched:
        settings = self._settings

        if descriptor.kind == SourceKind.HELM_REPO:
            assert descriptor.chart is not None
            repo = self._helm_repository(descriptor.location, descriptor.credential)
            entry, archive = repo.fetch_chart(descriptor.chart, descriptor.revision)
            return _Fetched(archive=archive, revision=entry.version)

        if descriptor.kind == SourceKind.GIT:
            snapshot = fetch_git_source(
                descriptor.location,
                work_dir,
                credential=self._credential_for(descriptor.credential, descriptor.location),
                revision=descriptor.revision,
                branch=descriptor.branch,
                sub_path=descriptor.sub_path,
                timeout=settings.timeout,
            )
            fetched = _Fetched(root=snapshot.root, revision=snapshot.commit_hash)
        else:
            root = Path(descriptor.location).expanduser()
            if not root.is_dir():
                msg = f"Local source '{descriptor.location}' is not a directory"
                raise SourceNotFoundError(msg)
            fetched = _Fetched(root=root)

        definition_path = resolve_sub_path(fetched.root, descriptor.sub_path) / settings.release_definition_file
        if definition_path.is_file():
            fetched.release_definition = parse_release_definition(
                definition_path.read_bytes(), settings.release_definition_file
            )
            helm = fetched.release_definition.helm
            if helm is not None:
                resolution.check_cancelled()
                fetched.chart_archive = self._fetch_release_chart(helm, _chart_credential(descriptor))

        return fetched

    def _helm_repository(self, base_url: str, credential: Credential | None) -> HelmRepository:
        return HelmRepository(
            base_url,
            credential=credential,
            scope=self._scope,
            transport=self._transport,
            timeout=self._settings.timeout,
        )

    def _fetch_release_chart(self, helm: HelmReleaseOptions, credential: Credential | None) -> bytes:
        if helm.is_archive_url:
            return self._helm_repository(helm.chart, credential).fetch_archive(helm.chart)

        assert helm.repo is not None
        _, archive = self._helm_repository(helm.repo, credential).fetch_chart(helm.chart, helm.version)
        return archive

    def _collect(self, descriptor: SourceDescriptor, fetched: _Fetched) -> list[Resource]:
        on_escape = self._settings.on_escape

        if fetched.archive is not None:
            return collect_archive(fetched.archive, on_escape=on_escape)

        assert fetched.root is not None
        resources = collect_directory(fetched.root, descriptor.sub_path, on_escape=on_escape)
        if fetched.chart_archive is not None:
            resources += collect_archive(fetched.chart_archive, prefix=CHART_PREFIX, on_escape=on_escape)
        return resources

    def _bundle_name(self, descriptor: SourceDescriptor, fetched: _Fetched, name: str | None) -> str:
        explicit = name or (fetched.release_definition.name if fetched.release_definition else None)
        if explicit:
            try:
                return sanitize_bundle_name(explicit)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e

        try:
            if descriptor.kind == SourceKind.HELM_REPO:
                assert descriptor.chart is not None
                return sanitize_bundle_name(descriptor.chart)
            if descriptor.kind == SourceKind.LOCAL:
                location = str(Path(descriptor.location).expanduser().resolve())
                return bundle_name_from_location(location, descriptor.sub_path)
            return bundle_name_from_location(descriptor.location, descriptor.sub_path)
        except ValueError:
            logger.debug("Could not derive a bundle name from %s", descriptor.location)
            return DEFAULT_BUNDLE_NAME


def resolve(
    descriptor: SourceDescriptor,
    settings: ResolverSettings | None = None,
    *,
    transport: Transport | None = None,
    name: str | None = None,
    cancel: threading.Event | None = None,
) -> ResolutionOutcome:
    """Resolve one descriptor, reporting every failure as a ResolutionFailed.

    An invalid credential scope fails in the CREATED state, before any fetch.
    """
    try:
        resolver = Resolver(settings, transport=transport)
    except InvalidCredentialScopeError as e:
        return ResolutionFailed(state=ResolutionState.CREATED, error=e)
    return resolver.resolve(descriptor, name=name, cancel=cancel)


def resolve_bundle(
    descriptor: SourceDescriptor,
    settings: ResolverSettings | None = None,
    *,
    transport: Transport | None = None,
    name: str | None = None,
    cancel: threading.Event | None = None,
) -> Bundle:
    """Resolve one descriptor and return its bundle.

    Raises:
        ResolutionError: The typed error the resolution failed with.
    """
    match resolve(descriptor, settings, transport=transport, name=name, cancel=cancel):
        case ResolutionSucceeded(bundle=bundle):
            return bundle
        case ResolutionFailed(error=error):
            raise error
