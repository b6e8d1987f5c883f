"""Package repository fetch operations.

Reads a Helm-style index.yaml from a repository base URL, selects a chart
version, and downloads its archive. Basic Auth is attached per request, only
to URLs on the repository's origin that the credential scope matches. Nothing
is retried; transient failures surface to the caller.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import socket
from dataclasses import dataclass
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin, urlsplit
from urllib.request import Request, urlopen

import yaml
from packaging.version import InvalidVersion, Version
from pydantic import ValidationError

from bundlesmith.credentials import BasicAuth, Credential, credential_kind
from bundlesmith.errors import (
    ChartNotFoundError,
    CredentialMismatchError,
    InvalidArchiveError,
    InvalidRepositoryIndexError,
    SourceUnreachableError,
    TransportTimeoutError,
    UpstreamTransportError,
    format_validation_errors,
)
from bundlesmith.index_schema import ChartVersionEntry, RepositoryIndexSchema
from bundlesmith.scope import CredentialScope, select_credential

logger = logging.getLogger(__name__)

INDEX_FILE = "index.yaml"


@dataclass
class HttpResponse:
    """Status and body of a completed HTTP request."""

    status: int
    body: bytes


class Transport(Protocol):
    """Protocol for performing one HTTP GET."""

    def get(self, url: str, headers: dict[str, str], timeout: float) -> HttpResponse:
        """Fetch url. Non-2xx statuses are returned, not raised.

        Raises:
            SourceUnreachableError: On connection failures.
            TransportTimeoutError: If the request exceeds timeout.
        """
        ...


class UrllibTransport:
    """Performs GET requests with urllib."""

    def get(self, url: str, headers: dict[str, str], timeout: float) -> HttpResponse:
        """GET url with urllib.request.urlopen."""
        request = Request(url, headers=headers, method="GET")  # noqa: S310
        try:
            with urlopen(request, timeout=timeout) as response:  # noqa: S310
                return HttpResponse(status=response.status, body=response.read())
        except HTTPError as e:
            body = e.read()
            e.close()
            return HttpResponse(status=e.code, body=body)
        except (TimeoutError, socket.timeout) as e:
            raise TransportTimeoutError(url, timeout) from e
        except URLError as e:
            if isinstance(e.reason, (TimeoutError, socket.timeout)):
                raise TransportTimeoutError(url, timeout) from e
            raise SourceUnreachableError(url, str(e.reason)) from e


def _origin(url: str) -> tuple[str, str]:
    parts = urlsplit(url)
    return parts.scheme.lower(), parts.netloc.lower()


def _basic_auth_header(credential: BasicAuth) -> dict[str, str]:
    token = base64.b64encode(f"{credential.username}:{credential.password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def _sort_key(entry: ChartVersionEntry) -> Version:
    return Version(entry.version)


def select_chart(index: RepositoryIndexSchema, name: str, version: str | None = None) -> ChartVersionEntry:
    """Pick a chart version from an index.

    Args:
        index: Parsed repository index.
        name: Chart name.
        version: Exact version; the newest valid version when None.

    Raises:
        ChartNotFoundError: If the chart or version is not in the index.
    """
    entries = index.entries.get(name)
    if not entries:
        msg = f"Chart '{name}' not found in repository index"
        raise ChartNotFoundError(msg)

    if version:
        for entry in entries:
            if entry.version == version or entry.version == version.removeprefix("v"):
                return entry
        msg = f"Chart '{name}' has no version '{version}'"
        raise ChartNotFoundError(msg)

    candidates = []
    for entry in entries:
        try:
            Version(entry.version)
        except InvalidVersion:
            logger.debug("Ignoring unparsable version %s of chart %s", entry.version, name)
            continue
        candidates.append(entry)

    if not candidates:
        msg = f"Chart '{name}' has no valid versions"
        raise ChartNotFoundError(msg)
    return max(candidates, key=_sort_key)


def verify_digest(entry: ChartVersionEntry, archive: bytes) -> None:
    """Check archive against the SHA-256 digest published in the index.

    Entries without a digest are accepted as-is.

    Raises:
        InvalidArchiveError: If the digest does not match.
    """
    if not entry.digest:
        return
    expected = entry.digest.lower().removeprefix("sha256:")
    actual = hashlib.sha256(archive).hexdigest()
    if actual != expected:
        msg = f"Chart '{entry.name}' version '{entry.version}' digest mismatch: expected {expected}, got {actual}"
        raise InvalidArchiveError(msg)


class HelmRepository:
    """Client for one package repository.

    The credential is decided per request: it is attached only to URLs on the
    repository's own origin that also match the scope. Archives listed on
    another host are downloaded anonymously.
    """

    def __init__(
        self,
        base_url: str,
        *,
        credential: Credential | None = None,
        scope: CredentialScope | None = None,
        transport: Transport | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Set up the client.

        Raises:
            CredentialMismatchError: If credential is not BasicAuth.
        """
        if credential is not None and not isinstance(credential, BasicAuth):
            raise CredentialMismatchError(credential_kind(credential), "helm-repo", base_url)
        self._base_url = base_url.rstrip("/") + "/"
        self._credential = credential
        self._scope = scope or CredentialScope()
        self._transport = transport or UrllibTransport()
        self._timeout = timeout

    @property
    def index_url(self) -> str:
        """Effective URL of the repository index."""
        return urljoin(self._base_url, INDEX_FILE)

    def _headers_for(self, url: str) -> dict[str, str]:
        if self._credential is None:
            return {}
        if _origin(url) != _origin(self._base_url):
            logger.debug("Not sending credentials to %s: different origin than %s", url, self._base_url)
            return {}
        credential = select_credential(self._credential, url, self._scope)
        if credential is None:
            return {}
        return _basic_auth_header(credential)

    def _get(self, url: str, action: str) -> bytes:
        response = self._transport.get(url, self._headers_for(url), self._timeout)
        if not 200 <= response.status < 300:
            body = response.body.decode("utf-8", errors="replace")
            raise UpstreamTransportError(url, response.status, body, action=action)
        return response.body

    def fetch_index(self) -> RepositoryIndexSchema:
        """Fetch and validate the repository index.

        Raises:
            UpstreamTransportError: On a non-2xx response.
            InvalidRepositoryIndexError: If the document is not a valid index.
        """
        url = self.index_url
        logger.debug("Fetching package index %s", url)
        raw = self._get(url, "read helm repo from")

        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            msg = f"Invalid YAML in repository index {url}: {e}"
            raise InvalidRepositoryIndexError(msg) from e

        try:
            return RepositoryIndexSchema.model_validate(data or {})
        except ValidationError as e:
            msg = f"Invalid repository index {url}: {format_validation_errors(e)}"
            raise InvalidRepositoryIndexError(msg) from e

    def fetch_archive(self, url: str) -> bytes:
        """Download an archive; relative URLs resolve against the base URL."""
        absolute = urljoin(self._base_url, url)
        logger.debug("Downloading chart archive %s", absolute)
        return self._get(absolute, "download chart from")

    def fetch_chart(self, name: str, version: str | None = None) -> tuple[ChartVersionEntry, bytes]:
        """Resolve a chart in the index and download its archive.

        Returns:
            The selected index entry and the archive bytes.

        Raises:
            ChartNotFoundError: If the chart, version or archive URL is missing.
            InvalidArchiveError: If the archive does not match the index digest.
        """
        entry = select_chart(self.fetch_index(), name, version)
        if not entry.urls:
            msg = f"Chart '{name}' version '{entry.version}' lists no archive URLs"
            raise ChartNotFoundError(msg)
        archive = self.fetch_archive(entry.urls[0])
        verify_digest(entry, archive)
        return entry, archive
