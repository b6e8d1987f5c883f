"""Credential scope matching.

A scope is a regular expression restricting which source locations a
supplied credential may be attached to. The pattern is compiled eagerly so a
malformed one fails the resolution before anything touches the network.
"""

import logging
import re
from dataclasses import dataclass

from bundlesmith.credentials import Credential, credential_kind
from bundlesmith.errors import InvalidCredentialScopeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialScope:
    """A compiled credential scope rule. An empty scope matches every location."""

    pattern: re.Pattern[str] | None = None

    def matches(self, location: str) -> bool:
        """Return True if the rule matches anywhere in location."""
        if self.pattern is None:
            return True
        return self.pattern.search(location) is not None


def compile_scope(pattern: str | None) -> CredentialScope:
    """Compile a scope pattern.

    Args:
        pattern: Regular expression, or None/empty for no restriction.

    Returns:
        The compiled CredentialScope.

    Raises:
        InvalidCredentialScopeError: If the pattern does not compile.
    """
    if not pattern:
        return CredentialScope()

    try:
        return CredentialScope(pattern=re.compile(pattern))
    except re.error as e:
        raise InvalidCredentialScopeError(pattern, e) from e


def select_credential(
    credential: Credential | None,
    location: str,
    scope: CredentialScope,
) -> Credential | None:
    """Return the credential to attach to a request for location.

    The credential is withheld when a scope rule is configured and does not
    match; the request then proceeds unauthenticated.
    """
    if credential is None:
        return None

    if scope.matches(location):
        return credential

    logger.debug(
        "Withholding %s credential from %s: scope does not match",
        credential_kind(credential),
        location,
    )
    return None
