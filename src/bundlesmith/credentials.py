"""Credential types supplied per resolution.

A credential is a closed union of BasicAuth and SSHKey. Fetchers dispatch on
the variant they support and reject any other with CredentialMismatchError.
Secret fields are excluded from repr so they never end up in logs.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StrictHostKeyPolicy:
    """Verify the SSH host key against the given known_hosts content.

    When known_hosts is None the user's default known_hosts files are used,
    still with strict checking.
    """

    known_hosts: str | None = None


@dataclass(frozen=True)
class InsecureIgnoreHostKey:
    """Skip SSH host key verification. Only ever chosen explicitly by the caller."""


HostKeyPolicy = StrictHostKeyPolicy | InsecureIgnoreHostKey


@dataclass(frozen=True)
class BasicAuth:
    """Username and password for HTTP(S) sources."""

    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class SSHKey:
    """Private key for SSH git sources.

    There is no default host_key_policy: the caller decides whether host keys
    are verified.
    """

    private_key: str = field(repr=False)
    host_key_policy: HostKeyPolicy
    user: str = "git"


Credential = BasicAuth | SSHKey


def credential_kind(credential: Credential) -> str:
    """Short human-readable name of a credential variant."""
    if isinstance(credential, BasicAuth):
        return "basic-auth"
    return "ssh-key"
