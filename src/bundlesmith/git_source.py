"""Git source fetch operations.

Clones a repository into a caller-owned working directory over HTTPS, SSH or
a local transport, checks out the requested revision and reports failures as
typed errors. Authentication is always passed through the environment of the
git process, never through argv or the clone URL.
"""

import base64
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath

from bundlesmith.credentials import (
    BasicAuth,
    Credential,
    InsecureIgnoreHostKey,
    SSHKey,
    StrictHostKeyPolicy,
    credential_kind,
)
from bundlesmith.errors import (
    AuthenticationFailedError,
    AuthenticationRequiredError,
    CredentialMismatchError,
    GitSourceError,
    PathTraversalError,
    SourceUnreachableError,
    TransportTimeoutError,
)
from bundlesmith.git import checkout, get_commit_hash, sparse_checkout, sparse_clone

logger = logging.getLogger(__name__)

# Substrings of git/ssh stderr that mean the remote wants (other) credentials.
AUTH_FAILURE_MARKERS = (
    "authentication required",
    "authentication failed",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "permission denied (publickey",
    "the requested url returned error: 401",
    "the requested url returned error: 403",
    "invalid username or password",
)

# Substrings that mean the remote could not be reached at all.
UNREACHABLE_MARKERS = (
    "could not resolve host",
    "could not resolve hostname",
    "name or service not known",
    "connection refused",
    "connection timed out",
    "failed to connect",
    "no route to host",
    "network is unreachable",
)


class GitTransport(str, Enum):
    """How a git location is reached."""

    HTTPS = "https"
    SSH = "ssh"
    LOCAL = "local"


@dataclass(frozen=True)
class GitSnapshot:
    """Checked-out working copy of a repository."""

    root: Path
    commit_hash: str


def normalize_git_url(url: str) -> str:
    """Normalize a user-provided URL into a form git can clone.

    Shorthand like ``github.com/org/repo`` becomes ``https://github.com/org/repo``.
    URLs that already have a scheme, SSH scp-style syntax, or absolute paths
    are returned unchanged.
    """
    if "://" in url or url.startswith("/"):
        return url

    # scp-like: user@host:path
    if "@" in url and ":" in url.split("@", 1)[1]:
        return url

    return f"https://{url}"


def detect_transport(url: str) -> GitTransport:
    """Classify a normalized git URL by transport."""
    if url.startswith(("https://", "http://")):
        return GitTransport.HTTPS
    if url.startswith(("file://", "/")):
        return GitTransport.LOCAL
    if url.startswith(("ssh://", "git+ssh://")) or "://" not in url:
        return GitTransport.SSH
    msg = f"Unsupported git transport in '{url}'"
    raise GitSourceError(msg)


def _check_credential(transport: GitTransport, credential: Credential | None, url: str) -> None:
    """Reject credential variants the transport cannot use."""
    if credential is None:
        return
    if transport == GitTransport.HTTPS and isinstance(credential, BasicAuth):
        return
    if transport == GitTransport.SSH and isinstance(credential, SSHKey):
        return
    raise CredentialMismatchError(credential_kind(credential), transport.value, url)


def _base_env() -> dict[str, str]:
    """Process environment with prompts, helpers and system config disabled."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("GIT_")}
    env.update(
        {
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_ASKPASS": "",
            "SSH_ASKPASS": "",
            "GCM_INTERACTIVE": "never",
            "GIT_CONFIG_NOSYSTEM": "1",
        }
    )
    return env


def _with_config(env: dict[str, str], settings: list[tuple[str, str]]) -> dict[str, str]:
    """Add git config entries through GIT_CONFIG_COUNT/KEY/VALUE."""
    env = dict(env)
    env["GIT_CONFIG_COUNT"] = str(len(settings))
    for i, (key, value) in enumerate(settings):
        env[f"GIT_CONFIG_KEY_{i}"] = key
        env[f"GIT_CONFIG_VALUE_{i}"] = value
    return env


def _ssh_command(credential: SSHKey | None, work_dir: Path) -> str:
    """Build GIT_SSH_COMMAND for the given key and host key policy."""
    cmd = [
        "ssh", "-F", "/dev/null",
        "-o", "BatchMode=yes",
        "-o", "IdentitiesOnly=yes",
        "-o", "IdentityAgent=none",
    ]

    if credential is None:
        # Offer no identity at all; host keys are still checked strictly.
        return shlex.join([*cmd, "-o", "IdentityFile=none", "-o", "StrictHostKeyChecking=yes"])

    # ssh refuses keys without a trailing newline
    key_text = credential.private_key
    if not key_text.endswith("\n"):
        key_text += "\n"
    key_path = work_dir / "id_key"
    key_path.touch(mode=0o600)
    key_path.write_text(key_text)
    cmd += ["-i", str(key_path)]

    policy = credential.host_key_policy
    if isinstance(policy, InsecureIgnoreHostKey):
        logger.warning("SSH host key verification disabled by caller")
        cmd += ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
    elif isinstance(policy, StrictHostKeyPolicy):
        cmd += ["-o", "StrictHostKeyChecking=yes"]
        if policy.known_hosts is not None:
            known_hosts = work_dir / "known_hosts"
            known_hosts.write_text(policy.known_hosts)
            cmd += ["-o", f"UserKnownHostsFile={known_hosts}"]
    return shlex.join(cmd)


def _with_ssh_user(url: str, credential: SSHKey) -> str:
    """Put the credential's user into an ssh:// URL that has none."""
    if url.startswith("ssh://") and "@" not in url.split("://", 1)[1].split("/", 1)[0]:
        return f"ssh://{credential.user}@{url.removeprefix('ssh://')}"
    return url


def git_environment(
    transport: GitTransport,
    credential: Credential | None,
    work_dir: Path,
) -> dict[str, str]:
    """Environment for git processes of one fetch.

    Args:
        transport: Transport of the location being fetched.
        credential: Effective credential, already checked against the transport.
        work_dir: Private directory where key material may be written.
    """
    config = [("credential.helper", ""), ("core.askPass", "")]

    if transport == GitTransport.HTTPS and isinstance(credential, BasicAuth):
        token = base64.b64encode(f"{credential.username}:{credential.password}".encode()).decode()
        config.append(("http.extraHeader", f"Authorization: Basic {token}"))

    env = _with_config(_base_env(), config)

    if transport == GitTransport.SSH:
        env["GIT_SSH_COMMAND"] = _ssh_command(
            credential if isinstance(credential, SSHKey) else None, work_dir
        )

    return env


def classify_git_failure(stderr: str, url: str, authenticated: bool) -> Exception:
    """Turn git's stderr into the matching typed error.

    Auth failures become AuthenticationRequiredError when no credential was
    attached and AuthenticationFailedError when one was.
    """
    lowered = stderr.lower()

    if any(marker in lowered for marker in AUTH_FAILURE_MARKERS):
        if authenticated:
            return AuthenticationFailedError(url)
        return AuthenticationRequiredError(url)

    if any(marker in lowered for marker in UNREACHABLE_MARKERS):
        reason = next(
            line for line in stderr.splitlines()
            if any(marker in line.lower() for marker in UNREACHABLE_MARKERS)
        )
        return SourceUnreachableError(url, reason.strip().removeprefix("fatal: "))

    detail = stderr.strip() or "git exited with an error"
    return GitSourceError(f"error cloning repo {url}: {detail}")


def _sparse_patterns(sub_path: str | None) -> list[str]:
    if not sub_path:
        return ["/*"]

    parts = PurePosixPath(sub_path.replace("\\", "/")).parts
    if parts and (parts[0] == "/" or ".." in parts):
        raise PathTraversalError(sub_path, ".")
    if not parts:
        return ["/*"]
    return [f"/{'/'.join(parts)}/"]


def fetch_git_source(
    url: str,
    work_dir: Path,
    *,
    credential: Credential | None = None,
    revision: str | None = None,
    branch: str | None = None,
    sub_path: str | None = None,
    timeout: float = 30.0,
) -> GitSnapshot:
    """Fetch a snapshot of a git repository.

    Clones the repo blobless and sparse into ``work_dir/repo``, checks out
    the requested revision, and materializes either the whole tree or only
    ``sub_path``.

    Args:
        url: Git URL (may be shorthand; will be normalized).
        work_dir: Directory exclusively owned by the caller; the clone and
            any key material are written inside it.
        credential: Effective credential after scope matching.
        revision: Commit, tag or branch to check out; remote HEAD when None.
        branch: Branch to clone.
        sub_path: Subtree to materialize.
        timeout: Seconds allowed for each git operation.

    Returns:
        GitSnapshot rooted at the repository root.

    Raises:
        CredentialMismatchError: If the credential does not fit the transport.
        AuthenticationRequiredError: If the remote wants credentials and none were attached.
        AuthenticationFailedError: If the remote rejected the credentials.
        SourceUnreachableError: On DNS or connection failures.
        TransportTimeoutError: If a git operation exceeds timeout.
        GitSourceError: If git fails for another reason.
    """
    clone_url = normalize_git_url(url)
    transport = detect_transport(clone_url)
    _check_credential(transport, credential, clone_url)
    patterns = _sparse_patterns(sub_path)

    if isinstance(credential, SSHKey):
        clone_url = _with_ssh_user(clone_url, credential)

    env = git_environment(transport, credential, work_dir)
    clone_dir = work_dir / "repo"

    logger.debug("Cloning %s over %s", url, transport.value)
    try:
        sparse_clone(clone_url, clone_dir, env=env, timeout=timeout, branch=branch)
        if revision:
            checkout(clone_dir, revision, env=env, timeout=timeout)
        sparse_checkout(clone_dir, patterns, env=env, timeout=timeout)
        commit_hash = get_commit_hash(clone_dir, env=env, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise TransportTimeoutError(url, timeout) from e
    except subprocess.CalledProcessError as e:
        raise classify_git_failure(e.stderr or "", url, credential is not None) from e

    logger.debug("Checked out %s at %s", url, commit_hash)
    return GitSnapshot(root=clone_dir, commit_hash=commit_hash)
