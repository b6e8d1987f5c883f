"""Git operations for bundlesmith.

Thin wrappers over the git binary. Every call takes an explicit environment
and timeout so that a resolution never picks up ambient credentials or hangs.
"""

import subprocess
from collections.abc import Mapping
from pathlib import Path


def is_git_available() -> bool:
    """Check if git command is available on the system.

    Returns:
        True if git is available, False otherwise.
    """
    try:
        subprocess.run(
            ["git", "--version"],
            capture_output=True,
            check=True,
        )
        return True
    except FileNotFoundError:
        return False


def run_git(
    args: list[str],
    *,
    env: Mapping[str, str],
    timeout: float,
    cwd: Path | None = None,
) -> str:
    """Run a git command and return its stdout.

    Raises:
        subprocess.CalledProcessError: If git exits non-zero.
        subprocess.TimeoutExpired: If git runs longer than timeout.
    """
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env=dict(env),
        check=True,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    return result.stdout


def sparse_clone(
    url: str,
    clone_dir: Path,
    *,
    env: Mapping[str, str],
    timeout: float,
    branch: str | None = None,
) -> None:
    """Clone a repo with blob filtering and sparse checkout enabled.

    Clones with --filter=blob:none (fetches commit graph but no file content)
    so blobs are only materialized for the paths selected later.

    Args:
        url: Git URL to clone.
        clone_dir: Target directory for the clone.
        env: Environment for the git process.
        timeout: Seconds before the clone is abandoned.
        branch: Branch to clone instead of the remote HEAD.
    """
    args = ["clone", "--filter=blob:none", "--sparse"]
    if branch:
        args += ["--branch", branch]
    run_git([*args, "--", url, str(clone_dir)], env=env, timeout=timeout)


def checkout(clone_dir: Path, ref: str, *, env: Mapping[str, str], timeout: float) -> None:
    """Check out a commit, tag or branch in a cloned repo."""
    run_git(["checkout", "--detach", ref], cwd=clone_dir, env=env, timeout=timeout)


def sparse_checkout(
    clone_dir: Path,
    patterns: list[str],
    *,
    env: Mapping[str, str],
    timeout: float,
) -> None:
    """Set sparse-checkout patterns in non-cone mode.

    Args:
        clone_dir: Path to the cloned repo.
        patterns: Sparse checkout patterns (e.g. ["/manifests/"]).
        env: Environment for the git process.
        timeout: Seconds before the command is abandoned.
    """
    run_git(
        ["sparse-checkout", "set", "--no-cone", *patterns],
        cwd=clone_dir,
        env=env,
        timeout=timeout,
    )


def get_commit_hash(clone_dir: Path, *, env: Mapping[str, str], timeout: float) -> str:
    """Get the HEAD commit hash from a git repo.

    Returns:
        The full 40-char commit hash.
    """
    return run_git(["rev-parse", "HEAD"], cwd=clone_dir, env=env, timeout=timeout).strip()
