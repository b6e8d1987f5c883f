"""Resource collection.

Turns retrieved content (a directory tree or a chart archive) into a flat
list of path-addressed resources. Nothing outside the declared root is ever
read: escaping paths either fail the collection or are skipped, depending on
the on_escape setting.
"""

import io
import logging
import os
import tarfile
from pathlib import Path, PurePosixPath
from typing import Literal

from bundlesmith.bundle import Resource, ensure_unique_paths
from bundlesmith.errors import InvalidArchiveError, PathTraversalError, SourceNotFoundError

logger = logging.getLogger(__name__)

EscapePolicy = Literal["error", "skip"]

IGNORED_DIRS = frozenset({".git"})


def _reject_or_skip(path: str, root: str, on_escape: EscapePolicy) -> None:
    if on_escape == "error":
        raise PathTraversalError(path, root)
    logger.warning("Skipping '%s': outside collection root '%s'", path, root)


def resolve_sub_path(root: Path, sub_path: str | None) -> Path:
    """Join sub_path onto root, refusing anything that escapes root.

    Raises:
        PathTraversalError: If sub_path is absolute or climbs out of root.
    """
    if not sub_path:
        return root

    parts = PurePosixPath(sub_path.replace("\\", "/")).parts
    if parts and (parts[0] == "/" or ".." in parts):
        raise PathTraversalError(sub_path, str(root))

    target = root.joinpath(*parts)
    if not target.resolve().is_relative_to(root.resolve()):
        raise PathTraversalError(sub_path, str(root))
    return target


def collect_directory(
    root: Path,
    sub_path: str | None = None,
    on_escape: EscapePolicy = "error",
) -> list[Resource]:
    """Collect every regular file under root/sub_path.

    Directories are not resources and .git directories are skipped. Paths are
    relative to root/sub_path and use forward slashes. Order is unspecified.

    Args:
        root: Retrieved content root.
        sub_path: Optional subtree to restrict collection to.
        on_escape: "error" to fail on symlinks leading outside the root,
            "skip" to leave them out.

    Returns:
        Collected resources.

    Raises:
        SourceNotFoundError: If the collection root does not exist.
        PathTraversalError: If a path escapes the root and on_escape is "error".
    """
    base = resolve_sub_path(root, sub_path)
    if not base.is_dir():
        msg = f"Collection root '{base}' is not a directory"
        raise SourceNotFoundError(msg)

    real_base = base.resolve()
    resources: list[Resource] = []

    for dirpath, dirnames, filenames in os.walk(base, followlinks=False):
        current = Path(dirpath)
        kept_dirs = []
        for dirname in dirnames:
            if dirname in IGNORED_DIRS:
                continue
            candidate = current / dirname
            if candidate.is_symlink():
                rel = candidate.relative_to(base).as_posix()
                if not candidate.resolve().is_relative_to(real_base):
                    _reject_or_skip(rel, str(base), on_escape)
                    continue
                # collected once, under the real path
                continue
            kept_dirs.append(dirname)
        dirnames[:] = sorted(kept_dirs)

        for filename in filenames:
            path = current / filename
            rel = path.relative_to(base).as_posix()
            if not path.resolve().is_relative_to(real_base):
                _reject_or_skip(rel, str(base), on_escape)
                continue
            if not path.is_file():
                continue
            resources.append(Resource(path=rel, content=path.read_bytes()))

    ensure_unique_paths(resources)
    logger.debug("Collected %d files under %s", len(resources), base)
    return resources


def _archive_member_path(name: str) -> PurePosixPath | None:
    """Normalized relative path of an archive member, or None if it escapes."""
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        return None
    parts = [p for p in path.parts if p != "."]
    if not parts:
        return None
    return PurePosixPath(*parts)


def collect_archive(
    data: bytes,
    prefix: str = "",
    on_escape: EscapePolicy = "error",
) -> list[Resource]:
    """Collect the regular files of a gzip-compressed tarball.

    Args:
        data: Archive bytes.
        prefix: Path prefix prepended to every member path.
        on_escape: "error" to fail on absolute, climbing or link members,
            "skip" to leave them out.

    Raises:
        PathTraversalError: If a member escapes and on_escape is "error".
        InvalidArchiveError: If the archive is unreadable.
    """
    root = prefix.rstrip("/") or "."
    resources: list[Resource] = []

    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            for member in archive.getmembers():
                if member.isdir():
                    continue

                rel = _archive_member_path(member.name)
                if rel is None or member.issym() or member.islnk():
                    _reject_or_skip(member.name, root, on_escape)
                    continue

                if not member.isfile():
                    logger.debug("Skipping special archive member %s", member.name)
                    continue

                extracted = archive.extractfile(member)
                if extracted is None:
                    continue
                path = f"{root}/{rel.as_posix()}" if prefix else rel.as_posix()
                resources.append(Resource(path=path, content=extracted.read()))
    except (tarfile.TarError, EOFError, OSError) as e:
        msg = f"Unreadable chart archive: {e}"
        raise InvalidArchiveError(msg) from e

    ensure_unique_paths(resources)
    return resources
