"""Bundle name derivation.

Converts source locations like "assets/helm" or
"https://git.example.com/org/repo.git" to names like "assets-helm" or
"org-repo".
"""

import re
from urllib.parse import urlparse


def sanitize_bundle_name(raw: str) -> str:
    """Convert free text to a valid bundle name.

    Rules:
    - Lowercase
    - Replace path separators, spaces, dots and underscores with hyphens
    - Strip all characters except alphanumeric and hyphens
    - Collapse consecutive hyphens
    - Prefix with 'b' if starts with non-letter
    - Minimum 2 characters

    Args:
        raw: The text to sanitize.

    Returns:
        A name matching ^[a-z][a-z0-9]*(-[a-z0-9]+)*$

    Raises:
        ValueError: If the text cannot be sanitized to a valid name.
    """
    name = raw.strip().lower()

    if not name:
        msg = f"Name '{raw}' cannot be sanitized: empty after trimming"
        raise ValueError(msg)

    name = re.sub(r"[ _./\\:]+", "-", name)
    name = re.sub(r"[^a-z0-9-]", "", name)
    name = re.sub(r"-+", "-", name)
    name = name.strip("-")

    if not name:
        msg = f"Name '{raw}' cannot be sanitized: empty after processing"
        raise ValueError(msg)

    if not name[0].isalpha():
        name = "b" + name

    if len(name) < 2:
        msg = f"Name '{raw}' cannot be sanitized: result too short"
        raise ValueError(msg)

    return name


def bundle_name_from_location(location: str, sub_path: str | None = None) -> str:
    """Derive a bundle name from a source location and optional sub-path.

    URLs contribute only their path (the host is dropped, as is a trailing
    ".git"); filesystem paths contribute their last two segments.
    """
    if "://" in location:
        path = urlparse(location).path
    elif "@" in location and ":" in location:
        path = location.split(":", 1)[1]
    else:
        path = "/".join(location.rstrip("/\\").replace("\\", "/").split("/")[-2:])

    path = path.strip("/").removesuffix(".git")
    if sub_path:
        path = f"{path}/{sub_path}"

    return sanitize_bundle_name(path)
