"""
Validation Utilities
====================
Path validation helpers for pipeline identities and artifact paths.

Pipeline identities become directory names under <workdir>/pipelines, and
artifact patterns are resolved under a pipeline's working copy, so both are
checked for traversal before they touch the filesystem.
"""

import re
from pathlib import Path, PurePosixPath
from typing import Union

from loguru import logger


# A plain name, or an npm-style "@scope/name" which maps to a nested
# pipelines/@scope/name directory. Only the scope may start with "@", so a
# plain identity can never name another pipeline's scope directory.
_IDENTITY_RE = re.compile(r"^(?:@[A-Za-z0-9][A-Za-z0-9._+-]*/)?[A-Za-z0-9][A-Za-z0-9._@+-]*$")


def validate_identity(identity: str) -> str:
    """
    Validate a pipeline identity for use as a directory under pipelines/.

    Args:
        identity: The pipeline's `domain` or `package` value, e.g.
            "example.com", "left-pad" or "@scope/pkg"

    Returns:
        The identity, stripped

    Raises:
        ValueError: If the identity is empty or not a safe directory name
    """
    if not isinstance(identity, str) or not identity.strip():
        raise ValueError("Pipeline identity must be a non-empty string")

    identity = identity.strip()
    if identity in {".", ".."} or not _IDENTITY_RE.match(identity):
        raise ValueError(f"Pipeline identity is not a safe directory name: {identity!r}")

    return identity


def validate_relative_path(path: str, *, what: str = "path") -> str:
    """
    Validate that a config path is relative and does not escape its base.

    Glob characters are allowed; only absolute paths and '..' segments are
    rejected.

    Raises:
        ValueError: If the path is empty, absolute or contains '..'
    """
    if not isinstance(path, str) or not path.strip():
        raise ValueError(f"{what} must be a non-empty string")

    cleaned = path.strip().replace("\\", "/")
    pure = PurePosixPath(cleaned)
    if pure.is_absolute() or re.match(r"^[A-Za-z]:", cleaned):
        raise ValueError(f"{what} must be relative: {path!r}")
    if ".." in pure.parts:
        raise ValueError(f"{what} must not contain '..': {path!r}")

    return cleaned


def is_within(path: Union[str, Path], base_dir: Union[str, Path]) -> bool:
    """Return True when path resolves to base_dir or somewhere below it."""
    try:
        Path(path).resolve().relative_to(Path(base_dir).resolve())
        return True
    except ValueError:
        logger.warning(f"Path {path} is not under base directory {base_dir}")
        return False
    except OSError as e:
        logger.warning(f"Path validation error for {path}: {e}")
        return False
