"""
Subprocess Environment Utilities
===============================
Helpers for building environment dictionaries for task and git subprocesses.
"""

from __future__ import annotations

import os
from typing import Dict, Iterable, Mapping, Optional


def build_subprocess_env(
    *,
    sanitize_env: bool = False,
    allowlist: Optional[Iterable[str]] = None,
    extra: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Return an environment dict suitable for subprocess execution.

    When sanitize_env is True, only a small allowlist is inherited from the parent
    environment so build commands do not see the runner's secrets.

    Args:
        sanitize_env: If False, inherits the full parent env.
        allowlist: Optional extra allowlist keys to include.
        extra: Variables set on top of whatever was inherited.

    Returns:
        Dict[str, str] to pass as subprocess env.
    """

    base_allowlist = {
        "PATH",
        "HOME",
        "USER",
        "LANG",
        "LC_ALL",
        "LC_CTYPE",
        "TMPDIR",
        "TEMP",
        "TMP",
        "SSL_CERT_FILE",
        "SSL_CERT_DIR",
        "GIT_SSH_COMMAND",
    }

    if allowlist is not None:
        for key in allowlist:
            if isinstance(key, str) and key:
                base_allowlist.add(key)

    parent = os.environ
    if sanitize_env:
        env = {key: parent[key] for key in base_allowlist if key in parent}
    else:
        env = dict(parent)

    if extra:
        env.update({str(k): str(v) for k, v in extra.items()})

    return env


def build_git_env(*, sanitize_env: bool = False) -> Dict[str, str]:
    """Environment for git subprocesses: never prompt for credentials."""
    return build_subprocess_env(
        sanitize_env=sanitize_env,
        extra={"GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"},
    )
