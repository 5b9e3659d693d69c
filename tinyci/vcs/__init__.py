"""Version-control access for pipeline working copies."""

from .git import GitClient, VersionControl, ensure_git_available

__all__ = ["GitClient", "VersionControl", "ensure_git_available"]
