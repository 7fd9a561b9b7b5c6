"""Utility functions for lfs-ssh-serve."""

import os
from pathlib import Path


def humanize_size(size: float) -> str:
    """Convert bytes to human-readable format."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def dir_exists(path: Path) -> bool:
    """True if ``path`` exists and is a directory (stat errors count as no)."""
    try:
        return Path(path).is_dir()
    except OSError:
        return False


def normalize_repo_path(raw: str) -> str:
    """Lexically clean a repository path argument (``a//b/./c`` -> ``a/b/c``)."""
    return os.path.normpath(raw)
