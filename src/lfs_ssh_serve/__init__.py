"""Serve git-lfs objects over an SSH-invoked stdio session."""

from .constants import SERVE_VERSION as __version__
from .config import ServeConfig, load_config
from .session import Session, serve
from .store import ContentStore
from .transport import Transport

__all__ = [
    "ContentStore",
    "ServeConfig",
    "Session",
    "Transport",
    "__version__",
    "load_config",
    "serve",
]
