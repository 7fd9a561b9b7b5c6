"""Constants for lfs-ssh-serve."""

from enum import IntEnum

# Version
SERVE_VERSION = "0.1.0"

# Wire framing: every JSON document is followed by this byte
FRAME_TERMINATOR = b"\x00"

# Raw payload copy size
DEFAULT_CHUNK_SIZE = 64 * 1024

# Used for new shard directories when no ancestor mode can be read
DEFAULT_DIR_MODE = 0o755

# Stored objects are immutable once published
OBJECT_FILE_MODE = 0o444

# Staging files live next to their final path under this prefix
STAGING_PREFIX = ".lfs-"

# Configuration lookup
APP_NAME = "lfs-ssh-serve"
CONFIG_FILE = "config.yaml"
CONFIG_ENV_VAR = "LFS_SSH_SERVE_CONFIG"
ENV_PREFIX = "LFS_SSH_SERVE_"


class ExitCode(IntEnum):
    """Process status reported to the invoking layer (sshd)."""

    OK = 0
    BAD_CONFIG = 10
    MISSING_BASE_PATH = 12
    INVALID_BASE_PATH = 14
    DELTA_CACHE = 16
    BAD_REPO_PATH = 18
    READ_FAILURE = 21
    DECODE_FAILURE = 22
    WRITE_FAILURE = 23
    STREAM_INTEGRITY = 33
    INTERNAL = 99
