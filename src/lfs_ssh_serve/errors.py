"""Custom exceptions for lfs-ssh-serve.

Two families matter to the session loop: everything under ``StoreError`` (and
parameter validation) is recoverable and becomes a JSON error response, while
``SessionError`` subclasses end the session and carry the process exit code.
"""

from .constants import ExitCode


class ServeError(RuntimeError):
    """Base class for all lfs-ssh-serve errors."""
    pass


# Configuration Errors
class ConfigError(ServeError):
    """Configuration could not be loaded or is invalid."""
    pass


class InvalidRepoPathError(ConfigError):
    """Repository path argument rejected."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Path argument {path} invalid, {reason}")


# Object Errors
class InvalidOidError(ServeError, ValueError):
    """OID is not usable as a storage key."""

    def __init__(self, oid: str):
        self.oid = oid
        super().__init__(
            f"Invalid oid {oid!r}: must be at least 4 lower-case hex characters"
        )


# Storage Errors
class StoreError(ServeError):
    """Base class for content store errors."""
    pass


class ShortReadError(StoreError):
    """Client sent fewer payload bytes than it declared."""

    def __init__(self, received: int, expected: int):
        self.received = received
        self.expected = expected
        super().__init__(
            f"Received wrong number of bytes {received} (expected {expected})"
        )


class ContentMismatchError(StoreError):
    """Uploaded bytes do not hash to the oid they were sent as."""

    def __init__(self, oid: str, actual: str):
        self.oid = oid
        self.actual = actual
        super().__init__(
            f"Content mismatch for {oid}\n"
            f"  Got: {actual}\n"
            f"The upload was discarded."
        )


class PublishError(StoreError):
    """Staged object could not be moved into place."""

    def __init__(self, oid: str, cause: Exception):
        self.oid = oid
        super().__init__(f"Unable to publish {oid}: {cause}")


# Session Errors
class SessionError(ServeError):
    """Fatal condition; the session ends with ``exit_code``."""

    exit_code = ExitCode.INTERNAL


class TransportReadError(SessionError):
    """Reading from the client failed."""

    exit_code = ExitCode.READ_FAILURE


class FrameDecodeError(SessionError):
    """A frame was not a valid request document."""

    exit_code = ExitCode.DECODE_FAILURE

    def __init__(self, frame: bytes, cause: Exception):
        self.frame = frame
        text = frame.decode("utf-8", errors="replace")
        super().__init__(f"Unable to unmarshal JSON: {text}: {cause}")


class TransportWriteError(SessionError):
    """Writing to the client failed."""

    exit_code = ExitCode.WRITE_FAILURE


class StreamIntegrityError(SessionError):
    """A byte-stream method failed; there is no JSON channel to report on."""

    exit_code = ExitCode.STREAM_INTEGRITY
