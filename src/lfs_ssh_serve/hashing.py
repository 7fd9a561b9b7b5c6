"""Hashing utilities for verifying uploaded content.

LFS oids are bare SHA256 hex digests (no ``sha256:`` scheme prefix), so all
helpers here return plain hex.
"""

from typing import BinaryIO
import hashlib

SHA256_HEX_LENGTH = 64


def is_verifiable(oid: str) -> bool:
    """Only full-length SHA256 oids can be checked against content."""
    return len(oid) == SHA256_HEX_LENGTH


class HashingWriter:
    """File-like sink that hashes everything written through it.

    Wraps the staging file during an upload so the digest is available the
    moment the last payload byte lands, without re-reading the file.
    """

    def __init__(self, target: BinaryIO):
        self._target = target
        self._sha256 = hashlib.sha256()
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        written = self._target.write(data)
        self._sha256.update(data)
        self.bytes_written += len(data)
        return written

    def hexdigest(self) -> str:
        return self._sha256.hexdigest()


__all__ = [
    "SHA256_HEX_LENGTH",
    "HashingWriter",
    "is_verifiable",
]
