"""NUL-delimited framing over one bidirectional byte stream.

Wire format:
  <UTF-8 JSON document> 0x00 <UTF-8 JSON document> 0x00 ...

Some methods interleave a raw binary payload of a length agreed in the JSON
exchange (Upload reads one after its first response, Download writes one
instead of a response). The stream does not say which mode comes next; the
method being handled does. Reads are buffered, so bytes that arrived behind a
frame are handed to ``read_raw``/``copy_to`` before the underlying stream is
touched again.
"""

from __future__ import annotations
import logging
from typing import BinaryIO, Optional, Protocol

from .constants import DEFAULT_CHUNK_SIZE, FRAME_TERMINATOR
from .errors import TransportReadError, TransportWriteError

logger = logging.getLogger(__name__)


class Sink(Protocol):
    """Anything ``copy_to`` can write payload bytes into."""

    def write(self, data: bytes) -> int:
        ...


class Transport:
    """Framer over a reader/writer pair (normally stdin/stdout)."""

    def __init__(self, reader: BinaryIO, writer: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._reader = reader
        self._writer = writer
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        # read1 returns whatever is available instead of blocking for a full chunk
        self._read = getattr(reader, "read1", reader.read)

    # ---- reading ------------------------------------------------------------

    def _fill(self) -> bool:
        """Pull more bytes into the buffer; False at end-of-stream."""
        try:
            chunk = self._read(self._chunk_size)
        except OSError as e:
            raise TransportReadError(f"Unable to read from client: {e}") from e
        if not chunk:
            return False
        self._buffer.extend(chunk)
        return True

    def next_frame(self) -> Optional[bytes]:
        """Return the next frame without its terminator.

        A stream that ends with unterminated bytes is a read failure, not a
        clean end (git-lfs-serve exits 0 in that case).

        Returns:
            Frame bytes, or None on end-of-stream before any byte of a frame

        Raises:
            TransportReadError: On read failure, or if the stream ends in the
                middle of a frame
        """
        scanned = 0
        while True:
            idx = self._buffer.find(FRAME_TERMINATOR, scanned)
            if idx >= 0:
                frame = bytes(self._buffer[:idx])
                del self._buffer[:idx + 1]
                return frame
            scanned = len(self._buffer)
            if not self._fill():
                if self._buffer:
                    pending = len(self._buffer)
                    self._buffer.clear()
                    raise TransportReadError(
                        f"Unable to read from client: stream ended inside a frame ({pending} bytes pending)"
                    )
                return None

    def read_raw(self, n: int) -> bytes:
        """Read up to ``n`` raw bytes; fewer only at end-of-stream."""
        while len(self._buffer) < n:
            if not self._fill():
                break
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        return data

    def copy_to(self, sink: Sink, n: int) -> int:
        """Stream exactly ``n`` raw payload bytes into ``sink``.

        If the sink raises, the rest of the payload is still consumed (and
        dropped) so the next read starts on a frame boundary; the sink's
        error is re-raised once the payload has been drained.

        Returns:
            Number of payload bytes read from the client (< n on end-of-stream)
        """
        remaining = n
        sink_error: Optional[OSError] = None
        while remaining > 0:
            if not self._buffer and not self._fill():
                break
            chunk = bytes(self._buffer[:min(remaining, self._chunk_size)])
            del self._buffer[:len(chunk)]
            remaining -= len(chunk)
            if sink_error is None:
                try:
                    sink.write(chunk)
                except OSError as e:
                    logger.debug("Payload sink failed, draining %d bytes", remaining)
                    sink_error = e
        if sink_error is not None:
            raise sink_error
        return n - remaining

    # ---- writing ------------------------------------------------------------

    def write_frame(self, payload: bytes) -> None:
        """Write one JSON document followed by the terminator."""
        try:
            self._writer.write(payload + FRAME_TERMINATOR)
            self._writer.flush()
        except OSError as e:
            raise TransportWriteError(f"Unable to write to client: {e}") from e

    def write_raw(self, data: bytes) -> None:
        try:
            self._writer.write(data)
        except OSError as e:
            raise TransportWriteError(f"Unable to write to client: {e}") from e

    def send_file(self, source: BinaryIO) -> int:
        """Copy ``source`` to the client in chunks.

        Returns:
            Number of bytes written
        """
        sent = 0
        for chunk in iter(lambda: source.read(self._chunk_size), b""):
            self.write_raw(chunk)
            sent += len(chunk)
        self.flush()
        return sent

    def flush(self) -> None:
        try:
            self._writer.flush()
        except OSError as e:
            raise TransportWriteError(f"Unable to write to client: {e}") from e
