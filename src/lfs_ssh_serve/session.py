"""Request dispatch loop for one client session.

The loop has a single state, waiting for a frame, and leaves it only on
end-of-stream, an ``Exit`` request or a fatal ``SessionError``:

    frame -> Request -> Exit?          -> end (0)
                     -> unknown method -> error response, continue
                     -> handler        -> response / nothing, continue

Requests are handled strictly one at a time; a handler may read or write
raw bytes on the transport before returning.
"""

from pathlib import Path
from typing import BinaryIO, Optional, TextIO, Union

from pydantic import ValidationError

from .config import ServeConfig
from .constants import ExitCode
from .context import SessionContext
from .errors import FrameDecodeError, SessionError, StreamIntegrityError
from .handlers import HANDLERS
from .models import Method, Request, Response
from .transport import Transport


class Session:
    """One client connection bound to one repository scope."""

    def __init__(self, ctx: SessionContext, stderr: TextIO):
        self.ctx = ctx
        self.stderr = stderr

    def serve(self) -> int:
        """Run until the client leaves or a fatal error occurs.

        Returns:
            ExitCode.OK, or the ``exit_code`` of the fatal error
        """
        logger = self.ctx.logger
        logger.info("Client started session")
        try:
            while True:
                frame = self.ctx.transport.next_frame()
                if frame is None:
                    break

                request = self._decode(frame)
                method = Method.lookup(request.method)
                if method is Method.EXIT:
                    logger.info("Client exited")
                    return ExitCode.OK

                logger.info("Request: %d Method: %s", request.id, request.method)
                response = self._dispatch(method, request)
                if response is None:
                    # Byte-stream success, or Upload that already answered "no"
                    continue

                if response.is_error and method is not None and method.streams_bytes:
                    raise StreamIntegrityError(response.error)
                self.ctx.send(response)
        except SessionError as e:
            self._report(str(e))
            return e.exit_code

        logger.info("Client closed session")
        return ExitCode.OK

    def _decode(self, frame: bytes) -> Request:
        self.ctx.logger.debug("Request JSON: %s", frame.decode("utf-8", errors="replace"))
        try:
            return Request.model_validate_json(frame)
        except ValidationError as e:
            raise FrameDecodeError(frame, e) from e

    def _dispatch(self, method: Optional[Method], request: Request) -> Optional[Response]:
        if method is None:
            return Response.failure(request.id, f"Unknown method {request.method}")
        return HANDLERS[method](request, self.ctx)

    def _report(self, message: str) -> None:
        """Out-of-band report: stderr and the log, never the protocol stream."""
        self.stderr.write(f"{message}\n")
        self.stderr.flush()
        self.ctx.logger.error("%s", message)


def serve(
    reader: BinaryIO,
    writer: BinaryIO,
    stderr: TextIO,
    config: ServeConfig,
    repo_scope: Union[str, Path],
) -> int:
    """Serve one client over an already-open byte stream.

    Args:
        reader: Client-to-server stream (stdin)
        writer: Server-to-client stream (stdout)
        stderr: Text stream for fatal out-of-band messages
        config: Configuration with base_path set
        repo_scope: Repository sub-path under base_path

    Returns:
        Process exit code
    """
    transport = Transport(reader, writer, chunk_size=config.chunk_size)
    ctx = SessionContext.open(transport, config, repo_scope)
    return Session(ctx, stderr).serve()
