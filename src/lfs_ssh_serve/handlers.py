"""Method handlers.

Each handler takes the decoded request and the session context and returns
a ``Response`` (a result or a recoverable error) or None when nothing more
should be written. Fatal conditions are ``SessionError`` exceptions and are
left to propagate to the session loop.
"""

import contextlib
import functools
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from .context import SessionContext
from .errors import ContentMismatchError, ShortReadError, StoreError, TransportWriteError
from .hashing import HashingWriter, is_verifiable
from .models import (
    BatchAction,
    BatchParams,
    BatchResult,
    BatchResultObject,
    DownloadCheckParams,
    DownloadCheckResult,
    DownloadParams,
    Method,
    Request,
    Response,
    UploadCompleteResult,
    UploadParams,
    UploadResult,
)
from .store import StagedObject
from .utils import humanize_size

Handler = Callable[[Request, SessionContext], Optional[Response]]


def _parse(model: type, request: Request) -> BaseModel:
    params = request.params if request.params is not None else {}
    if not isinstance(params, dict):
        raise ValueError(f"Invalid params for {request.method}: expected a JSON object")
    return model.model_validate(params)


def _recoverable(func: Handler) -> Handler:
    """Turn per-request failures into an error response for the same id.

    Parameter validation errors (pydantic raises ValueError subclasses),
    store errors and local filesystem errors are all recoverable.
    """

    @functools.wraps(func)
    def wrapper(request: Request, ctx: SessionContext) -> Optional[Response]:
        try:
            return func(request, ctx)
        except (ValueError, StoreError, OSError) as e:
            return Response.failure(request.id, str(e))

    return wrapper


@_recoverable
def upload_check(request: Request, ctx: SessionContext) -> Optional[Response]:
    params = _parse(UploadParams, request)
    ok_to_send = not ctx.store.exists(params.oid)
    return Response.success(request.id, UploadResult(okToSend=ok_to_send))


@_recoverable
def upload(request: Request, ctx: SessionContext) -> Optional[Response]:
    """Two-phase upload.

    Phase 1 answers like UploadCheck and is written immediately. When the
    object is missing, the staging file is opened *before* saying yes so a
    failure there is reported while the client is still waiting for JSON
    rather than after it has started streaming bytes.
    """
    params = _parse(UploadParams, request)

    if ctx.store.exists(params.oid):
        ctx.send(Response.success(request.id, UploadResult(okToSend=False)))
        ctx.logger.info("Upload %s: already present", params.oid)
        return None

    with contextlib.ExitStack() as stack:
        try:
            staged = stack.enter_context(ctx.store.staging(params.oid))
        except OSError as e:
            return Response.failure(request.id, f"Error opening media file buffer. {e}")

        ctx.send(Response.success(request.id, UploadResult(okToSend=True)))

        try:
            _receive(ctx, params, staged)
        except OSError as e:
            return Response.failure(request.id, f"Problem uploading data: {e}")

    ctx.logger.info("Upload %s: received %s", params.oid, humanize_size(params.size))
    return Response.success(request.id, UploadCompleteResult(receivedOk=True))


def _receive(ctx: SessionContext, params: UploadParams, staged: StagedObject) -> None:
    """Read the declared payload into ``staged`` and publish it.

    Raises:
        ShortReadError: If the client sent fewer bytes than declared
        ContentMismatchError: If verification is on and the hash differs
        PublishError: If the final rename fails
        OSError: If writing the staging file fails
    """
    sink = HashingWriter(staged.file)
    received = ctx.transport.copy_to(sink, params.size)
    if received != params.size:
        raise ShortReadError(received, params.size)

    if ctx.config.verify_content and is_verifiable(params.oid):
        actual = sink.hexdigest()
        if actual != params.oid:
            raise ContentMismatchError(params.oid, actual)

    staged.publish()


@_recoverable
def download_check(request: Request, ctx: SessionContext) -> Optional[Response]:
    params = _parse(DownloadCheckParams, request)
    size = ctx.store.size_of(params.oid)
    return Response.success(request.id, DownloadCheckResult(size=-1 if size is None else size))


@_recoverable
def download(request: Request, ctx: SessionContext) -> Optional[Response]:
    """Stream the object as raw bytes. Only errors produce a Response."""
    params = _parse(DownloadParams, request)

    size = ctx.store.size_of(params.oid)
    if size is None:
        return Response.failure(request.id, "File doesn't exist")
    if size != params.size:
        return Response.failure(
            request.id, f"File sizes disagree (client: {params.size} server: {size})"
        )

    try:
        with ctx.store.open_object(params.oid) as f:
            sent = ctx.transport.send_file(f)
    except (OSError, TransportWriteError) as e:
        return Response.failure(request.id, f"Error copying data to output: {e}")

    if sent != size:
        return Response.failure(
            request.id, f"Amount of data copied disagrees (expected: {size} actual: {sent})"
        )
    ctx.logger.info("Download %s: sent %s", params.oid, humanize_size(sent))
    return None


@_recoverable
def batch(request: Request, ctx: SessionContext) -> Optional[Response]:
    params = _parse(BatchParams, request)

    result = BatchResult()
    for obj in params.objects:
        size = ctx.store.size_of(obj.oid)
        if size is None:
            entry = BatchResultObject(oid=obj.oid, action=BatchAction.UPLOAD, size=obj.size)
        else:
            entry = BatchResultObject(oid=obj.oid, action=BatchAction.DOWNLOAD, size=size)
        result.results.append(entry)
    return Response.success(request.id, result)


HANDLERS: Dict[Method, Handler] = {
    Method.BATCH: batch,
    Method.UPLOAD_CHECK: upload_check,
    Method.UPLOAD: upload,
    Method.DOWNLOAD_CHECK: download_check,
    Method.DOWNLOAD: download,
}

_CONTROL_METHODS = {Method.EXIT}

_unhandled = set(Method) - _CONTROL_METHODS - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"No handler registered for: {sorted(m.value for m in _unhandled)}")
