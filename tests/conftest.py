"""Shared test fixtures and utilities."""

import io
import logging
import socket
import threading
from typing import List, Optional

import pytest

from lfs_ssh_serve.config import ServeConfig
from lfs_ssh_serve.log import PACKAGE_LOGGER
from lfs_ssh_serve.session import serve
from lfs_ssh_serve.store import ContentStore
from tests.fixtures.protocol_client import LfsClient, oid_of, split_frames

REPO_SCOPE = "test/repo"


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers added by a test so later tests never write to its log file."""
    yield
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def base_path(tmp_path):
    path = tmp_path / "lfs-store"
    path.mkdir()
    return path


@pytest.fixture
def config(base_path):
    return ServeConfig(base_path=base_path)


@pytest.fixture
def store(base_path):
    return ContentStore(base_path, REPO_SCOPE)


@pytest.fixture
def put_object(store):
    """Factory fixture to place an object directly in the store."""
    def _put(content: bytes) -> str:
        oid = oid_of(content)
        with store.staging(oid) as staged:
            staged.file.write(content)
            staged.publish()
        return oid
    return _put


class SessionRun:
    """Result of running a whole session over in-memory streams."""

    def __init__(self, code: int, output: bytes, stderr: str):
        self.code = code
        self.output = output
        self.stderr = stderr

    @property
    def frames(self) -> List[dict]:
        return split_frames(self.output)


@pytest.fixture
def run_session(config):
    """Run one session over BytesIO streams and capture everything it wrote."""
    def _run(input_bytes: bytes, cfg: Optional[ServeConfig] = None, scope: str = REPO_SCOPE) -> SessionRun:
        out = io.BytesIO()
        err = io.StringIO()
        code = serve(io.BytesIO(input_bytes), out, err, cfg or config, scope)
        return SessionRun(code, out.getvalue(), err.getvalue())
    return _run


@pytest.fixture
def live_session(config):
    """Factory fixture starting real sessions in threads over socket pairs.

    Returns (client, result, thread); ``result`` gets ``code`` and ``stderr``
    once the session ends.
    """
    started = []

    def _start(scope: str = REPO_SCOPE):
        cli_sock, srv_sock = socket.socketpair()
        srv_in = srv_sock.makefile("rb")
        srv_out = srv_sock.makefile("wb")
        err = io.StringIO()
        result = {}

        def target():
            try:
                result["code"] = serve(srv_in, srv_out, err, config, scope)
                result["stderr"] = err.getvalue()
            finally:
                srv_out.close()
                srv_in.close()
                srv_sock.close()

        thread = threading.Thread(target=target, daemon=True)
        thread.start()
        started.append(thread)
        return LfsClient(cli_sock), result, thread

    yield _start

    for thread in started:
        thread.join(timeout=5)
