"""Session context handed to every method handler."""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Union

from .config import ServeConfig
from .log import SessionLogger
from .models import Response
from .store import ContentStore
from .transport import Transport


@dataclass
class SessionContext:
    """Everything one session owns, built once at session start.

    Handlers get this instead of reaching for module globals: the live
    transport, the store for this session's repository, the configuration
    and a logger that tags lines with the session.
    """

    transport: Transport
    config: ServeConfig
    repo_scope: str
    store: ContentStore = field(init=False)
    logger: logging.LoggerAdapter = field(init=False)

    def __post_init__(self):
        if self.config.base_path is None:
            raise ValueError("base_path must be configured before a session starts")
        self.store = ContentStore(self.config.base_path, self.repo_scope)
        self.logger = SessionLogger(logging.getLogger("lfs_ssh_serve.session"), self.repo_scope)

    def send(self, response: Response) -> None:
        """Encode and write one response frame.

        Raises:
            TransportWriteError: If the client can no longer be written to
        """
        payload = response.to_wire()
        self.logger.info("Response %d: Sending...", response.id)
        self.logger.debug("Response JSON: %s", payload.decode("utf-8"))
        self.transport.write_frame(payload)
        self.logger.info("Response %d: Sent.", response.id)

    @classmethod
    def open(cls, transport: Transport, config: ServeConfig, repo_scope: Union[str, Path]) -> "SessionContext":
        return cls(transport=transport, config=config, repo_scope=str(repo_scope))
