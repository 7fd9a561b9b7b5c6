"""Log sink setup and the per-session logger.

stdout carries the protocol and stderr carries fatal out-of-band messages, so
logging only ever goes to a file. Without a configured file the package
logger gets a NullHandler and stays silent.
"""

import logging
import os
import sys
from typing import Any, Optional, TextIO

from .config import ServeConfig

PACKAGE_LOGGER = "lfs_ssh_serve"
LOG_FORMAT = "%(asctime)s %(message)s"
DATE_FORMAT = "%Y/%m/%d %H:%M:%S"


def configure_logging(config: ServeConfig, stderr: Optional[TextIO] = None) -> logging.Logger:
    """Attach the configured sink to the package logger.

    Args:
        config: Loaded configuration (log_file, debug_log)
        stderr: Where to warn if the log file cannot be opened

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    if not config.log_file:
        logger.addHandler(logging.NullHandler())
        return logger

    try:
        # Append mode is safe with many concurrent sessions writing one file
        handler = logging.FileHandler(config.log_file, mode="a", encoding="utf-8")
    except OSError as e:
        stream = stderr or sys.stderr
        stream.write(
            f"lfs-ssh-serve was unable to initialise logging: {e} (continuing anyway)\n"
        )
        logger.addHandler(logging.NullHandler())
        return logger

    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if config.debug_log else logging.INFO)
    return logger


class SessionLogger(logging.LoggerAdapter):
    """Prefix every line with the process id and repository scope."""

    def __init__(self, logger: logging.Logger, repo_scope: str):
        super().__init__(logger, {"repo_scope": repo_scope, "pid": os.getpid()})
        self.prefix = f"[{self.extra['pid']}][{repo_scope}]: "

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        # The scope comes from the client and may contain '%', so it is passed
        # as an argument whenever the message is %-formatted
        if args:
            super().log(level, "%s" + str(msg), self.prefix, *args, **kwargs)
        else:
            super().log(level, self.prefix + str(msg), **kwargs)


def close_logging() -> None:
    """Flush and close the package logger's handlers at session end."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        handler.flush()
        handler.close()
        logger.removeHandler(handler)
