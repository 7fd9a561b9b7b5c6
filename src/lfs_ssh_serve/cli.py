"""CLI for lfs-ssh-serve.

sshd runs this once per connection with the repository path as the only
argument (typically via a forced command in authorized_keys). stdin/stdout
carry the protocol, so every human-readable message goes to stderr.
"""

import logging
import os
import sys
import traceback
from pathlib import Path
from typing import BinaryIO, Optional, TextIO

import typer
from rich.console import Console

from .config import ServeConfig, load_config, resolve_repo_scope
from .constants import SERVE_VERSION, ExitCode
from .errors import ConfigError, InvalidRepoPathError
from .log import PACKAGE_LOGGER, close_logging, configure_logging
from .session import serve
from .utils import dir_exists

app = typer.Typer(
    add_completion=False,
    help="""\
Serve git-lfs objects to one client over stdin/stdout. Objects live in a
content-addressed store under base-path/REPO_PATH.""",
)

logger = logging.getLogger(PACKAGE_LOGGER)


def _outputf(console: Console, message: str) -> None:
    """Report to the user on stderr and to the log."""
    console.print(message, markup=False, highlight=False)
    logger.info("%s", message)


def _ensure_delta_cache(config: ServeConfig) -> None:
    """Create the delta cache directory with base-path's permissions.

    Raises:
        OSError: If base-path cannot be stat'ed or the directory not created
    """
    mode = config.base_path.stat().st_mode & 0o7777
    os.makedirs(config.delta_cache_path, mode=mode, exist_ok=True)


def run(
    repo_path: Optional[str],
    config_path: Optional[Path] = None,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[TextIO] = None,
) -> int:
    """Validate the environment and serve one session.

    Args:
        repo_path: Repository path argument from sshd
        config_path: Explicit configuration file
        stdin: Protocol input (defaults to binary stdin)
        stdout: Protocol output (defaults to binary stdout)
        stderr: Out-of-band messages (defaults to sys.stderr)

    Returns:
        Process exit code
    """
    stdin = stdin if stdin is not None else sys.stdin.buffer
    stdout = stdout if stdout is not None else sys.stdout.buffer
    stderr = stderr if stderr is not None else sys.stderr
    console = Console(file=stderr, soft_wrap=True)

    try:
        return _run(repo_path, config_path, stdin, stdout, stderr, console)
    except Exception:
        # Anything reaching here is a bug; keep the traceback for the operator
        details = traceback.format_exc()
        stderr.write(f"Panic: {details}")
        logger.error("Panic: %s", details)
        return ExitCode.INTERNAL
    finally:
        close_logging()


def _run(
    repo_path: Optional[str],
    config_path: Optional[Path],
    stdin: BinaryIO,
    stdout: BinaryIO,
    stderr: TextIO,
    console: Console,
) -> int:
    try:
        config = load_config(config_path)
    except ConfigError as e:
        _outputf(console, str(e))
        return ExitCode.BAD_CONFIG

    configure_logging(config, stderr)

    if config.base_path is None:
        _outputf(console, "Missing required configuration setting: base-path")
        return ExitCode.MISSING_BASE_PATH
    if not dir_exists(config.base_path):
        _outputf(console, f"Invalid value for base-path: {config.base_path}\nDirectory must exist.")
        return ExitCode.INVALID_BASE_PATH

    if config.delta_cache_path is not None and not dir_exists(config.delta_cache_path):
        try:
            _ensure_delta_cache(config)
        except OSError as e:
            _outputf(console, f"Error creating delta cache path {config.delta_cache_path}: {e}")
            return ExitCode.DELTA_CACHE

    if not repo_path:
        _outputf(console, "Path argument missing, cannot continue")
        return ExitCode.BAD_REPO_PATH
    try:
        repo_scope = resolve_repo_scope(repo_path, config)
    except InvalidRepoPathError as e:
        _outputf(console, str(e))
        return ExitCode.BAD_REPO_PATH

    return serve(stdin, stdout, stderr, config, repo_scope)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lfs-ssh-serve {SERVE_VERSION}")
        raise typer.Exit()


@app.command()
def serve_command(
    repo_path: Optional[str] = typer.Argument(None, help="Repository path, relative to base-path"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file (YAML)"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """Serve one client session on stdin/stdout."""
    raise typer.Exit(int(run(repo_path, config)))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
