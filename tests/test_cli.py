"""Tests for process bootstrap and exit codes."""

import io
import os
import stat
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from lfs_ssh_serve import config as config_module
from lfs_ssh_serve.cli import app, run
from lfs_ssh_serve.constants import SERVE_VERSION, ExitCode
from tests.fixtures.protocol_client import exit_frame, frame, oid_of, split_frames


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """No developer config files or environment overrides leak in."""
    monkeypatch.setattr(config_module, "_candidate_files", lambda: [])
    for name in list(os.environ):
        if name.startswith("LFS_SSH_SERVE_"):
            monkeypatch.delenv(name)


@pytest.fixture
def write_config(tmp_path):
    def _write(**settings) -> str:
        path = tmp_path / "serve.yaml"
        lines = [f"{key.replace('_', '-')}: {value}" for key, value in settings.items()]
        path.write_text("\n".join(lines) + "\n")
        return path
    return _write


def invoke(repo_path, config_path, stdin: bytes = b""):
    """Call run() over in-memory streams; returns (code, stdout bytes, stderr text)."""
    out = io.BytesIO()
    err = io.StringIO()
    code = run(repo_path, config_path, io.BytesIO(stdin), out, err)
    return code, out.getvalue(), err.getvalue()


class TestStartupFailures:
    """Each startup check has its own exit code."""

    def test_missing_config_file(self, tmp_path):
        code, out, err = invoke("repo", tmp_path / "absent.yaml")

        assert code == ExitCode.BAD_CONFIG
        assert out == b""
        assert "Configuration file not found" in err

    def test_malformed_config(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("base-path: [oops\n")

        code, _, _ = invoke("repo", path)

        assert code == ExitCode.BAD_CONFIG

    def test_base_path_missing(self, write_config):
        code, _, err = invoke("repo", write_config(debug_log="false"))

        assert code == ExitCode.MISSING_BASE_PATH
        assert "Missing required configuration setting: base-path" in err

    def test_base_path_not_a_directory(self, write_config, tmp_path):
        code, _, err = invoke("repo", write_config(base_path=tmp_path / "nowhere"))

        assert code == ExitCode.INVALID_BASE_PATH
        assert "Invalid value for base-path" in err
        assert "Directory must exist." in err

    def test_delta_cache_cannot_be_created(self, write_config, base_path, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")

        code, _, err = invoke("repo", write_config(base_path=base_path, delta_cache_path=blocker / "cache"))

        assert code == ExitCode.DELTA_CACHE
        assert "Error creating delta cache path" in err

    def test_repo_path_missing(self, write_config, base_path):
        code, _, err = invoke(None, write_config(base_path=base_path))

        assert code == ExitCode.BAD_REPO_PATH
        assert "Path argument missing" in err

    @pytest.mark.parametrize("repo_path", ["../elsewhere", "/abs/repo"])
    def test_repo_path_rejected(self, write_config, base_path, repo_path):
        code, out, err = invoke(repo_path, write_config(base_path=base_path))

        assert code == ExitCode.BAD_REPO_PATH
        assert out == b""
        assert "invalid" in err

    def test_env_supplies_base_path(self, write_config, base_path, monkeypatch):
        monkeypatch.setenv("LFS_SSH_SERVE_BASE_PATH", str(base_path))

        code, _, _ = invoke("repo", write_config(debug_log="false"), exit_frame())

        assert code == ExitCode.OK


class TestServing:
    """A healthy startup hands the streams to the session."""

    def test_upload_then_check(self, write_config, base_path):
        content = b"served through the cli"
        oid = oid_of(content)
        stdin = (
            frame(1, "Upload", {"oid": oid, "size": len(content)})
            + content
            + frame(2, "DownloadCheck", {"oid": oid})
            + exit_frame()
        )

        code, out, err = invoke("team/repo", write_config(base_path=base_path), stdin)

        assert code == ExitCode.OK
        assert err == ""
        assert split_frames(out) == [
            {"id": 1, "result": {"okToSend": True}},
            {"id": 1, "result": {"receivedOk": True}},
            {"id": 2, "result": {"size": len(content)}},
        ]
        assert (base_path / "team" / "repo" / oid[0:2] / oid[2:4] / oid).read_bytes() == content

    def test_session_failure_status_is_returned(self, write_config, base_path):
        code, _, _ = invoke("repo", write_config(base_path=base_path), b"garbage\x00")

        assert code == ExitCode.DECODE_FAILURE

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
    def test_delta_cache_created_with_base_mode(self, write_config, base_path, tmp_path):
        base_path.chmod(0o750)
        delta = tmp_path / "delta"

        code, _, _ = invoke("repo", write_config(base_path=base_path, delta_cache_path=delta), exit_frame())

        assert code == ExitCode.OK
        assert delta.is_dir()
        assert stat.S_IMODE(delta.stat().st_mode) == 0o750

    def test_unexpected_exception_is_a_panic(self, write_config, base_path):
        with patch("lfs_ssh_serve.cli.serve", side_effect=RuntimeError("boom")):
            code, out, err = invoke("repo", write_config(base_path=base_path))

        assert code == ExitCode.INTERNAL
        assert out == b""
        assert err.startswith("Panic: ")
        assert "RuntimeError: boom" in err


class TestLogging:
    """Log file sink behaviour."""

    def test_session_lines_written_to_log_file(self, write_config, base_path, tmp_path):
        log_file = tmp_path / "serve.log"
        cfg = write_config(base_path=base_path, log_file=log_file)

        code, _, _ = invoke("team/repo", cfg, frame(4, "DownloadCheck", {"oid": "ab" * 32}) + exit_frame())

        assert code == ExitCode.OK
        text = log_file.read_text()
        prefix = f"[{os.getpid()}][team/repo]: "
        assert prefix + "Client started session" in text
        assert prefix + "Request: 4 Method: DownloadCheck" in text
        assert prefix + "Client exited" in text
        # Request bodies are debug-only
        assert "Request JSON" not in text

    def test_percent_in_repo_path_is_logged_verbatim(self, write_config, base_path, tmp_path, capsys):
        log_file = tmp_path / "serve.log"
        cfg = write_config(base_path=base_path, log_file=log_file)

        code, _, err = invoke("team%d/repo", cfg, frame(1, "DownloadCheck", {"oid": "ab" * 32}) + exit_frame())

        assert code == ExitCode.OK
        assert err == ""
        assert "Logging error" not in capsys.readouterr().err
        text = log_file.read_text()
        prefix = f"[{os.getpid()}][team%d/repo]: "
        assert prefix + "Client started session" in text
        assert prefix + "Request: 1 Method: DownloadCheck" in text
        assert prefix + "Response 1: Sent." in text

    def test_debug_log_includes_request_json(self, write_config, base_path, tmp_path):
        log_file = tmp_path / "debug.log"
        cfg = write_config(base_path=base_path, log_file=log_file, debug_log="true")

        invoke("repo", cfg, frame(1, "DownloadCheck", {"oid": "ab" * 32}))

        assert "Request JSON" in log_file.read_text()

    def test_log_file_is_appended(self, write_config, base_path, tmp_path):
        log_file = tmp_path / "shared.log"
        log_file.write_text("earlier session\n")
        cfg = write_config(base_path=base_path, log_file=log_file)

        invoke("repo", cfg, exit_frame())

        text = log_file.read_text()
        assert text.startswith("earlier session\n")
        assert "Client started session" in text

    def test_unwritable_log_file_only_warns(self, write_config, base_path, tmp_path):
        cfg = write_config(base_path=base_path, log_file=tmp_path / "no-such-dir" / "serve.log")

        code, _, err = invoke("repo", cfg, exit_frame())

        assert code == ExitCode.OK
        assert "unable to initialise logging" in err
        assert "continuing anyway" in err

    def test_fatal_errors_are_logged(self, write_config, base_path, tmp_path):
        log_file = tmp_path / "serve.log"
        cfg = write_config(base_path=base_path, log_file=log_file)

        invoke("repo", cfg, frame(1, "Download", {"oid": "ab" * 32, "size": 3}))

        assert "File doesn't exist" in log_file.read_text()


class TestCommandLine:
    """The typer entry point."""

    def test_version(self):
        result = CliRunner().invoke(app, ["--version"])

        assert result.exit_code == 0
        assert SERVE_VERSION in result.output

    def test_exit_code_propagates(self, tmp_path):
        result = CliRunner().invoke(app, ["--config", str(tmp_path / "absent.yaml"), "repo"])

        assert result.exit_code == ExitCode.BAD_CONFIG
