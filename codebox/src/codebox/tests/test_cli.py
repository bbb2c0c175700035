"""
Tests for the Codebox CLI

Tests command structure and request/response handling against a mocked API.
"""

import json
import os
from unittest.mock import MagicMock, patch

import pytest

# Try to import click for testing
try:
    from click.testing import CliRunner
    CLICK_AVAILABLE = True
except ImportError:
    CLICK_AVAILABLE = False

# Try to import the CLI
try:
    from codebox.cli.main import cli, format_table, parse_env, parse_files
    CLI_AVAILABLE = True
except ImportError:
    CLI_AVAILABLE = False


pytestmark = pytest.mark.skipif(not CLICK_AVAILABLE or not CLI_AVAILABLE, reason="Click or CLI not available")


def _response(status_code=200, data=None):
    response = MagicMock()
    response.status_code = status_code
    response.content = json.dumps(data).encode() if data is not None else b""
    response.json.return_value = data
    return response


RESULT_OK = {
    "success": True,
    "sessionId": "s-1",
    "output": "hi\n",
    "error": None,
    "stderr": "",
    "exitCode": 0,
    "executionTime": 12,
    "timedOut": False,
    "artifacts": [],
}


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_env():
    """The CLI writes its options back into the environment."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("CODEBOX_")}
    with patch.dict(os.environ, env, clear=True):
        yield


@pytest.fixture
def mock_request():
    with patch("codebox.cli.main.requests.request") as request:
        yield request


class TestCLIStructure:
    """Tests for CLI command structure."""

    def test_cli_help(self, runner):
        """Test CLI help command."""
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Codebox CLI" in result.output

    def test_version(self, runner):
        """Test version command."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_session_help(self, runner):
        """Test session group lists its commands."""
        result = runner.invoke(cli, ["session", "--help"])
        assert result.exit_code == 0
        for name in ("create", "show", "exec", "artifacts", "delete"):
            assert name in result.output

    def test_server_help(self, runner):
        """Test server group lists its commands."""
        result = runner.invoke(cli, ["server", "--help"])
        assert result.exit_code == 0
        for name in ("start", "health", "stats", "sweep"):
            assert name in result.output


class TestExecCommand:
    """Tests for one-shot execution."""

    def test_exec_file(self, runner, mock_request, tmp_path):
        """Source file content is sent with the language."""
        source = tmp_path / "hello.py"
        source.write_text("print('hi')")
        mock_request.return_value = _response(200, RESULT_OK)

        result = runner.invoke(cli, ["exec", "python", str(source), "--timeout", "5000"])

        assert result.exit_code == 0
        assert "hi" in result.output
        method, url = mock_request.call_args.args
        assert method == "POST"
        assert url == "http://localhost:8000/sandbox/execute"
        assert mock_request.call_args.kwargs["json"] == {
            "code": "print('hi')",
            "language": "python",
            "timeout": 5000,
        }

    def test_exec_stdin(self, runner, mock_request):
        mock_request.return_value = _response(200, RESULT_OK)
        result = runner.invoke(cli, ["exec", "python", "-"], input="print(2)\n")
        assert result.exit_code == 0
        assert mock_request.call_args.kwargs["json"]["code"] == "print(2)\n"

    def test_exec_files_and_env(self, runner, mock_request, tmp_path):
        source = tmp_path / "main.py"
        source.write_text("print(1)")
        data = tmp_path / "input.csv"
        data.write_text("a,b")
        mock_request.return_value = _response(200, RESULT_OK)

        result = runner.invoke(cli, [
            "exec", "python", str(source),
            "-f", f"data/input.csv={data}",
            "-e", "MODE=test",
        ])

        assert result.exit_code == 0
        body = mock_request.call_args.kwargs["json"]
        assert body["files"] == [{"path": "data/input.csv", "content": "a,b"}]
        assert body["env"] == {"MODE": "test"}

    def test_failed_run_exits_non_zero(self, runner, mock_request):
        failed = dict(RESULT_OK, success=False, output="", error="Execution timeout (100ms)", timedOut=True)
        mock_request.return_value = _response(200, failed)

        result = runner.invoke(cli, ["exec", "python", "-"], input="while True: pass")

        assert result.exit_code == 1
        assert "Execution timeout" in result.output
        assert "[timed out]" in result.output

    def test_json_output(self, runner, mock_request):
        mock_request.return_value = _response(200, RESULT_OK)
        result = runner.invoke(cli, ["exec", "python", "-", "--json"], input="print(1)")
        assert result.exit_code == 0
        assert '"sessionId": "s-1"' in result.output

    def test_validation_error(self, runner, mock_request):
        mock_request.return_value = _response(400, {"detail": "Unsupported language: ruby"})
        result = runner.invoke(cli, ["exec", "ruby", "-"], input="puts 1")
        assert result.exit_code == 1
        assert "Unsupported language: ruby" in result.output

    def test_user_id_header(self, runner, mock_request):
        mock_request.return_value = _response(200, RESULT_OK)
        result = runner.invoke(cli, ["--user-id", "42", "exec", "python", "-"], input="print(1)")
        assert result.exit_code == 0
        assert mock_request.call_args.kwargs["headers"]["X-User-ID"] == "42"

    def test_connection_error(self, runner, mock_request):
        import requests
        mock_request.side_effect = requests.exceptions.ConnectionError()
        result = runner.invoke(cli, ["exec", "python", "-"], input="print(1)")
        assert result.exit_code == 1
        assert "Could not connect" in result.output


class TestSessionCommands:
    """Tests for session commands."""

    def test_create(self, runner, mock_request):
        mock_request.return_value = _response(200, {
            "success": True,
            "session": {"id": "s-9", "language": "python", "status": "running", "networkPolicy": "none"},
        })

        result = runner.invoke(cli, ["session", "create", "python", "--memory", "512M", "--timeout", "1000"])

        assert result.exit_code == 0
        assert "Session created: s-9" in result.output
        assert mock_request.call_args.kwargs["json"] == {
            "language": "python",
            "networkPolicy": "none",
            "resourceLimits": {"memory": "512M", "timeout": 1000},
        }

    def test_show_not_found(self, runner, mock_request):
        mock_request.return_value = _response(404, {"detail": "Session not found: nope"})
        result = runner.invoke(cli, ["session", "show", "nope"])
        assert result.exit_code == 1
        assert "Session not found" in result.output

    def test_exec_in_stopped_session(self, runner, mock_request):
        mock_request.return_value = _response(409, {"detail": "Session s-1 is stopped and no longer accepts work"})
        result = runner.invoke(cli, ["session", "exec", "s-1", "-"], input="print(1)")
        assert result.exit_code == 1
        assert "no longer accepts work" in result.output
        assert mock_request.call_args.args[1].endswith("/sandbox/session/s-1/execute")

    def test_artifacts_table(self, runner, mock_request):
        mock_request.return_value = _response(200, {"artifacts": [
            {"filePath": "out.txt", "fileType": "txt", "fileSize": 4, "checksum": "a" * 64},
        ]})
        result = runner.invoke(cli, ["session", "artifacts", "s-1"])
        assert result.exit_code == 0
        assert "out.txt" in result.output
        assert "SHA-256" in result.output

    def test_delete(self, runner, mock_request):
        mock_request.return_value = _response(200, {"success": True, "sessionId": "s-1", "cleaned": False})
        result = runner.invoke(cli, ["session", "delete", "s-1"])
        assert result.exit_code == 0
        assert "already stopped" in result.output
        assert mock_request.call_args.args[0] == "DELETE"


class TestServerCommands:
    """Tests for server commands."""

    def test_health_unhealthy(self, runner, mock_request):
        """503 health reports are printed, then the command fails."""
        mock_request.return_value = _response(503, {
            "status": "unhealthy",
            "live_sessions": 0,
            "components": {"runtime": {"healthy": False, "message": "docker daemon unavailable"}},
        })
        result = runner.invoke(cli, ["server", "health"])
        assert result.exit_code == 1
        assert "unhealthy" in result.output
        assert "docker daemon unavailable" in result.output

    def test_sweep(self, runner, mock_request):
        mock_request.return_value = _response(200, {"scanned": 3, "expired": 1, "reclaimed": 1, "failed": 0})
        result = runner.invoke(cli, ["server", "sweep", "--max-age", "0"])
        assert result.exit_code == 0
        assert "reclaimed 1" in result.output
        assert mock_request.call_args.kwargs["json"] == {"maxAgeSeconds": 0}

    def test_server_error(self, runner, mock_request):
        mock_request.return_value = _response(500, {"detail": "boom"})
        result = runner.invoke(cli, ["server", "stats"])
        assert result.exit_code == 1
        assert "Server error" in result.output


class TestHelpers:
    """Tests for CLI helper functions."""

    def test_parse_env(self):
        assert parse_env(["A=1", "B=x=y"]) == {"A": "1", "B": "x=y"}

    def test_parse_env_rejects_missing_value(self):
        import click
        with pytest.raises(click.BadParameter):
            parse_env(["NOVALUE"])

    def test_parse_files_default_dest(self, tmp_path):
        local = tmp_path / "notes.txt"
        local.write_text("hello")
        assert parse_files([str(local)]) == [{"path": "notes.txt", "content": "hello"}]

    def test_format_table(self):
        table = format_table([["a", 1]], ["Name", "Size"])
        assert "| Name | Size |" in table
        assert format_table([], ["Name"]) == "No data"
