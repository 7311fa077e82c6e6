"""Tests for output module."""

import json

import pytest

from mcp_login.oauth.flow import TokenExchangeError
from mcp_login.output import OutputHandler, format_error_json, format_json


class TestFormatJson:
    """Tests for JSON formatting helpers."""

    def test_success_envelope(self) -> None:
        """Test the success wrapper."""
        assert json.loads(format_json({"a": 1})) == {"success": True, "data": {"a": 1}}

    def test_error_includes_oauth_fields(self) -> None:
        """Test that OAuth error fields are surfaced."""
        error = TokenExchangeError(
            "Token exchange failed", status_code=400, error="invalid_grant", error_description="expired"
        )
        data = json.loads(format_error_json(error, help_text="retry"))

        assert data["success"] is False
        assert data["error"]["type"] == "TokenExchangeError"
        assert data["error"]["error"] == "invalid_grant"
        assert data["error"]["status_code"] == 400
        assert data["error"]["help"] == "retry"
        assert "traceback" not in data["error"]

    def test_error_traceback_when_verbose(self) -> None:
        """Test that tracebacks are only included on request."""
        data = json.loads(format_error_json(ValueError("x"), include_traceback=True))
        assert "traceback" in data["error"]


class TestOutputHandler:
    """Tests for OutputHandler class."""

    def test_success_human(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test human success output."""
        OutputHandler().success({"a": 1}, "Done.")
        assert capsys.readouterr().out == "Done.\n"

    def test_success_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test JSON success output."""
        OutputHandler(json_mode=True).success({"a": 1}, "Done.")
        assert json.loads(capsys.readouterr().out)["data"] == {"a": 1}

    def test_status_goes_to_stderr(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test that progress messages stay out of stdout."""
        OutputHandler().status("Working...")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Working..." in captured.err

    def test_status_silent_in_json_mode(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test that JSON mode suppresses progress messages."""
        OutputHandler(json_mode=True).status("Working...")
        assert capsys.readouterr().err == ""

    def test_error_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test that errors exit with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            OutputHandler().error(ValueError("boom"), help_text="try again")

        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "Error: boom" in err
        assert "try again" in err

    def test_table_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test that tables become lists of objects in JSON mode."""
        OutputHandler(json_mode=True).table(["Server", "Status"], [["a", "ok"]])
        assert json.loads(capsys.readouterr().out)["data"] == [{"Server": "a", "Status": "ok"}]

    def test_table_human(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test aligned human table output."""
        OutputHandler().table(["Server", "Status"], [["a", "ok"], ["longer-name", "expired"]])
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("Server     ")
        assert lines[3].startswith("longer-name  expired")
