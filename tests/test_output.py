"""
Tests for status events and the quiet command runner.
"""

import subprocess
from unittest.mock import patch

import pytest

from ctupdates.utils.output import OutputChannel, verbose_from_env

RUN = "ctupdates.utils.output.subprocess.run"


class TestEvents:

    def test_events_recorded_in_order(self):
        output = OutputChannel()
        output.info("Backing up current installation")
        output.ok("Backup complete")
        output.error("FetchFailure")

        assert [(e.kind, e.message) for e in output.events] == [
            ("info", "Backing up current installation"),
            ("ok", "Backup complete"),
            ("error", "FetchFailure"),
        ]
        assert output.last_event().message == "FetchFailure"

    def test_listener_called(self):
        seen = []
        output = OutputChannel(listener=seen.append)
        output.ok("done")
        assert seen[0].kind == "ok"

    def test_prefixes_in_log(self, caplog):
        output = OutputChannel()
        with caplog.at_level("INFO", logger="ctupdates"):
            output.ok("Backup complete")
            output.error("Update failed")
        assert "✓ Backup complete" in caplog.text
        assert "✗ Update failed" in caplog.text

    def test_no_events(self):
        assert OutputChannel().last_event() is None


class TestVerboseFromEnv:

    @pytest.mark.parametrize("value,expected", [("yes", True), ("1", True), ("TRUE", True),
                                                ("no", False), ("", False)])
    def test_values(self, monkeypatch, value, expected):
        monkeypatch.setenv("VERBOSE", value)
        assert verbose_from_env() is expected

    def test_unset(self, monkeypatch):
        monkeypatch.delenv("VERBOSE", raising=False)
        assert verbose_from_env() is False


class TestRun:

    def test_quiet_captures_output(self):
        with patch(RUN, return_value=subprocess.CompletedProcess([], 0, "ok", "")) as mock_run:
            OutputChannel().run(["composer", "install"], cwd="/opt/bookstack")

        kwargs = mock_run.call_args.kwargs
        assert kwargs["capture_output"] is True
        assert kwargs["cwd"] == "/opt/bookstack"

    def test_verbose_streams_output(self):
        with patch(RUN, return_value=subprocess.CompletedProcess([], 0)) as mock_run:
            OutputChannel(verbose=True).run(["composer", "install"])

        assert "capture_output" not in mock_run.call_args.kwargs

    def test_arguments_stringified(self, tmp_path):
        with patch(RUN, return_value=subprocess.CompletedProcess([], 0, "", "")) as mock_run:
            OutputChannel().run(["ls", tmp_path])
        assert mock_run.call_args.args[0] == ["ls", str(tmp_path)]

    def test_failure_logs_captured_output(self, caplog):
        result = subprocess.CompletedProcess([], 2, "partial", "migration failed")
        with patch(RUN, return_value=result), caplog.at_level("ERROR", logger="ctupdates"):
            with pytest.raises(subprocess.CalledProcessError) as exc_info:
                OutputChannel().run(["php", "artisan", "migrate"])

        assert exc_info.value.returncode == 2
        assert "migration failed" in caplog.text
