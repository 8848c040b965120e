"""
Tests for the command line entry point.
"""

import json
import os
from unittest.mock import patch

import pytest

from ctupdates import index as cli
from ctupdates.utils.backup_manager import BackupManager


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch.object(cli, "setup_global_update_logging"):
        yield


@pytest.fixture
def modules_dir(tmp_path):
    """A modules directory with one application installed at tmp/opt/demo."""
    modules = tmp_path / "modules"
    demo = modules / "demo"
    demo.mkdir(parents=True)
    (demo / "index.py").write_text("")
    (demo / "index.json").write_text(json.dumps({
        "metadata": {"schema_version": "1.0.0"},
        "config": {"install_dir": str(tmp_path / "opt" / "demo")},
    }))
    return modules


class TestGenerateSecret:

    def test_prints_secret(self, capsys):
        assert cli.main(["--generate-secret", "16"]) == 0
        secret = capsys.readouterr().out.strip()
        assert len(secret) == 16
        assert secret.isalnum()

    def test_invalid_length(self, capsys):
        assert cli.main(["--generate-secret", "0"]) == 1
        assert capsys.readouterr().out == ""


class TestStatus:

    def test_not_installed(self, modules_dir):
        assert cli.get_module_status("demo", str(modules_dir))

    def test_installed_with_version(self, modules_dir, tmp_path, caplog):
        (tmp_path / "opt" / "demo").mkdir(parents=True)
        (tmp_path / "opt" / "demo_version.txt").write_text("1.2.3\n")

        with caplog.at_level("INFO", logger="ctupdates"):
            assert cli.get_module_status("demo", str(modules_dir))
        assert "installed v1.2.3" in caplog.text

    def test_stale_snapshot_reported(self, modules_dir, tmp_path):
        (tmp_path / "opt" / "demo-backup").mkdir(parents=True)
        assert not cli.get_module_status("demo", str(modules_dir), BackupManager())

    def test_configured_state_dir(self, modules_dir, tmp_path, caplog):
        (tmp_path / "opt" / "demo").mkdir(parents=True)
        (tmp_path / "opt" / "demo_version.txt").write_text("1.0.0\n")
        (tmp_path / "state").mkdir()
        (tmp_path / "state" / "demo_version.txt").write_text("2.0.0\n")
        root_config = {"state": {"state_dir": str(tmp_path / "state")}}

        with caplog.at_level("INFO", logger="ctupdates"):
            assert cli.get_module_status("demo", str(modules_dir), root_config=root_config)
        assert "installed v2.0.0" in caplog.text

    def test_configured_snapshot_suffix(self, modules_dir, tmp_path):
        (tmp_path / "opt" / "demo.previous").mkdir(parents=True)
        root_config = {"state": {"snapshot_suffix": ".previous"}}

        assert not cli.get_module_status("demo", str(modules_dir), root_config=root_config)

    def test_unknown_module(self, modules_dir):
        assert not cli.get_module_status("missing", str(modules_dir))

    def test_all_modules(self, modules_dir):
        assert cli.get_module_status(None, str(modules_dir))

    def test_list_modules(self, modules_dir, tmp_path):
        assert cli.list_modules(str(modules_dir))
        assert not cli.list_modules(str(tmp_path / "empty"))


class TestMain:

    def test_list_modules_flag(self):
        assert cli.main(["--list-modules"]) == 0

    def test_no_arguments_prints_help(self, capsys):
        assert cli.main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_unknown_app(self):
        with patch.object(cli, "run_update") as mock_run:
            assert cli.main(["--app", "nope"]) == 1
        mock_run.assert_not_called()

    def test_check_only_passed_to_module(self):
        with patch.object(cli, "run_update", return_value={"success": True}) as mock_run:
            assert cli.main(["--app", "bookstack", "--check-only"]) == 0
        mock_run.assert_called_once_with("bookstack", ["--check"])

    def test_failed_update_exit_code(self):
        with patch.object(cli, "run_update", return_value={"success": False}):
            assert cli.main(["--app", "bookstack"]) == 1

    def test_verbose_passed_to_module(self, monkeypatch):
        monkeypatch.delenv("VERBOSE", raising=False)
        with patch.object(cli, "run_update", return_value={"success": True}) as mock_run:
            cli.main(["--app", "bookstack", "--check-only", "--verbose"])

        mock_run.assert_called_once_with("bookstack", ["--check", "--verbose"])
        assert "VERBOSE" not in os.environ

    def test_interrupt(self):
        with patch.object(cli, "run_update", side_effect=KeyboardInterrupt):
            assert cli.main(["--app", "bookstack"]) == 130

    @pytest.mark.parametrize("result,code", [
        ({"success": True}, 0),
        ({"success": False, "outcome": "skipped"}, 0),
        ({"success": False, "outcome": "failed"}, 1),
        (None, 1),
    ])
    def test_result_exit_code(self, result, code):
        assert cli.result_exit_code(result) == code
