"""
Tests for the application modules and module dispatch.
"""

import importlib
import stat
from unittest.mock import patch

import pytest

from ctupdates import list_module_names, load_module_index, run_update
from ctupdates.orchestrator import DeploymentContext, Upgradable
from ctupdates.utils.credentials import CredentialRecord

bookstack = importlib.import_module("ctupdates.modules.bookstack.index")
navidrome = importlib.import_module("ctupdates.modules.navidrome.index")


class TestBookstack:

    def test_build_strategy(self):
        strategy = bookstack.build_strategy(bookstack.DEFAULT_CONFIG)

        assert isinstance(strategy, Upgradable)
        assert strategy.release["mode"] == "tarball"
        assert strategy.restore_paths == [".env", "public/uploads", "storage/uploads", "themes"]
        assert ["php", "artisan", "migrate", "--force"] in strategy.post_update_commands
        assert strategy.permissions["owner"] == "www-data"
        assert strategy.credentials == ["bookstack"]
        assert strategy.secret_length == 20
        assert strategy.post_install is bookstack.configure_fresh_install

    def test_set_env_values(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("APP_URL=https://old\n# DB_PASSWORD=commented\nDB_PASSWORD=\n")

        bookstack.set_env_values(env, {"DB_PASSWORD": "s3cret", "APP_URL": "http://new", "MAIL_FROM": "a@b"})

        assert env.read_text().splitlines() == [
            "APP_URL=http://new",
            "# DB_PASSWORD=commented",
            "DB_PASSWORD=s3cret",
            "MAIL_FROM=a@b",
        ]

    def test_set_env_values_creates_file(self, tmp_path):
        env = tmp_path / ".env"
        bookstack.set_env_values(env, {"APP_KEY": "x"})
        assert env.read_text() == "APP_KEY=x\n"

    def test_configure_fresh_install(self, tmp_path):
        (tmp_path / ".env.example").write_text("APP_URL=https://example.com\nDB_DATABASE=database_database\n"
                                               "DB_USERNAME=database_username\nDB_PASSWORD=database_user_password\n")
        context = DeploymentContext("bookstack", tmp_path)

        bookstack.configure_fresh_install(context, [CredentialRecord("bookstack", "Abc123")])

        lines = (tmp_path / ".env").read_text().splitlines()
        assert "DB_DATABASE=bookstack" in lines
        assert "DB_USERNAME=bookstack" in lines
        assert "DB_PASSWORD=Abc123" in lines
        assert f"APP_URL={bookstack.MODULE_CONFIG['config']['app_url']}" in lines
        assert (tmp_path / ".env.example").exists()
        assert stat.S_IMODE((tmp_path / ".env").stat().st_mode) == 0o640

    def test_main_check_only(self):
        with patch.object(bookstack, "run_application", return_value={"success": True}) as mock_run:
            result = bookstack.main(["--check"])

        assert result["success"]
        name, install_dir, strategy = mock_run.call_args.args
        assert (name, install_dir) == ("bookstack", "/opt/bookstack")
        assert mock_run.call_args.kwargs["check_only"] is True
        assert mock_run.call_args.kwargs["verbose"] is None

    def test_main_verbose(self):
        with patch.object(bookstack, "run_application", return_value={"success": True}) as mock_run:
            bookstack.main(["--verbose"])

        assert mock_run.call_args.kwargs["verbose"] is True
        assert mock_run.call_args.kwargs["check_only"] is False

    def test_main_config(self):
        result = bookstack.main(["--config"])
        assert result["config"]["metadata"]["module_name"] == "bookstack"


class TestNavidrome:

    def test_build_strategy(self):
        strategy = navidrome.build_strategy(navidrome.DEFAULT_CONFIG)

        assert strategy.release["mode"] == "asset"
        assert strategy.restore_paths == ["navidrome.toml"]
        assert strategy.services == ["navidrome"]
        assert strategy.credentials == []


class TestDispatch:

    def test_shipped_modules(self):
        assert list_module_names() == ["bookstack", "docker", "navidrome"]

    def test_list_skips_private_and_incomplete(self, tmp_path):
        for name in ("alpha", "_template", "beta"):
            (tmp_path / name).mkdir()
        (tmp_path / "alpha" / "index.py").write_text("")
        (tmp_path / "_template" / "index.py").write_text("")

        assert list_module_names(str(tmp_path)) == ["alpha"]

    def test_load_module_index(self, tmp_path):
        assert load_module_index(str(tmp_path)) is None
        (tmp_path / "index.json").write_text("{not json")
        assert load_module_index(str(tmp_path)) is None
        (tmp_path / "index.json").write_text('{"config": {"install_dir": "/opt/x"}}')
        assert load_module_index(str(tmp_path))["config"]["install_dir"] == "/opt/x"

    def test_run_update_calls_module_main(self):
        with patch.object(navidrome, "run_application", return_value={"success": True, "updated": False}):
            result = run_update("navidrome", ["--check"])
        assert result == {"success": True, "updated": False}

    def test_docker_not_supported(self):
        result = run_update("docker", ["--check"])

        assert result["success"] is True
        assert result["updated"] is False
        assert result["outcome"] == "not_supported"

    def test_unknown_module(self):
        with pytest.raises(ModuleNotFoundError):
            run_update("does_not_exist")
