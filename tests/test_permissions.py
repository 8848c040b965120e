"""
Tests for ownership and mode handling on installed trees.
"""

import stat
import subprocess
from unittest.mock import patch

import pytest

from ctupdates.utils.permissions import PermissionManager, PermissionTarget, targets_from_config

RUN = "ctupdates.utils.permissions.subprocess.run"


def ok(*args, **kwargs):
    return subprocess.CompletedProcess(args, 0, "", "")


class TestPermissionTarget:

    @pytest.mark.parametrize("mode,expected", [("755", 0o755), ("0o640", 0o640), (0o700, 0o700), (None, None)])
    def test_mode_parsing(self, mode, expected):
        assert PermissionTarget("/opt/app", "root", mode=mode).mode == expected

    def test_group_defaults_to_owner(self):
        assert PermissionTarget("/opt/app", "www-data").group == "www-data"


class TestTargetsFromConfig:

    def test_no_owner_means_no_targets(self):
        assert targets_from_config("/opt/app", {}) == []

    def test_install_dir_recursive(self):
        targets = targets_from_config("/opt/bookstack", {"owner": "www-data", "mode": "755"})

        assert len(targets) == 1
        assert targets[0].path == "/opt/bookstack"
        assert targets[0].recursive
        assert targets[0].group == "www-data"
        assert targets[0].mode == 0o755

    def test_path_overrides(self):
        config = {"owner": "navidrome", "group": "media",
                  "paths": {"navidrome": {"owner": "root", "mode": "755"}, "data": {"mode": "700"}}}
        targets = targets_from_config("/opt/navidrome", config)

        binary, data = targets[1], targets[2]
        assert binary.path == "/opt/navidrome/navidrome"
        assert (binary.owner, binary.group, binary.mode) == ("root", "root", 0o755)
        assert (data.owner, data.group, data.mode) == ("navidrome", "media", 0o700)
        assert not data.recursive


class TestPermissionManager:

    def test_empty_targets(self):
        assert PermissionManager("app").set_permissions([])

    def test_chown_recursive_and_chmod(self, tmp_path):
        with patch(RUN, side_effect=ok) as mock_run:
            assert PermissionManager("app").set_permissions(
                [PermissionTarget(str(tmp_path), "www-data", mode="750", recursive=True)])

        assert mock_run.call_args.args[0] == ["chown", "-R", "www-data:www-data", str(tmp_path)]
        assert stat.S_IMODE(tmp_path.stat().st_mode) == 0o750

    def test_missing_path_skipped(self, tmp_path):
        with patch(RUN) as mock_run:
            assert PermissionManager("app").set_permissions(
                [PermissionTarget(str(tmp_path / "missing"), "root")])
        mock_run.assert_not_called()

    def test_chown_failure(self, tmp_path):
        failed = subprocess.CompletedProcess([], 1, "", "chown: invalid user: 'nobody-here'")
        with patch(RUN, return_value=failed):
            assert not PermissionManager("app").set_permissions([PermissionTarget(str(tmp_path), "nobody-here")])

    def test_chown_missing(self, tmp_path):
        with patch(RUN, side_effect=FileNotFoundError("chown")):
            assert not PermissionManager("app").set_permissions([PermissionTarget(str(tmp_path), "root")])
