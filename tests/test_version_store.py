"""
Tests for the per-application version marker.
"""

import os
from unittest.mock import patch

import pytest

from ctupdates.utils.errors import PersistFailure
from ctupdates.utils.version_store import VersionStore


class TestVersionStore:

    def test_marker_path(self, tmp_path):
        assert VersionStore(tmp_path).marker_path("bookstack") == tmp_path / "bookstack_version.txt"

    def test_missing_marker(self, tmp_path):
        assert VersionStore(tmp_path).read_version("bookstack") is None

    def test_empty_marker(self, tmp_path):
        (tmp_path / "bookstack_version.txt").write_text("  \n")
        assert VersionStore(tmp_path).read_version("bookstack") is None

    def test_read_strips_whitespace(self, tmp_path):
        (tmp_path / "bookstack_version.txt").write_text("6.0.1\n")
        assert VersionStore(tmp_path).read_version("bookstack") == "6.0.1"

    def test_write_replaces(self, tmp_path):
        store = VersionStore(tmp_path)
        store.write_version("bookstack", "6.0.1")
        store.write_version("bookstack", "6.1.0")

        assert store.read_version("bookstack") == "6.1.0"
        assert os.listdir(tmp_path) == ["bookstack_version.txt"]

    def test_write_creates_state_dir(self, tmp_path):
        store = VersionStore(tmp_path / "state")
        store.write_version("navidrome", "0.53.3")
        assert (tmp_path / "state" / "navidrome_version.txt").read_text() == "0.53.3\n"

    def test_failed_replace_keeps_old_value(self, tmp_path):
        store = VersionStore(tmp_path)
        store.write_version("bookstack", "6.0.1")

        with patch("ctupdates.utils.version_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistFailure):
                store.write_version("bookstack", "6.1.0")

        assert store.read_version("bookstack") == "6.0.1"
        assert os.listdir(tmp_path) == ["bookstack_version.txt"]
