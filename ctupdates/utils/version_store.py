"""
HOMESERVER Update Management System
Copyright (C) 2024 HOMESERVER LLC

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

"""
Version Store

One plain-text version marker per application, e.g. /opt/bookstack_version.txt.
The marker is the only record of what is installed: it is written once,
atomically, after the new files are in place.

Usage:
    store = VersionStore("/opt")
    store.read_version("bookstack")         # "6.0.1" or None
    store.write_version("bookstack", "6.1.0")
"""

import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from .errors import PersistFailure
from .index import log_message


class VersionStore:
    """Reads and atomically replaces per-application version markers."""

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(state_dir)

    def marker_path(self, application: str) -> Path:
        return self.state_dir / f"{application}_version.txt"

    def read_version(self, application: str) -> Optional[str]:
        """
        Read the recorded version.

        Returns:
            str: Recorded version, or None when nothing is recorded
        """
        path = self.marker_path(application)
        try:
            value = path.read_text().strip()
        except FileNotFoundError:
            return None
        return value or None

    def write_version(self, application: str, version: str) -> None:
        """
        Replace the recorded version with write-temp-then-rename.

        Raises:
            PersistFailure: The marker could not be written
        """
        path = self.marker_path(application)
        temp_path = None
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self.state_dir, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                f.write(f"{version}\n")
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, 0o644)
            os.replace(temp_path, path)
            temp_path = None
        except OSError as e:
            raise PersistFailure(f"Could not record version {version} in {path}: {e}") from e
        finally:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)

        log_message(f"Recorded {application} version {version} in {path}", "DEBUG")
