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
Failure types raised by the update components.

Each class names the step that failed. The orchestrator catches
UpdateFailure subclasses only and turns them into a failed result;
anything else is a bug and propagates.
"""

from typing import Optional


class UpdateFailure(Exception):
    """Base class for update failures."""

    fatal = True

    def __init__(self, message: str, snapshot_path: Optional[str] = None):
        super().__init__(message)
        self.snapshot_path = snapshot_path


class ResolutionFailure(UpdateFailure):
    """The latest version could not be determined. Nothing was changed."""

    fatal = False


class SnapshotFailure(UpdateFailure):
    """The current install could not be moved aside, or a snapshot already exists."""
    pass


class FetchFailure(UpdateFailure):
    """The release payload was unreachable, truncated or failed its checksum."""
    pass


class ApplyFailure(UpdateFailure):
    """The payload could not be placed into the install directory."""
    pass


class RestoreFailure(ApplyFailure):
    """User data could not be copied back from the snapshot."""
    pass


class PersistFailure(UpdateFailure):
    """The version record could not be written after files were replaced."""
    pass


class EntropyFailure(UpdateFailure):
    """No cryptographically strong randomness source is available."""
    pass
