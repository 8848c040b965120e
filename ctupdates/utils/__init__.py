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
Utilities for the updates orchestration system.

This module provides the components the orchestrator is built from.
"""

from .index import log_message, get_module_version
from .errors import (
    UpdateFailure,
    ResolutionFailure,
    SnapshotFailure,
    FetchFailure,
    ApplyFailure,
    RestoreFailure,
    PersistFailure,
    EntropyFailure,
)
from .output import OutputChannel, StatusEvent
from .credentials import generate_secret, CredentialRecord, CredentialStore
from .version_store import VersionStore
from .backup_manager import BackupManager, BackupSnapshot
from .release_resolver import ReleaseInfo, ReleaseResolver
from .payload import PayloadFetcher
from .permissions import PermissionManager, PermissionTarget, targets_from_config

__all__ = [
    'log_message',
    'get_module_version',
    'UpdateFailure',
    'ResolutionFailure',
    'SnapshotFailure',
    'FetchFailure',
    'ApplyFailure',
    'RestoreFailure',
    'PersistFailure',
    'EntropyFailure',
    'OutputChannel',
    'StatusEvent',
    'generate_secret',
    'CredentialRecord',
    'CredentialStore',
    'VersionStore',
    'BackupManager',
    'BackupSnapshot',
    'ReleaseInfo',
    'ReleaseResolver',
    'PayloadFetcher',
    'PermissionManager',
    'PermissionTarget',
    'targets_from_config',
]
