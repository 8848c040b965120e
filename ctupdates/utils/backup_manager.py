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
Backup Manager

Single-snapshot-per-application backups. The install directory is renamed
aside (/opt/app -> /opt/app-backup) rather than copied, so the backup costs
the same regardless of install size. Selected user-data paths are copied
back into the fresh tree afterwards, and the snapshot is removed once the
new version is recorded.

A snapshot is never overwritten: finding one means an earlier run did not
finish and somebody needs to look at it.
"""

import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import List, Optional, Union

from .errors import RestoreFailure, SnapshotFailure
from .index import log_message

SNAPSHOT_SUFFIX = "-backup"


@dataclass
class BackupSnapshot:
    """The previous install directory, renamed aside."""
    source_path: str
    snapshot_path: str
    created_at: datetime = field(default_factory=datetime.now)


class BackupManager:
    """Creates, restores from and discards install-directory snapshots."""

    def __init__(self, suffix: str = SNAPSHOT_SUFFIX):
        self.suffix = suffix

    def snapshot_path_for(self, install_path: Union[str, Path]) -> Path:
        install_path = Path(install_path)
        return install_path.with_name(install_path.name + self.suffix)

    def existing_snapshot(self, install_path: Union[str, Path]) -> Optional[Path]:
        """Return the snapshot left behind by an earlier run, if any."""
        path = self.snapshot_path_for(install_path)
        return path if os.path.lexists(path) else None

    def snapshot(self, install_path: Union[str, Path]) -> BackupSnapshot:
        """
        Move the install directory aside.

        Raises:
            SnapshotFailure: A snapshot already exists or the rename failed
        """
        install_path = Path(install_path)
        snapshot_path = self.snapshot_path_for(install_path)

        if os.path.lexists(snapshot_path):
            raise SnapshotFailure(
                f"Snapshot {snapshot_path} already exists from a previous run; "
                f"inspect it and remove it before updating again",
                snapshot_path=str(snapshot_path),
            )

        try:
            os.rename(install_path, snapshot_path)
        except OSError as e:
            raise SnapshotFailure(f"Could not move {install_path} to {snapshot_path}: {e}") from e

        log_message(f"[BACKUP] Moved {install_path} to {snapshot_path}")
        return BackupSnapshot(source_path=str(install_path), snapshot_path=str(snapshot_path))

    def restore_subpaths(self, snapshot_path: Union[str, Path], subpaths: List[str],
                         new_install_path: Union[str, Path]) -> List[str]:
        """
        Copy user data from the snapshot over the freshly installed tree.

        Paths missing from the snapshot are skipped. Whatever the new payload
        shipped at a restored path is replaced. Restored paths keep the
        uid/gid they had in the snapshot.

        Returns:
            list: Subpaths that were restored

        Raises:
            RestoreFailure: A subpath escapes the tree or could not be copied
        """
        snapshot_path = Path(snapshot_path)
        new_install_path = Path(new_install_path)
        restored = []

        for subpath in subpaths:
            relative = PurePosixPath(subpath)
            if relative.is_absolute() or ".." in relative.parts or not relative.parts:
                raise RestoreFailure(f"Refusing to restore path outside the install tree: {subpath}",
                                     snapshot_path=str(snapshot_path))

            source = snapshot_path / relative
            target = new_install_path / relative

            if not os.path.lexists(source):
                log_message(f"[BACKUP] Not in snapshot, skipping: {subpath}", "DEBUG")
                continue

            try:
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target)
                elif os.path.lexists(target):
                    target.unlink()
                target.parent.mkdir(parents=True, exist_ok=True)

                if source.is_dir() and not source.is_symlink():
                    shutil.copytree(source, target, symlinks=True)
                else:
                    shutil.copy2(source, target, follow_symlinks=False)
                self._copy_ownership(source, target)
            except OSError as e:
                raise RestoreFailure(f"Could not restore {subpath} from {snapshot_path}: {e}",
                                     snapshot_path=str(snapshot_path)) from e

            restored.append(subpath)
            log_message(f"[BACKUP] Restored: {subpath}")

        return restored

    @staticmethod
    def _copy_ownership(source: Path, target: Path) -> None:
        """Give every path under target the uid/gid of its counterpart under source."""
        pairs = [(source, target)]
        if source.is_dir() and not source.is_symlink():
            for root, dirs, files in os.walk(source):
                for name in dirs + files:
                    path = Path(root) / name
                    pairs.append((path, target / path.relative_to(source)))

        for src, dst in pairs:
            info = os.lstat(src)
            os.lchown(dst, info.st_uid, info.st_gid)

    def discard(self, snapshot_path: Union[str, Path]) -> None:
        """Remove a snapshot. Removing one that is already gone is fine."""
        snapshot_path = Path(snapshot_path)
        if snapshot_path.is_symlink() or snapshot_path.is_file():
            snapshot_path.unlink()
        elif snapshot_path.exists():
            shutil.rmtree(snapshot_path)
        else:
            return
        log_message(f"[BACKUP] Removed snapshot {snapshot_path}")
