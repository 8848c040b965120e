#!/usr/bin/env python3
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
Permission Management Utilities

Sets ownership and mode on a freshly placed install tree so the
application's service user owns its files. Updates run as root, so
without this step everything extracted would belong to root.
"""

import os
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from .index import log_message


@dataclass
class PermissionTarget:
    """Represents a file or directory with its desired permissions."""
    path: str
    owner: str
    group: Optional[str] = None
    mode: Optional[Union[str, int]] = None  # Can be octal string like "755" or int like 0o755
    recursive: bool = False  # Apply ownership recursively for directories

    def __post_init__(self):
        """Convert mode to integer if it's a string."""
        if isinstance(self.mode, str):
            # Handle both "755" and "0o755" formats
            self.mode = int(self.mode[2:] if self.mode.startswith('0o') else self.mode, 8)
        if not self.group:
            self.group = self.owner


class PermissionManager:
    """Applies PermissionTargets with chown/chmod."""

    def __init__(self, module_name: str = "unknown"):
        self.module_name = module_name

    def set_permissions(self, targets: List[PermissionTarget]) -> bool:
        """
        Set permissions for multiple targets.

        Args:
            targets: List of PermissionTarget objects

        Returns:
            bool: True if all permissions were set successfully, False otherwise
        """
        if not targets:
            log_message("No permission targets specified", "DEBUG")
            return True

        failed = [target.path for target in targets if not self._set_single_permission(target)]

        if failed:
            log_message(f"[{self.module_name}] Failed to set permissions for: {', '.join(failed)}", "ERROR")
            return False

        log_message(f"[{self.module_name}] Set permissions for {len(targets)} target(s)")
        return True

    def _set_single_permission(self, target: PermissionTarget) -> bool:
        """Set permissions for a single target."""
        path = target.path

        if not os.path.exists(path):
            log_message(f"Skipping {path} - does not exist", "DEBUG")
            return True

        if not self._set_ownership(path, target.owner, target.group, target.recursive):
            return False

        if target.mode is not None and not self._set_mode(path, target.mode):
            return False

        mode_text = f" {oct(target.mode)}" if target.mode is not None else ""
        log_message(f"✓ Set permissions for {path} ({target.owner}:{target.group}{mode_text})", "DEBUG")
        return True

    def _set_ownership(self, path: str, owner: str, group: str, recursive: bool = False) -> bool:
        """Set file/directory ownership."""
        cmd = ["chown"]
        if recursive and os.path.isdir(path):
            cmd.append("-R")
        cmd.extend([f"{owner}:{group}", path])

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            log_message(f"Error setting ownership for {path}: {e}", "ERROR")
            return False

        if result.returncode != 0:
            log_message(f"Failed to set ownership for {path}: {result.stderr.strip()}", "ERROR")
            return False
        return True

    def _set_mode(self, path: str, mode: int) -> bool:
        """Set the mode of the target itself (never recursive)."""
        try:
            os.chmod(path, mode)
        except OSError as e:
            log_message(f"Failed to set mode for {path}: {e}", "ERROR")
            return False
        return True


def targets_from_config(install_path: str, permissions_config: Dict[str, Any]) -> List[PermissionTarget]:
    """
    Build permission targets for an install tree from a module's
    "permissions" configuration block:

        {"owner": "navidrome", "group": "navidrome", "mode": "755",
         "paths": {"navidrome": {"owner": "root", "mode": "755"}}}

    The install directory itself gets the default owner recursively.
    Entries under "paths" are relative to the install directory and
    override ownership or mode for that path only.

    Returns:
        List[PermissionTarget]: Empty when no owner is configured
    """
    owner = permissions_config.get("owner")
    if not owner:
        return []

    group = permissions_config.get("group", owner)
    targets = [PermissionTarget(
        path=install_path,
        owner=owner,
        group=group,
        mode=permissions_config.get("mode"),
        recursive=True,
    )]

    for relative, override in (permissions_config.get("paths") or {}).items():
        path_owner = override.get("owner", owner)
        targets.append(PermissionTarget(
            path=os.path.join(install_path, relative),
            owner=path_owner,
            group=override.get("group", group if path_owner == owner else path_owner),
            mode=override.get("mode"),
            recursive=override.get("recursive", False),
        ))

    return targets
