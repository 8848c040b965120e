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

import os

from ctupdates.orchestrator import Upgradable, run_application
from ctupdates.utils.index import log_message
from ctupdates.utils.moduleUtils import conditional_config_return, load_module_config

DEFAULT_CONFIG = {
    "metadata": {
        "schema_version": "1.0.0",
        "module_name": "navidrome"
    },
    "config": {
        "install_dir": "/opt/navidrome",
        "release": {
            "source": "github",
            "repo": "navidrome/navidrome",
            "mode": "asset",
            "asset_pattern": "navidrome_{version}_linux_amd64.tar.gz"
        },
        "update": {
            "restore_paths": ["navidrome.toml"],
            "services": ["navidrome"],
            "post_update_commands": []
        },
        "permissions": {
            "owner": "root",
            "group": "root",
            "mode": "755"
        }
    }
}

# Global configuration
MODULE_CONFIG = load_module_config(os.path.dirname(os.path.abspath(__file__)), DEFAULT_CONFIG)


def build_strategy(config=None):
    """
    Build the Navidrome update strategy from module configuration.
    Returns:
        Upgradable: Strategy for the orchestrator
    """
    config = (config or MODULE_CONFIG)["config"]
    update = config.get("update", {})
    return Upgradable(
        release=config["release"],
        restore_paths=update.get("restore_paths", []),
        services=update.get("services", []),
        post_update_commands=update.get("post_update_commands", []),
        permissions=config.get("permissions", {}),
    )


def main(args=None):
    """
    Main entry point for Navidrome update module.
    Args:
        args: List of arguments (supports '--check', '--config', '--verbose')
    Returns:
        dict: Status and results of the update
    """
    if args is None:
        args = []

    name = MODULE_CONFIG["metadata"]["module_name"]
    install_dir = MODULE_CONFIG["config"]["install_dir"]

    if "--config" in args:
        log_message("Current Navidrome module configuration:")
        log_message(f"  Install dir: {install_dir}")
        log_message(f"  Release: {MODULE_CONFIG['config']['release']}")
        return {"success": True, "config": MODULE_CONFIG}

    result = run_application(name, install_dir, build_strategy(), check_only="--check" in args,
                             verbose=True if "--verbose" in args else None)
    return conditional_config_return(result, MODULE_CONFIG)


if __name__ == "__main__":
    import sys
    main(sys.argv[1:])
