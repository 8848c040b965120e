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

from ctupdates.orchestrator import NotUpgradable, run_application
from ctupdates.utils.moduleUtils import load_module_config

DEFAULT_CONFIG = {
    "metadata": {
        "schema_version": "1.0.0",
        "module_name": "docker"
    },
    "config": {
        "install_dir": "/etc/docker",
        "reason": "Docker is updated by the container's package manager (apt-get upgrade)."
    }
}

MODULE_CONFIG = load_module_config(os.path.dirname(os.path.abspath(__file__)), DEFAULT_CONFIG)


def main(args=None):
    """Docker has no automatic update path; report that and stop."""
    args = args or []
    config = MODULE_CONFIG["config"]
    strategy = NotUpgradable(reason=config["reason"])
    return run_application(MODULE_CONFIG["metadata"]["module_name"], config["install_dir"], strategy,
                           check_only="--check" in args, verbose=True if "--verbose" in args else None)


if __name__ == "__main__":
    import sys
    main(sys.argv[1:])
