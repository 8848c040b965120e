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
import re
import shutil
from pathlib import Path

from ctupdates.orchestrator import Upgradable, run_application
from ctupdates.utils.index import log_message
from ctupdates.utils.moduleUtils import conditional_config_return, load_module_config

DEFAULT_CONFIG = {
    "metadata": {
        "schema_version": "1.0.0",
        "module_name": "bookstack"
    },
    "config": {
        "install_dir": "/opt/bookstack",
        "app_url": "http://localhost",
        "release": {
            "source": "github",
            "repo": "BookStackApp/BookStack",
            "mode": "tarball"
        },
        "update": {
            "restore_paths": [
                ".env",
                "public/uploads",
                "storage/uploads",
                "themes"
            ],
            "services": [],
            "post_update_commands": [
                ["composer", "install", "--no-dev", "--no-interaction"],
                ["php", "artisan", "migrate", "--force"]
            ]
        },
        "permissions": {
            "owner": "www-data",
            "group": "www-data",
            "mode": "755"
        },
        "credentials": {
            "usernames": ["bookstack"],
            "length": 20
        }
    }
}

# Global configuration
MODULE_CONFIG = load_module_config(os.path.dirname(os.path.abspath(__file__)), DEFAULT_CONFIG)

ENV_FILE_MODE = 0o640
ENV_LINE = re.compile(r"^(?P<key>[A-Z0-9_]+)=")


def set_env_values(env_path, values):
    """
    Set KEY=value pairs in a .env file, replacing existing keys in place
    and appending missing ones.
    Args:
        env_path: Path to the .env file
        values: dict of keys to values
    """
    env_path = Path(env_path)
    lines = env_path.read_text().splitlines() if env_path.exists() else []
    remaining = dict(values)

    for i, line in enumerate(lines):
        match = ENV_LINE.match(line)
        if match and match.group("key") in remaining:
            key = match.group("key")
            lines[i] = f"{key}={remaining.pop(key)}"

    lines.extend(f"{key}={value}" for key, value in remaining.items())
    env_path.write_text("\n".join(lines) + "\n")


def configure_fresh_install(context, credentials):
    """
    Create .env from .env.example and fill in the database credentials
    generated for this install. The file is not world readable; its owner
    is set by the permission step that runs after this hook.
    """
    env_path = context.install_path / ".env"
    example = context.install_path / ".env.example"
    if not env_path.exists() and example.exists():
        shutil.copy2(example, env_path)

    values = {"APP_URL": MODULE_CONFIG["config"].get("app_url", "http://localhost")}
    for record in credentials:
        values["DB_DATABASE"] = record.username
        values["DB_USERNAME"] = record.username
        values["DB_PASSWORD"] = record.secret

    set_env_values(env_path, values)
    os.chmod(env_path, ENV_FILE_MODE)
    log_message(f"Wrote BookStack environment to {env_path}")


def build_strategy(config=None):
    """
    Build the BookStack update strategy from module configuration.
    Returns:
        Upgradable: Strategy for the orchestrator
    """
    config = (config or MODULE_CONFIG)["config"]
    update = config.get("update", {})
    credentials = config.get("credentials", {})
    return Upgradable(
        release=config["release"],
        restore_paths=update.get("restore_paths", []),
        services=update.get("services", []),
        post_update_commands=update.get("post_update_commands", []),
        permissions=config.get("permissions", {}),
        credentials=credentials.get("usernames", []),
        secret_length=credentials.get("length", 20),
        post_install=configure_fresh_install,
    )


def main(args=None):
    """
    Main entry point for BookStack update module.
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
        log_message("Current BookStack module configuration:")
        log_message(f"  Install dir: {install_dir}")
        log_message(f"  Preserved paths: {', '.join(MODULE_CONFIG['config']['update']['restore_paths'])}")
        return {"success": True, "config": MODULE_CONFIG}

    result = run_application(name, install_dir, build_strategy(), check_only="--check" in args,
                             verbose=True if "--verbose" in args else None)
    return conditional_config_return(result, MODULE_CONFIG)


if __name__ == "__main__":
    import sys
    main(sys.argv[1:])
