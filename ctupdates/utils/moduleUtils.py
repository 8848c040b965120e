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
Common utilities for update modules to reduce code duplication.

This module provides shared configuration loading used across the
orchestrator and the application modules.
"""

import copy
import json
import os

from .index import log_message
from .output import verbose_from_env

ROOT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "index.json")

DEFAULT_ROOT_CONFIG = {
    "metadata": {"schema_version": "1.0.0"},
    "debug": False,
    "verbose": False,
    "state": {
        "state_dir": None,
        "credentials_dir": None,
        "snapshot_suffix": "-backup",
    },
    "http": {
        "timeout": 30,
        "user_agent": "ctupdates",
    },
}


def merge_config(defaults: dict, overrides: dict) -> dict:
    """Recursively merge overrides into a copy of defaults."""
    merged = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_json_config(config_path: str, defaults: dict) -> dict:
    """
    Load a JSON config file on top of defaults.

    A missing or unreadable file logs and falls back to the defaults.
    """
    try:
        with open(config_path, 'r') as f:
            return merge_config(defaults, json.load(f))
    except FileNotFoundError:
        log_message(f"No config at {config_path}, using defaults", "DEBUG")
    except (OSError, ValueError) as e:
        log_message(f"Failed to load config {config_path}: {e}", "WARNING")
    return copy.deepcopy(defaults)


def load_root_config(config_path: str = None) -> dict:
    """
    Load the root index.json (debug/verbose flags, state and HTTP settings).

    Returns:
        dict: Root configuration merged over the built-in defaults
    """
    return load_json_config(config_path or ROOT_CONFIG_PATH, DEFAULT_ROOT_CONFIG)


def load_module_config(module_dir: str, defaults: dict) -> dict:
    """
    Load a module's index.json, falling back to the module's defaults.

    Args:
        module_dir: Directory holding the module's index.json
        defaults: The module's built-in configuration

    Returns:
        dict: Module configuration
    """
    return load_json_config(os.path.join(module_dir, "index.json"), defaults)


def conditional_config_return(result_dict: dict, config_data: dict, debug_key: str = "debug") -> dict:
    """
    Conditionally add config to result based on debug flag.

    Args:
        result_dict: The result dictionary to potentially add config to
        config_data: The configuration data to add if debug is enabled
        debug_key: The key to check in root config (default: "debug")

    Returns:
        dict: Result dictionary with config added if debug is enabled
    """
    root_config = load_root_config()
    if root_config.get(debug_key, False):
        result_dict["config"] = config_data
    return result_dict


def get_verbose_mode(root_config: dict = None) -> bool:
    """Verbose when VERBOSE=yes is exported or the root config says so."""
    if verbose_from_env():
        return True
    root_config = root_config if root_config is not None else load_root_config()
    return bool(root_config.get("verbose", False))
