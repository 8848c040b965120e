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
along with this program. If not, see <https://www.gnu.org/licenses/>.
"""

import os
import json
import importlib
from typing import Dict, List, Any, Optional

from .utils.index import log_message

# Re-export utilities for easy access by submodules
__all__ = [
    'log_message',
    'run_update',
    'load_module_index',
    'list_module_names',
    'MODULES_PATH',
]

MODULES_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "modules")


def load_module_index(module_path: str) -> Optional[Dict[str, Any]]:
    """
    Load a module's index.json file containing metadata and configuration.

    Args:
        module_path: Path to the module directory

    Returns:
        dict: The loaded index.json data, or None if not found/invalid
    """
    index_file = os.path.join(module_path, 'index.json')

    if not os.path.exists(index_file):
        log_message(f"No index.json in {module_path}", "DEBUG")
        return None

    try:
        with open(index_file, 'r') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        log_message(f"Failed to load index.json from {module_path}: {e}", "ERROR")
        return None


def list_module_names(modules_path: str = MODULES_PATH) -> List[str]:
    """Names of the application modules that ship an index.py."""
    if not os.path.isdir(modules_path):
        return []
    return sorted(
        name for name in os.listdir(modules_path)
        if not name.startswith(("_", "."))
        and os.path.isfile(os.path.join(modules_path, name, "index.py"))
    )


def run_update(module_name, args=None):
    """
    Run a single application module.

    Args:
        module_name (str): Module name (e.g. "bookstack") or dotted path under the package
        args (list, optional): Arguments to pass to the module's main function

    Returns:
        dict: Result from the module's main(args)

    Raises:
        ModuleNotFoundError: No such application module
        AttributeError: The module has no main(args)
    """
    if "." not in module_name:
        module_name = f"modules.{module_name}"

    mod = importlib.import_module(f".{module_name}", package=__name__)
    main = getattr(mod, "main", None)
    if main is None:
        raise AttributeError(f"Module {module_name} has no main(args) function")

    log_message(f"Running update: {module_name}", "DEBUG")
    result = main(args or [])
    log_message(f"Completed update: {module_name}", "DEBUG")
    return result
