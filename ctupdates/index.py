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

import os
import sys
import argparse
import logging
from pathlib import Path

from . import MODULES_PATH, list_module_names, load_module_index, run_update
from .orchestrator import state_dir_for
from .utils.backup_manager import SNAPSHOT_SUFFIX, BackupManager
from .utils.credentials import generate_secret
from .utils.errors import EntropyFailure
from .utils.index import log_message
from .utils.moduleUtils import load_root_config
from .utils.version_store import VersionStore


def setup_global_update_logging(verbose: bool = False):
    """
    Log to stdout only; the shell wrapper owns file truncation/redirection.
    """
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    unified_format = logging.Formatter('[%(asctime)s] [%(levelname)s] %(message)s',
                                       datefmt='%Y-%m-%d %H:%M:%S')
    console_handler.setFormatter(unified_format)
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.addHandler(console_handler)
    logging.debug("=" * 80)
    logging.debug("UPDATE SESSION STARTED")
    logging.debug(f"Command: {' '.join(sys.argv)}")
    logging.debug(f"Working Directory: {os.getcwd()}")
    logging.debug(f"Python Version: {sys.version}")
    logging.debug("=" * 80)


def get_module_install_dir(module_name: str, modules_path: str = MODULES_PATH):
    """Install directory declared in a module's index.json, or None."""
    module_index = load_module_index(os.path.join(modules_path, module_name))
    if not module_index:
        return None
    install_dir = module_index.get("config", {}).get("install_dir")
    return Path(install_dir) if install_dir else None


def list_modules(modules_path: str = MODULES_PATH) -> bool:
    """List available application modules."""
    names = list_module_names(modules_path)
    if not names:
        log_message(f"No modules found in {modules_path}", "WARNING")
        return False

    log_message(f"Available modules ({len(names)}):")
    for name in names:
        module_index = load_module_index(os.path.join(modules_path, name)) or {}
        schema = module_index.get("metadata", {}).get("schema_version", "unknown")
        log_message(f"  - {name} (schema {schema})")
    return True


def get_module_status(module_name: str = None, modules_path: str = MODULES_PATH,
                      backup_manager: BackupManager = None, root_config: dict = None) -> bool:
    """
    Show installed version and leftover snapshots for one or all modules.

    Returns:
        bool: False if a module is unknown or a snapshot from a failed run exists
    """
    names = [module_name] if module_name else list_module_names(modules_path)
    root_config = root_config if root_config is not None else load_root_config()
    backup_manager = backup_manager or BackupManager(
        suffix=root_config.get("state", {}).get("snapshot_suffix", SNAPSHOT_SUFFIX))
    healthy = True

    for name in names:
        install_dir = get_module_install_dir(name, modules_path)
        if install_dir is None:
            log_message(f"{name}: unknown module or no install_dir configured", "ERROR")
            healthy = False
            continue

        version = VersionStore(state_dir_for(install_dir, root_config)).read_version(name)
        if not install_dir.exists():
            state = "not installed"
        else:
            state = f"installed v{version}" if version else "installed (no version record)"
        log_message(f"{name}: {state} at {install_dir}")

        stale = backup_manager.existing_snapshot(install_dir)
        if stale is not None:
            log_message(f"{name}: snapshot from an unfinished update at {stale}", "WARNING")
            healthy = False

    return healthy


def result_exit_code(result) -> int:
    """0 for success, no-op and skipped runs; 1 when the module reports failure."""
    if not isinstance(result, dict):
        return 1
    if result.get("success") or result.get("outcome") == "skipped":
        return 0
    return 1


def main(argv=None):
    """
    Main entry point for the update orchestrator CLI.
    """
    parser = argparse.ArgumentParser(description="Container application update orchestrator")
    parser.add_argument("--app", metavar="APP",
                        help="Install or update an application module")
    parser.add_argument("--check-only", action="store_true",
                        help="Only report whether an update is available")
    parser.add_argument("--verbose", action="store_true",
                        help="Show subprocess output and debug logging")
    parser.add_argument("--list-modules", action="store_true",
                        help="List available application modules")
    parser.add_argument("--module-status", metavar="APP",
                        help="Show install state of one application")
    parser.add_argument("--all-status", action="store_true",
                        help="Show install state of all applications")
    parser.add_argument("--generate-secret", metavar="LENGTH", type=int,
                        help="Print a random alphanumeric secret of LENGTH characters")

    args = parser.parse_args(argv)

    root_config = load_root_config()
    verbose = args.verbose or bool(root_config.get("verbose", False))

    try:
        setup_global_update_logging(verbose)

        if args.generate_secret is not None:
            try:
                print(generate_secret(args.generate_secret))
            except (ValueError, EntropyFailure) as e:
                log_message(str(e), "ERROR")
                return 1
            return 0

        if args.list_modules:
            return 0 if list_modules() else 1

        if args.module_status:
            return 0 if get_module_status(args.module_status) else 1

        if args.all_status:
            return 0 if get_module_status() else 1

        if args.app:
            if args.app not in list_module_names():
                log_message(f"Unknown application module: {args.app}", "ERROR")
                return 1
            module_args = ["--check"] if args.check_only else []
            if args.verbose:
                module_args.append("--verbose")
            return result_exit_code(run_update(args.app, module_args))

        parser.print_help()
        return 1

    except KeyboardInterrupt:
        log_message("Update process interrupted by user", "WARNING")
        return 130


if __name__ == "__main__":
    sys.exit(main())
