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
Update Orchestrator

Decides whether an installed application needs updating and, if it does,
replaces it while keeping user data:

    1. Check installed    install directory missing -> fresh install
    2. Check version      latest == recorded -> done, nothing written
    3. Back up            rename /opt/app to /opt/app-backup
    4. Fetch              download + verify into a temp directory
    5. Apply              extract into the now empty /opt/app, set owner
    6. Restore user data  copy .env, uploads, ... back from the snapshot
    7. Finalize           record version, drop snapshot, drop temp files

The version record is written exactly once, after steps 5 and 6 succeed.
A failure after step 3 leaves the snapshot where it is and names it in
the error; the old tree is never put back automatically.
"""

import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from packaging.version import InvalidVersion, Version

from .utils.backup_manager import BackupManager, BackupSnapshot
from .utils.credentials import DEFAULT_SECRET_LENGTH, CredentialRecord, CredentialStore
from .utils.errors import (
    ApplyFailure,
    FetchFailure,
    PersistFailure,
    ResolutionFailure,
    SnapshotFailure,
    UpdateFailure,
)
from .utils.index import log_message
from .utils.moduleUtils import get_verbose_mode, load_root_config
from .utils.output import OutputChannel
from .utils.payload import PayloadFetcher
from .utils.permissions import PermissionManager, targets_from_config
from .utils.release_resolver import ReleaseInfo, ReleaseResolver
from .utils.version_store import VersionStore


class UpdateState(Enum):
    """Steps of an orchestrator run."""
    IDLE = "idle"
    CHECK_INSTALLED = "check_installed"
    CHECK_VERSION = "check_version"
    UP_TO_DATE = "up_to_date"
    NEEDS_UPDATE = "needs_update"
    BACKING_UP = "backing_up"
    FETCHING = "fetching"
    APPLYING = "applying"
    RESTORING_USER_DATA = "restoring_user_data"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class UpdateOutcome(Enum):
    """How a run ended."""
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    NOT_INSTALLED = "not_installed"
    UPDATED = "updated"
    INSTALLED = "installed"
    NOT_SUPPORTED = "not_supported"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DeploymentContext:
    """Everything a run needs to know about where the application lives."""
    application_name: str
    install_path: Path
    output: OutputChannel = field(default_factory=OutputChannel)
    state_dir: Optional[Path] = None
    credentials_dir: Optional[Path] = None

    def __post_init__(self):
        self.install_path = Path(self.install_path)
        # Version markers live next to the install directory (/opt/app_version.txt)
        self.state_dir = Path(self.state_dir) if self.state_dir else self.install_path.parent
        if self.credentials_dir:
            self.credentials_dir = Path(self.credentials_dir)

    @property
    def verbose(self) -> bool:
        return self.output.verbose


@dataclass
class InstallationRecord:
    """What is installed right now, as far as the filesystem says."""
    application_name: str
    install_path: Path
    installed_version: Optional[str] = None

    @property
    def directory_exists(self) -> bool:
        return self.install_path.exists()


@dataclass
class Upgradable:
    """Strategy for applications that can be updated in place."""
    release: Dict[str, Any]
    restore_paths: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    post_update_commands: List[List[str]] = field(default_factory=list)
    permissions: Dict[str, Any] = field(default_factory=dict)
    credentials: List[str] = field(default_factory=list)
    secret_length: int = DEFAULT_SECRET_LENGTH
    binary_name: Optional[str] = None
    flatten: bool = True
    post_install: Optional[Callable[[DeploymentContext, List[CredentialRecord]], None]] = None

    upgradable = True


@dataclass
class NotUpgradable:
    """Strategy for applications with no automatic update path."""
    reason: str = ""

    upgradable = False


UpdateStrategy = Union[Upgradable, NotUpgradable]


@dataclass
class UpdateResult:
    """Outcome of one orchestrator run, with its single terminal message."""
    application_name: str
    outcome: UpdateOutcome
    message: str
    old_version: Optional[str] = None
    new_version: Optional[str] = None
    snapshot_path: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome not in (UpdateOutcome.FAILED, UpdateOutcome.SKIPPED)

    @property
    def changed(self) -> bool:
        return self.outcome in (UpdateOutcome.UPDATED, UpdateOutcome.INSTALLED)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": self.success,
            "updated": self.changed,
            "outcome": self.outcome.value,
            "message": self.message,
            "old_version": self.old_version,
            "new_version": self.new_version,
        }
        if self.snapshot_path:
            result["snapshot_path"] = self.snapshot_path
        if self.error:
            result["error"] = self.error
        if self.warnings:
            result["warnings"] = list(self.warnings)
        return result


def versions_match(installed: Optional[str], latest: str) -> bool:
    """
    Compare a recorded version with the latest release.

    Plain string equality after dropping a leading 'v'; PEP 440 versions
    are also compared numerically so "6.1" and "6.1.0" are the same.
    """
    if installed is None:
        return False
    a = installed.strip().lstrip("vV")
    b = latest.strip().lstrip("vV")
    if a == b:
        return True
    try:
        return Version(a) == Version(b)
    except InvalidVersion:
        return False


class UpdateOrchestrator:
    """
    Runs the install/update state machine for one application.

    Collaborators can be injected; by default they are built from the
    root configuration.
    """

    def __init__(self, context: DeploymentContext, strategy: UpdateStrategy,
                 resolver: Optional[ReleaseResolver] = None,
                 fetcher: Optional[PayloadFetcher] = None,
                 version_store: Optional[VersionStore] = None,
                 backup_manager: Optional[BackupManager] = None,
                 credential_store: Optional[CredentialStore] = None,
                 permission_manager: Optional[PermissionManager] = None):
        self.context = context
        self.strategy = strategy
        self.output = context.output
        self.resolver = resolver or ReleaseResolver()
        self.fetcher = fetcher or PayloadFetcher()
        self.version_store = version_store or VersionStore(context.state_dir)
        self.backup_manager = backup_manager or BackupManager()
        self.credential_store = credential_store or CredentialStore(context.credentials_dir)
        self.permission_manager = permission_manager or PermissionManager(context.application_name)
        self.state = UpdateState.IDLE
        self.history: List[UpdateState] = [UpdateState.IDLE]

    @property
    def app(self) -> str:
        return self.context.application_name

    def _transition(self, state: UpdateState) -> None:
        log_message(f"[{self.app}] {self.state.value} -> {state.value}", "DEBUG")
        self.state = state
        self.history.append(state)

    def installation_record(self) -> InstallationRecord:
        return InstallationRecord(
            application_name=self.app,
            install_path=self.context.install_path,
            installed_version=self.version_store.read_version(self.app),
        )

    # --- Entry points ---

    def check(self) -> UpdateResult:
        """Report whether an update is available without changing anything."""
        self._transition(UpdateState.CHECK_INSTALLED)
        record = self.installation_record()

        if not self.strategy.upgradable:
            return self._not_supported(record)

        if not record.directory_exists:
            message = f"{self.app} is not installed at {record.install_path}."
            self.output.info(message)
            return UpdateResult(self.app, UpdateOutcome.NOT_INSTALLED, message)

        self._transition(UpdateState.CHECK_VERSION)
        try:
            release = self.resolver.resolve_latest(self.app, self.strategy.release)
        except ResolutionFailure as e:
            return self._fail(e, record)

        if versions_match(record.installed_version, release.version):
            self._transition(UpdateState.UP_TO_DATE)
            message = f"No update required. {self.app} is already at v{record.installed_version}."
            self.output.ok(message)
            return UpdateResult(self.app, UpdateOutcome.UP_TO_DATE, message,
                                old_version=record.installed_version, new_version=release.version)

        self._transition(UpdateState.NEEDS_UPDATE)
        message = f"Update available for {self.app}: {record.installed_version or 'unknown'} -> v{release.version}."
        self.output.ok(message)
        return UpdateResult(self.app, UpdateOutcome.UPDATE_AVAILABLE, message,
                            old_version=record.installed_version, new_version=release.version)

    def run(self) -> UpdateResult:
        """Install or update the application. Always returns a result."""
        self._transition(UpdateState.CHECK_INSTALLED)
        record = self.installation_record()

        if not self.strategy.upgradable:
            return self._not_supported(record)

        try:
            if not record.directory_exists:
                return self._fresh_install(record)
            return self._update(record)
        except UpdateFailure as e:
            return self._fail(e, record)

    # --- Paths through the state machine ---

    def _not_supported(self, record: InstallationRecord) -> UpdateResult:
        message = f"{self.app} has no automatic update path."
        if self.strategy.reason:
            message += f" {self.strategy.reason}"
        if not record.directory_exists:
            message = f"No {self.app} installation found at {record.install_path}. {message}"
        self.output.error(message)
        return UpdateResult(self.app, UpdateOutcome.NOT_SUPPORTED, message,
                            old_version=record.installed_version)

    def _resolve(self) -> ReleaseInfo:
        self._transition(UpdateState.CHECK_VERSION)
        self.output.info(f"Checking {self.app} for updates")
        release = self.resolver.resolve_latest(self.app, self.strategy.release)
        self.output.ok(f"Latest {self.app} release is v{release.version}")
        return release

    def _update(self, record: InstallationRecord) -> UpdateResult:
        release = self._resolve()

        if versions_match(record.installed_version, release.version):
            self._transition(UpdateState.UP_TO_DATE)
            message = f"No update required. {self.app} is already at v{record.installed_version}."
            self.output.ok(message)
            return UpdateResult(self.app, UpdateOutcome.UP_TO_DATE, message,
                                old_version=record.installed_version, new_version=release.version)

        self._transition(UpdateState.NEEDS_UPDATE)
        log_message(f"Updating {self.app} from {record.installed_version or 'unknown'} to {release.version}")

        stale = self.backup_manager.existing_snapshot(record.install_path)
        if stale is not None:
            self._transition(UpdateState.BACKING_UP)
            raise SnapshotFailure(
                f"Snapshot {stale} already exists from a previous run; "
                f"inspect it and remove it before updating again",
                snapshot_path=str(stale),
            )

        warnings = self._stop_services()
        self._transition(UpdateState.BACKING_UP)
        self.output.info("Backing up current installation")
        try:
            snapshot = self.backup_manager.snapshot(record.install_path)
        except SnapshotFailure:
            self._start_services()
            raise
        self.output.ok(f"Backup complete ({snapshot.snapshot_path})")

        work_dir = None
        try:
            work_dir = self._make_work_dir()
            payload = self._fetch(release, work_dir)
            self._apply(release, payload)
            self._restore_user_data(snapshot)
            warnings.extend(self._finalize(release, snapshot, work_dir))
        except UpdateFailure as e:
            if e.snapshot_path is None:
                e.snapshot_path = snapshot.snapshot_path
            if work_dir is not None:
                shutil.rmtree(work_dir, ignore_errors=True)
            raise

        warnings.extend(self._start_services())
        self._transition(UpdateState.DONE)
        message = f"Updated {self.app} to v{release.version}."
        self.output.ok(message)
        return UpdateResult(self.app, UpdateOutcome.UPDATED, message,
                            old_version=record.installed_version, new_version=release.version,
                            warnings=warnings)

    def _fresh_install(self, record: InstallationRecord) -> UpdateResult:
        self.output.info(f"{self.app} not found at {record.install_path}, performing fresh install")
        release = self._resolve()

        # Generate before anything touches disk so a broken entropy source aborts cleanly
        credentials = []
        if self.strategy.credentials:
            credentials = self.credential_store.generate(self.strategy.credentials, self.strategy.secret_length)

        work_dir = None
        try:
            work_dir = self._make_work_dir()
            payload = self._fetch(release, work_dir)
            # Files written by the post-install hook need the same owner as the payload
            self._apply(release, payload, set_permissions=False)
            self._post_install(credentials)
            self._set_permissions()
            warnings = self._finalize(release, None, work_dir)
        except UpdateFailure:
            if work_dir is not None:
                shutil.rmtree(work_dir, ignore_errors=True)
            raise

        warnings.extend(self._start_services())
        self._transition(UpdateState.DONE)
        message = f"Installed {self.app} v{release.version}."
        self.output.ok(message)
        return UpdateResult(self.app, UpdateOutcome.INSTALLED, message,
                            new_version=release.version, warnings=warnings)

    # --- Steps ---

    def _make_work_dir(self) -> Path:
        try:
            return Path(tempfile.mkdtemp(prefix=f"{self.app}_update_"))
        except OSError as e:
            raise FetchFailure(f"Could not create a temporary download directory: {e}") from e

    def _fetch(self, release: ReleaseInfo, work_dir: Path) -> Path:
        self._transition(UpdateState.FETCHING)
        self.output.info(f"Fetching {self.app} v{release.version}")
        payload = self.fetcher.fetch(release, work_dir)
        self.output.ok(f"Fetched {payload.name}")
        return payload

    def _apply(self, release: ReleaseInfo, payload: Path, set_permissions: bool = True) -> None:
        self._transition(UpdateState.APPLYING)
        self.output.info(f"Installing {self.app} v{release.version}")
        self.fetcher.apply(payload, release, self.context.install_path,
                           binary_name=self.strategy.binary_name, flatten=self.strategy.flatten)

        if set_permissions:
            self._set_permissions()
        self.output.ok(f"Installed {self.app} v{release.version} files")

    def _set_permissions(self) -> None:
        try:
            targets = targets_from_config(str(self.context.install_path), self.strategy.permissions)
        except ValueError as e:
            raise ApplyFailure(f"Invalid permissions configuration for {self.app}: {e}") from e
        if targets and not self.permission_manager.set_permissions(targets):
            raise ApplyFailure(f"Could not set ownership on {self.context.install_path}")

    def _restore_user_data(self, snapshot: BackupSnapshot) -> None:
        self._transition(UpdateState.RESTORING_USER_DATA)
        self.output.info("Restoring user data")
        restored = self.backup_manager.restore_subpaths(
            snapshot.snapshot_path, self.strategy.restore_paths, self.context.install_path)

        for command in self.strategy.post_update_commands:
            self._run_step_command(command)
        self.output.ok(f"Restored {len(restored)} user data path(s)")

    def _post_install(self, credentials: List[CredentialRecord]) -> None:
        if credentials:
            self.credential_store.append(self.app, credentials)
        if self.strategy.post_install is None:
            return
        try:
            self.strategy.post_install(self.context, credentials)
        except (OSError, subprocess.SubprocessError) as e:
            raise ApplyFailure(f"Post-install step for {self.app} failed: {e}") from e

    def _run_step_command(self, command: List[str]) -> None:
        try:
            self.output.run(command, cwd=str(self.context.install_path))
        except (OSError, subprocess.SubprocessError) as e:
            raise ApplyFailure(f"Command '{' '.join(map(str, command))}' failed: {e}") from e

    def _finalize(self, release: ReleaseInfo, snapshot: Optional[BackupSnapshot], work_dir: Path) -> List[str]:
        """Record the version, then clean up. Returns cleanup warnings."""
        self._transition(UpdateState.FINALIZING)
        self.output.info("Finalizing")
        self.version_store.write_version(self.app, release.version)

        warnings = []
        if snapshot is not None:
            try:
                self.backup_manager.discard(snapshot.snapshot_path)
            except OSError as e:
                warnings.append(f"Could not remove snapshot {snapshot.snapshot_path}: {e}")
        try:
            shutil.rmtree(work_dir)
        except OSError as e:
            warnings.append(f"Could not remove temporary files {work_dir}: {e}")

        for warning in warnings:
            log_message(warning, "WARNING")
        self.output.ok("Cleanup complete")
        return warnings

    # --- Services ---

    def _systemctl(self, action: str, service: str) -> Optional[str]:
        try:
            self.output.run(["systemctl", action, service], timeout=120)
        except (OSError, subprocess.SubprocessError) as e:
            warning = f"systemctl {action} {service} failed: {e}"
            log_message(warning, "WARNING")
            return warning
        return None

    def _stop_services(self) -> List[str]:
        return [w for w in (self._systemctl("stop", s) for s in self.strategy.services) if w]

    def _start_services(self) -> List[str]:
        return [w for w in (self._systemctl("start", s) for s in self.strategy.services) if w]

    # --- Failure ---

    def _fail(self, error: UpdateFailure, record: InstallationRecord) -> UpdateResult:
        failed_in = self.state
        self._transition(UpdateState.FAILED)
        name = type(error).__name__

        if not error.fatal:
            message = f"{name}: {error}. No changes were made."
            self.output.error(message)
            return UpdateResult(self.app, UpdateOutcome.SKIPPED, message,
                                old_version=record.installed_version, error=name)

        message = f"{name} during {failed_in.value}: {error}."
        if isinstance(error, SnapshotFailure):
            message += " No changes were made."
        else:
            if isinstance(error, PersistFailure):
                message += " Files were replaced but the version record was not updated."
            if error.snapshot_path:
                message += f" Previous installation preserved at {error.snapshot_path}."
            elif failed_in in (UpdateState.CHECK_VERSION, UpdateState.FETCHING):
                message += " No changes were made."
            else:
                message += f" Check {record.install_path} before retrying."

        self.output.error(message)
        return UpdateResult(self.app, UpdateOutcome.FAILED, message,
                            old_version=record.installed_version,
                            snapshot_path=error.snapshot_path, error=name)


def state_dir_for(install_path: Union[str, Path], root_config: dict) -> Path:
    """Where <app>_version.txt lives: root config state.state_dir, else beside the install."""
    state_dir = root_config.get("state", {}).get("state_dir")
    return Path(state_dir) if state_dir else Path(install_path).parent


def build_orchestrator(application_name: str, install_path: Union[str, Path], strategy: UpdateStrategy,
                       verbose: Optional[bool] = None, root_config: Optional[dict] = None,
                       listener=None) -> UpdateOrchestrator:
    """Wire an orchestrator from the root configuration."""
    root_config = root_config if root_config is not None else load_root_config()
    if verbose is None:
        verbose = get_verbose_mode(root_config)

    http = root_config.get("http", {})
    state = root_config.get("state", {})
    timeout = http.get("timeout", 30)
    user_agent = http.get("user_agent", "ctupdates")

    context = DeploymentContext(
        application_name=application_name,
        install_path=Path(install_path),
        output=OutputChannel(verbose=verbose, listener=listener),
        state_dir=state_dir_for(install_path, root_config),
        credentials_dir=state.get("credentials_dir"),
    )
    return UpdateOrchestrator(
        context,
        strategy,
        resolver=ReleaseResolver(timeout=timeout, user_agent=user_agent),
        fetcher=PayloadFetcher(timeout=timeout, user_agent=user_agent),
        backup_manager=BackupManager(suffix=state.get("snapshot_suffix", "-backup")),
    )


def run_application(application_name: str, install_path: Union[str, Path], strategy: UpdateStrategy,
                    check_only: bool = False, verbose: Optional[bool] = None) -> Dict[str, Any]:
    """
    Run (or just check) one application and return a result dictionary.

    This is what application modules call from their main(args).
    """
    orchestrator = build_orchestrator(application_name, install_path, strategy, verbose=verbose)
    result = orchestrator.check() if check_only else orchestrator.run()
    return result.to_dict()
