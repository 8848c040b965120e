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
Output Channel

Status events for the operator (info / ok / error) plus a command runner
whose subprocess output is suppressed unless verbose mode is on.
"""

import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from .index import log_message


@dataclass
class StatusEvent:
    """A single status report."""
    kind: str  # "info", "ok" or "error"
    message: str
    timestamp: datetime = field(default_factory=datetime.now)


def verbose_from_env() -> bool:
    """True when VERBOSE=yes (or 1/true) is set in the environment."""
    return os.environ.get("VERBOSE", "").strip().lower() in ("yes", "1", "true")


class OutputChannel:
    """
    Renders status events through log_message and keeps a record of them.

    An optional listener receives every event, which is how a frontend
    (or a test) observes progress without scraping logs.
    """

    def __init__(self, verbose: bool = False, listener: Optional[Callable[[StatusEvent], None]] = None):
        self.verbose = verbose
        self.events: List[StatusEvent] = []
        self._listener = listener

    def _emit(self, kind: str, message: str, level: str) -> None:
        event = StatusEvent(kind=kind, message=message)
        self.events.append(event)
        prefix = {"ok": "✓ ", "error": "✗ "}.get(kind, "")
        log_message(f"{prefix}{message}", level)
        if self._listener:
            self._listener(event)

    def info(self, message: str) -> None:
        self._emit("info", message, "INFO")

    def ok(self, message: str) -> None:
        self._emit("ok", message, "INFO")

    def error(self, message: str) -> None:
        self._emit("error", message, "ERROR")

    def run(self, command: Sequence[str], cwd: Optional[str] = None, timeout: int = 1800,
            env: Optional[dict] = None) -> subprocess.CompletedProcess:
        """
        Run a command, quietly unless verbose.

        In quiet mode stdout/stderr are captured and only logged when the
        command fails. Raises subprocess.CalledProcessError on a non-zero
        exit and subprocess.TimeoutExpired on timeout.
        """
        command = [str(part) for part in command]
        log_message(f"Running: {' '.join(command)}", "DEBUG")

        if self.verbose:
            result = subprocess.run(command, cwd=cwd, timeout=timeout, env=env, text=True)
        else:
            result = subprocess.run(command, cwd=cwd, timeout=timeout, env=env,
                                    capture_output=True, text=True)

        if result.returncode != 0:
            log_message(f"Command failed ({result.returncode}): {' '.join(command)}", "ERROR")
            if not self.verbose:
                if result.stdout:
                    log_message(f"Command output: {result.stdout.strip()}", "ERROR")
                if result.stderr:
                    log_message(f"Error output: {result.stderr.strip()}", "ERROR")
            raise subprocess.CalledProcessError(result.returncode, command,
                                                output=result.stdout, stderr=result.stderr)
        return result

    def last_event(self) -> Optional[StatusEvent]:
        return self.events[-1] if self.events else None
