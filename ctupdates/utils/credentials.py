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
Secret generation and the operator credentials file.

Secrets are alphanumeric only so they can be dropped into .env files,
SQL statements and shell commands without quoting.
"""

import os
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from .errors import EntropyFailure
from .index import log_message

ALPHABET = string.ascii_letters + string.digits
DEFAULT_SECRET_LENGTH = 20


def generate_secret(length: int = DEFAULT_SECRET_LENGTH) -> str:
    """
    Generate a random alphanumeric secret of exactly `length` characters.

    Args:
        length: Number of characters, at least 1

    Returns:
        str: Secret drawn from [A-Za-z0-9]

    Raises:
        ValueError: length is below 1
        EntropyFailure: the OS randomness source is unavailable
    """
    if length < 1:
        raise ValueError(f"Secret length must be at least 1, got {length}")
    try:
        return "".join(secrets.choice(ALPHABET) for _ in range(length))
    except (NotImplementedError, OSError) as e:
        raise EntropyFailure(f"Randomness source unavailable: {e}") from e


@dataclass
class CredentialRecord:
    """A generated credential handed to the operator."""
    username: str
    secret: str
    generated_at: datetime = field(default_factory=datetime.now)

    def render(self) -> str:
        return f"{self.username}: {self.secret}"


class CredentialStore:
    """
    Append-only credentials file, one per application, in the operator's home.

    Existing content is never rewritten; every install appends a new block.
    """

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self.base_dir = Path(base_dir) if base_dir else Path.home()

    def path_for(self, application: str) -> Path:
        return self.base_dir / f"{application}.creds"

    def generate(self, usernames: List[str], length: int = DEFAULT_SECRET_LENGTH) -> List[CredentialRecord]:
        """Generate one record per username. Raises EntropyFailure."""
        return [CredentialRecord(username=name, secret=generate_secret(length)) for name in usernames]

    def append(self, application: str, records: List[CredentialRecord]) -> Path:
        """
        Append credential records for an application.

        Returns:
            Path: The credentials file written to
        """
        path = self.path_for(application)
        path.parent.mkdir(parents=True, exist_ok=True)

        lines = [f"{application} Credentials ({datetime.now():%Y-%m-%d %H:%M:%S})"]
        lines.extend(record.render() for record in records)

        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write("\n".join(lines) + "\n\n")

        log_message(f"Stored {len(records)} credential(s) in {path}")
        return path
