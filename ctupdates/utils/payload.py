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
Release payload download and placement.

fetch() streams the release into a work directory and checks it (size,
sha256 when the source publishes one, archive readability). apply()
extracts it into an empty install directory. Neither touches anything
outside the work directory and the install directory.
"""

import hashlib
import os
import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import requests

from .errors import ApplyFailure, FetchFailure
from .index import log_message
from .release_resolver import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT, ReleaseInfo

CHUNK_SIZE = 64 * 1024


def calculate_file_sha256(file_path: Union[str, Path]) -> str:
    """Calculate the SHA-256 of a file."""
    hash_sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hash_sha256.update(chunk)
    return hash_sha256.hexdigest()


class PayloadFetcher:
    """Downloads, validates and places release payloads."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    # --- Fetching ---

    def _payload_filename(self, release: ReleaseInfo) -> str:
        if release.asset_name:
            return os.path.basename(release.asset_name)
        name = os.path.basename(urlparse(release.fetch_url).path)
        if release.payload_kind == "tarball" or not name:
            return f"payload-{release.version}.tar.gz"
        return name

    def fetch(self, release: ReleaseInfo, work_dir: Union[str, Path]) -> Path:
        """
        Download a release payload into work_dir and validate it.

        Returns:
            Path: The downloaded file

        Raises:
            FetchFailure: Download failed, was truncated or is corrupt
        """
        work_dir = Path(work_dir)
        target = work_dir / self._payload_filename(release)
        hasher = hashlib.sha256()
        received = 0

        log_message(f"Downloading {release.fetch_url}")
        try:
            with requests.get(release.fetch_url, stream=True, timeout=self.timeout,
                              headers={"User-Agent": self.user_agent}) as response:
                response.raise_for_status()
                expected_size = release.size
                if expected_size is None and not response.headers.get("Content-Encoding"):
                    content_length = response.headers.get("Content-Length")
                    if content_length and content_length.isdigit():
                        expected_size = int(content_length)

                with open(target, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        hasher.update(chunk)
                        received += len(chunk)
        except requests.RequestException as e:
            raise FetchFailure(f"Download of {release.fetch_url} failed: {e}") from e
        except OSError as e:
            raise FetchFailure(f"Could not write payload to {target}: {e}") from e

        if received == 0:
            raise FetchFailure(f"Download of {release.fetch_url} returned no data")
        if expected_size is not None and received != expected_size:
            raise FetchFailure(
                f"Payload truncated: received {received} of {expected_size} bytes from {release.fetch_url}")
        if release.sha256:
            actual = hasher.hexdigest()
            if actual != release.sha256.lower():
                raise FetchFailure(f"Checksum mismatch for {target.name}: expected {release.sha256}, got {actual}")
            log_message(f"Checksum verified for {target.name}", "DEBUG")

        if release.payload_kind != "binary" and not self._is_archive(target):
            raise FetchFailure(f"Payload {target.name} is not a readable archive")

        log_message(f"Downloaded {received} bytes to {target}")
        return target

    @staticmethod
    def _is_archive(path: Path) -> bool:
        try:
            return tarfile.is_tarfile(path) or zipfile.is_zipfile(path)
        except OSError:
            return False

    # --- Applying ---

    def apply(self, payload: Union[str, Path], release: ReleaseInfo, install_path: Union[str, Path],
              binary_name: Optional[str] = None, flatten: bool = True) -> None:
        """
        Place a downloaded payload at install_path.

        install_path must be missing or empty. Archives whose content sits
        in a single top-level directory (GitHub source tarballs) are
        flattened so that directory's content lands at install_path.

        Raises:
            ApplyFailure: Extraction or placement failed
        """
        payload = Path(payload)
        install_path = Path(install_path)

        try:
            install_path.mkdir(parents=True, exist_ok=True)
            if any(install_path.iterdir()):
                raise ApplyFailure(f"Install directory {install_path} is not empty")

            if release.payload_kind == "binary":
                target = install_path / (binary_name or payload.name)
                shutil.copy2(payload, target)
                os.chmod(target, 0o755)
                log_message(f"Installed binary {target}")
                return

            staging = payload.parent / "extract"
            if staging.exists():
                shutil.rmtree(staging)
            staging.mkdir()
            self._extract(payload, staging)

            root = staging
            entries = list(staging.iterdir())
            if flatten and len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
                root = entries[0]

            for entry in root.iterdir():
                shutil.move(str(entry), str(install_path / entry.name))
        except ApplyFailure:
            raise
        except (tarfile.TarError, zipfile.BadZipFile, shutil.Error, EOFError, OSError) as e:
            raise ApplyFailure(f"Could not place {payload.name} into {install_path}: {e}") from e

        log_message(f"Extracted {payload.name} into {install_path}")

    @staticmethod
    def _extract(payload: Path, destination: Path) -> None:
        if tarfile.is_tarfile(payload):
            if not hasattr(tarfile, "data_filter"):
                raise ApplyFailure(f"Refusing to extract {payload.name}: this Python has no tarfile "
                                   f"extraction filters (3.9.17, 3.10.12, 3.11.4 or newer required)")
            with tarfile.open(payload, "r:*") as tar:
                tar.extractall(destination, filter="data")
        elif zipfile.is_zipfile(payload):
            with zipfile.ZipFile(payload) as archive:
                archive.extractall(destination)
        else:
            raise ApplyFailure(f"Unsupported payload format: {payload.name}")
