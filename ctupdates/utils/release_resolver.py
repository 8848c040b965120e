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
Release Resolver

Looks up the latest upstream release of an application and where to
download it from. Read-only; every failure is a ResolutionFailure so the
caller can skip the update and leave the install alone.

Release configuration (from a module's index.json "release" block):

    {"source": "github", "repo": "navidrome/navidrome",
     "mode": "asset", "asset_pattern": "navidrome_*_linux_amd64.tar.gz"}

    {"source": "github", "repo": "BookStackApp/BookStack", "mode": "tarball"}

    {"source": "static", "version": "2.4.1",
     "url": "https://example.org/app-{version}.tar.gz"}
"""

import fnmatch
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .errors import ResolutionFailure
from .index import log_message

GITHUB_API_URL = "https://api.github.com/repos/{repo}/releases/latest"
DEFAULT_TIMEOUT = 30
DEFAULT_USER_AGENT = "ctupdates"


@dataclass
class ReleaseInfo:
    """Latest release of an application."""
    version: str
    fetch_url: str
    payload_kind: str = "archive"  # "tarball", "archive" or "binary"
    sha256: Optional[str] = None
    size: Optional[int] = None
    asset_name: Optional[str] = None


def normalize_tag(tag: str, prefix: str = "") -> str:
    """Strip a configured tag prefix and a leading 'v' from a release tag."""
    tag = tag.strip()
    if prefix and tag.startswith(prefix):
        tag = tag[len(prefix):]
    if tag[:1] in ("v", "V") and tag[1:2].isdigit():
        tag = tag[1:]
    return tag


class ReleaseResolver:
    """Resolves the latest version and payload location for an application."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, user_agent: str = DEFAULT_USER_AGENT,
                 token: Optional[str] = None):
        self.timeout = timeout
        self.user_agent = user_agent
        self.token = token if token is not None else os.environ.get("GITHUB_TOKEN")

    def resolve_latest(self, application: str, release_config: Dict[str, Any]) -> ReleaseInfo:
        """
        Resolve the latest release for an application.

        Args:
            application: Application name, used in messages
            release_config: The module's "release" configuration block

        Returns:
            ReleaseInfo: Version without tag prefix and a download location

        Raises:
            ResolutionFailure: Source unreachable, empty or unparseable
        """
        source = release_config.get("source", "github")
        if source == "github":
            info = self._resolve_github(application, release_config)
        elif source == "static":
            info = self._resolve_static(application, release_config)
        else:
            raise ResolutionFailure(f"Unknown release source '{source}' for {application}")

        log_message(f"Latest {application} release: {info.version} ({info.fetch_url})", "DEBUG")
        return info

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": self.user_agent,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _fetch_json(self, application: str, url: str) -> Dict[str, Any]:
        try:
            response = requests.get(url, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise ResolutionFailure(f"Could not query releases for {application}: {e}") from e
        except ValueError as e:
            raise ResolutionFailure(f"Release metadata for {application} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ResolutionFailure(f"Unexpected release metadata for {application}: {type(data).__name__}")
        return data

    def _resolve_github(self, application: str, release_config: Dict[str, Any]) -> ReleaseInfo:
        repo = release_config.get("repo")
        api_url = release_config.get("api_url")
        if not api_url:
            if not repo:
                raise ResolutionFailure(f"No GitHub repository configured for {application}")
            api_url = GITHUB_API_URL.format(repo=repo)

        data = self._fetch_json(application, api_url)

        tag = data.get("tag_name")
        if not tag or not isinstance(tag, str):
            raise ResolutionFailure(f"No published release found for {application}")
        version = normalize_tag(tag, release_config.get("tag_prefix", ""))
        if not version:
            raise ResolutionFailure(f"Release tag '{tag}' for {application} has no version")

        mode = release_config.get("mode", "tarball")
        if mode == "tarball":
            url = data.get("tarball_url")
            if not url:
                raise ResolutionFailure(f"Release {tag} of {application} has no source tarball")
            return ReleaseInfo(version=version, fetch_url=url, payload_kind="tarball")

        if mode in ("asset", "binary"):
            pattern = release_config.get("asset_pattern", "*").replace("{version}", version)
            asset = self._select_asset(data.get("assets") or [], pattern)
            if asset is None:
                raise ResolutionFailure(f"No asset matching '{pattern}' in {application} release {tag}")
            return ReleaseInfo(
                version=version,
                fetch_url=asset["browser_download_url"],
                payload_kind="binary" if mode == "binary" else "archive",
                sha256=self._asset_sha256(asset),
                size=asset.get("size") or None,
                asset_name=asset.get("name"),
            )

        raise ResolutionFailure(f"Unknown release mode '{mode}' for {application}")

    @staticmethod
    def _select_asset(assets, pattern: str) -> Optional[Dict[str, Any]]:
        for asset in assets:
            name = asset.get("name", "")
            if fnmatch.fnmatch(name, pattern) and asset.get("browser_download_url"):
                return asset
        return None

    @staticmethod
    def _asset_sha256(asset: Dict[str, Any]) -> Optional[str]:
        digest = asset.get("digest") or ""
        if digest.startswith("sha256:"):
            return digest.split(":", 1)[1].lower()
        return None

    def _resolve_static(self, application: str, release_config: Dict[str, Any]) -> ReleaseInfo:
        version = release_config.get("version")
        url = release_config.get("url")
        if not version or not url:
            raise ResolutionFailure(f"Static release for {application} needs both 'version' and 'url'")
        version = normalize_tag(str(version))
        return ReleaseInfo(
            version=version,
            fetch_url=url.format(version=version),
            payload_kind=release_config.get("payload_kind", "archive"),
            sha256=release_config.get("sha256"),
        )
