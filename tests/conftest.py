"""
Pytest configuration and shared fixtures for the update orchestrator tests.

HTTP is never touched: the resolver is replaced by an in-memory fake and
downloads go through a fake requests response.
"""

import io
import tarfile
from pathlib import Path
from typing import Dict, Optional
from unittest.mock import patch

import pytest

from ctupdates.orchestrator import DeploymentContext, UpdateOrchestrator, Upgradable
from ctupdates.utils.credentials import CredentialStore
from ctupdates.utils.errors import ResolutionFailure
from ctupdates.utils.output import OutputChannel
from ctupdates.utils.release_resolver import ReleaseInfo


# ============ Payload helpers ============

def make_tarball(files: Dict[str, str], top_dir: Optional[str] = None) -> bytes:
    """Build a .tar.gz in memory from {relative_path: text}."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name=f"{top_dir}/{name}" if top_dir else name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class FakeResponse:
    """Just enough of requests.Response for streamed downloads and JSON."""

    def __init__(self, content: bytes = b"", status_code: int = 200, headers=None, json_data=None,
                 chunk_size: int = 1024):
        self.content = content
        self.status_code = status_code
        self.headers = headers if headers is not None else {"Content-Length": str(len(content))}
        self._json = json_data
        self._chunk_size = chunk_size

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        import requests
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size=1024):
        for i in range(0, len(self.content), self._chunk_size):
            yield self.content[i:i + self._chunk_size]

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeResolver:
    """Returns a fixed ReleaseInfo, or raises ResolutionFailure."""

    def __init__(self, version: str = "6.1.0", url: str = "https://example.test/app.tar.gz",
                 fail: bool = False, **release_kwargs):
        self.version = version
        self.url = url
        self.fail = fail
        self.release_kwargs = release_kwargs
        self.calls = 0

    def resolve_latest(self, application, release_config):
        self.calls += 1
        if self.fail:
            raise ResolutionFailure(f"Could not query releases for {application}: connection refused")
        kwargs = {"payload_kind": "tarball"}
        kwargs.update(self.release_kwargs)
        return ReleaseInfo(version=self.version, fetch_url=self.url, **kwargs)


# ============ Filesystem fixtures ============

@pytest.fixture
def opt_dir(tmp_path: Path) -> Path:
    """Stand-in for /opt inside the container."""
    path = tmp_path / "opt"
    path.mkdir()
    return path


@pytest.fixture
def home_dir(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def installed_app(opt_dir: Path) -> Path:
    """An application at v6.0.1 with user data."""
    install_path = opt_dir / "bookstack"
    (install_path / "public" / "uploads").mkdir(parents=True)
    (install_path / "app").mkdir()
    (install_path / ".env").write_text("APP_KEY=existing\nDB_PASSWORD=secret\n")
    (install_path / "public" / "uploads" / "photo.png").write_text("png-bytes")
    (install_path / "app" / "version").write_text("6.0.1")
    (opt_dir / "bookstack_version.txt").write_text("6.0.1\n")
    return install_path


@pytest.fixture
def release_tarball() -> bytes:
    """v6.1.0 payload shaped like a GitHub source tarball."""
    return make_tarball(
        {
            "app/version": "6.1.0",
            ".env.example": "APP_URL=\nDB_DATABASE=\nDB_USERNAME=\nDB_PASSWORD=\n",
            "public/uploads/.gitkeep": "",
            "storage/uploads/.gitkeep": "",
        },
        top_dir="BookStackApp-BookStack-abc1234",
    )


@pytest.fixture
def serve_payload(release_tarball):
    """Patch requests.get in the payload module to serve the release tarball."""
    with patch("ctupdates.utils.payload.requests.get") as mock_get:
        mock_get.return_value = FakeResponse(release_tarball)
        yield mock_get


@pytest.fixture
def strategy() -> Upgradable:
    return Upgradable(
        release={"source": "github", "repo": "BookStackApp/BookStack", "mode": "tarball"},
        restore_paths=[".env", "public/uploads", "storage/uploads", "themes"],
    )


@pytest.fixture
def make_orchestrator(opt_dir: Path, home_dir: Path):
    """Factory building an orchestrator for /opt/bookstack with a fake resolver."""

    def _make(strategy, resolver=None, **kwargs):
        context = DeploymentContext(
            application_name="bookstack",
            install_path=opt_dir / "bookstack",
            output=OutputChannel(),
        )
        return UpdateOrchestrator(
            context,
            strategy,
            resolver=resolver or FakeResolver(),
            credential_store=CredentialStore(home_dir),
            **kwargs,
        )

    return _make


def snapshot_tree(root: Path) -> Dict[str, tuple]:
    """Map every path under root to (mtime_ns, content) for change detection."""
    state = {}
    for path in sorted(root.rglob("*")):
        stat = path.lstat()
        content = path.read_bytes() if path.is_file() else None
        state[str(path.relative_to(root))] = (stat.st_mtime_ns, content)
    return state
