"""
Shared pytest fixtures for deploysync tests.
"""

import json
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple, Union

import pytest

from deploysync.executor import CommandResult, CommandRunner
from deploysync.models import Protocol, TargetConfig, UploadFile
from deploysync.protocols.base import RemoteListingCapable, Transport


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config() -> Dict[str, Any]:
    """Sample configuration for testing."""
    return {
        "global_excludes": ["*.pyc", "__pycache__/"],
        "profiles": {
            "website": {
                "local_basepath": "/tmp/local",
                "excludes": ["*.tmp"],
                "defaults": {"user": "deploy", "protocol": "sftp"},
                "targets": [
                    {"host": "web1.example.com", "dest": "/var/www/html"},
                    {
                        "host": "web2.example.com",
                        "dest": "/srv/site",
                        "protocol": "rsync",
                        "sync_mode": "mirror",
                    },
                ],
            },
            "legacy-ftp": {
                "local_basepath": "/tmp/local",
                "targets": [
                    {
                        "host": "ftp.example.com",
                        "protocol": "ftp",
                        "user": "testuser",
                        "password": "testpass",
                        "dest": "/public_html",
                    }
                ],
            },
        },
    }


@pytest.fixture
def config_file(temp_dir: Path, sample_config: Dict[str, Any]) -> Path:
    """Create a temporary config file."""
    config_path = temp_dir / ".deploysync.json"
    with open(config_path, "w") as f:
        json.dump(sample_config, f)
    return config_path


@pytest.fixture
def sample_file_structure(temp_dir: Path) -> Path:
    """Create a sample file structure for testing."""
    # Create directories
    (temp_dir / "src").mkdir()
    (temp_dir / "src" / "components").mkdir()
    (temp_dir / "assets").mkdir()

    # Create files
    (temp_dir / "index.html").write_text("<html></html>")
    (temp_dir / "style.css").write_text("body {}")
    (temp_dir / "src" / "app.js").write_text("console.log('app');")
    (temp_dir / "src" / "components" / "header.js").write_text("// header")
    (temp_dir / "assets" / "logo.png").write_bytes(b"\x89PNG")

    # Create files that should be excluded
    (temp_dir / "__pycache__").mkdir()
    (temp_dir / "__pycache__" / "module.pyc").write_bytes(b"")
    (temp_dir / "temp.tmp").write_text("temporary")

    return temp_dir


@pytest.fixture
def isolated_home(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the home directory at an empty temp dir so no global config is found."""
    home = temp_dir / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: home))
    return home


@pytest.fixture
def make_target() -> Callable[..., TargetConfig]:
    """Factory for TargetConfig with test defaults."""

    def _make(**overrides: Any) -> TargetConfig:
        params: Dict[str, Any] = {
            "host": "example.com",
            "protocol": Protocol.SFTP,
            "dest": "/var/www",
            "user": "deploy",
        }
        params.update(overrides)
        return TargetConfig(**params)

    return _make


def upload_file(path: str, content: Union[str, bytes] = b"", **kwargs: Any) -> UploadFile:
    data = content.encode() if isinstance(content, str) else content
    return UploadFile(relative_path=path, content=data, size=len(data), **kwargs)


@pytest.fixture
def make_file() -> Callable[..., UploadFile]:
    """Factory for in-memory UploadFiles."""
    return upload_file


class FakeRunner(CommandRunner):
    """CommandRunner that records calls and replays scripted results."""

    def __init__(
        self,
        results: Optional[List[CommandResult]] = None,
        available: Tuple[str, ...] = ("ssh", "scp", "rsync", "sshpass"),
    ):
        self.calls: List[Tuple[List[str], Optional[Dict[str, str]], Optional[float]]] = []
        self.results = list(results or [])
        self.available = set(available)

    def which(self, name: str) -> bool:
        return name in self.available

    def run(
        self,
        args: List[str],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        self.calls.append((list(args), env, timeout))
        if self.results:
            return self.results.pop(0)
        return CommandResult(0)

    @property
    def commands(self) -> List[List[str]]:
        return [args for args, _env, _timeout in self.calls]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


class MemoryTransport(Transport):
    """Transport over an in-memory dict of remote files."""

    def __init__(
        self,
        target: TargetConfig,
        remote: Optional[Dict[str, bytes]] = None,
        connect_error: Optional[Exception] = None,
        fail_paths: Tuple[str, ...] = (),
        read_delay: float = 0.0,
    ):
        super().__init__(target)
        self.remote: Dict[str, bytes] = remote if remote is not None else {}
        self.connect_error = connect_error
        self.fail_paths = set(fail_paths)
        self.read_delay = read_delay
        self.connected = False
        self.disconnect_calls = 0
        self.operations: List[Tuple[str, str]] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self._lock = threading.Lock()

    def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def mkdir(self, remote_path: str) -> None:
        self.operations.append(("mkdir", remote_path))

    def transfer(self, file, remote_path, on_progress=None) -> None:
        self.operations.append(("transfer", remote_path))
        if remote_path in self.fail_paths:
            raise OSError(f"disk full: {remote_path}")
        data = file.read_local() or b""
        self.remote[remote_path] = data
        if on_progress:
            on_progress(len(data), len(data))

    def delete(self, remote_path: str) -> None:
        self.operations.append(("delete", remote_path))
        self.remote.pop(remote_path, None)

    def read_file(self, remote_path: str) -> Optional[bytes]:
        with self._lock:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.read_delay:
                time.sleep(self.read_delay)
            return self.remote.get(remote_path)
        finally:
            with self._lock:
                self.in_flight -= 1


class ListingMemoryTransport(MemoryTransport, RemoteListingCapable):
    """MemoryTransport that can also enumerate its files."""

    def __init__(self, *args: Any, list_error: Optional[Exception] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.list_error = list_error

    def list_remote(self) -> List[str]:
        if self.list_error is not None:
            raise self.list_error
        return sorted(self.remote)


@pytest.fixture
def memory_transport() -> Callable[..., MemoryTransport]:
    """Factory for in-memory transports; ``listing=True`` adds list_remote."""

    def _make(target: TargetConfig, listing: bool = False, **kwargs: Any) -> MemoryTransport:
        if listing:
            return ListingMemoryTransport(target, **kwargs)
        return MemoryTransport(target, **kwargs)

    return _make
