"""
Tests for deploysync.protocols.local module.
"""

import os
from pathlib import Path

import pytest

from deploysync.errors import UploadConnectionError, UploadPermissionError
from deploysync.models import Protocol, TargetConfig, UploadFile
from deploysync.protocols import create_transport, has_bulk_transfer, has_native_diff, has_remote_listing
from deploysync.protocols.local import LocalTransport

from conftest import upload_file


@pytest.fixture
def local(temp_dir: Path):
    target = TargetConfig(
        host="localhost",
        protocol=Protocol.LOCAL,
        dest=str(temp_dir / "dest"),
        preserve_timestamps=True,
    )
    transport = LocalTransport(target)
    transport.connect()
    yield transport
    transport.disconnect()


class TestLocalTransport:
    """Tests for LocalTransport."""

    def test_capabilities(self, local: LocalTransport) -> None:
        assert has_remote_listing(local)
        assert not has_bulk_transfer(local)
        assert not has_native_diff(local)

    def test_factory_builds_local(self, temp_dir: Path) -> None:
        target = TargetConfig(host="localhost", protocol=Protocol.LOCAL, dest=str(temp_dir))
        assert isinstance(create_transport(target), LocalTransport)

    def test_connect_creates_dest(self, local: LocalTransport) -> None:
        assert local.dest.is_dir()

    def test_connect_rejects_file_dest(self, temp_dir: Path) -> None:
        blocker = temp_dir / "blocker"
        blocker.write_text("x")
        transport = LocalTransport(
            TargetConfig(host="localhost", protocol=Protocol.LOCAL, dest=str(blocker))
        )
        with pytest.raises(UploadPermissionError):
            transport.connect()

    def test_requires_connection(self, temp_dir: Path) -> None:
        transport = LocalTransport(
            TargetConfig(host="localhost", protocol=Protocol.LOCAL, dest=str(temp_dir))
        )
        with pytest.raises(UploadConnectionError):
            transport.read_file("a.txt")

    def test_transfer_content_creates_parents(self, local: LocalTransport) -> None:
        local.transfer(upload_file("a/b/c.txt", "hello"), "a/b/c.txt")
        assert (local.dest / "a" / "b" / "c.txt").read_bytes() == b"hello"

    def test_transfer_source_preserves_mtime(self, local: LocalTransport, temp_dir: Path) -> None:
        source = temp_dir / "src.txt"
        source.write_text("payload")
        os.utime(source, (1_000_000_000, 1_000_000_000))
        progress = []

        local.transfer(
            UploadFile("src.txt", source_path=source, size=7),
            "src.txt",
            lambda done, total: progress.append((done, total)),
        )

        copied = local.dest / "src.txt"
        assert copied.read_text() == "payload"
        assert int(copied.stat().st_mtime) == 1_000_000_000
        assert progress == [(7, 7)]

    def test_read_file(self, local: LocalTransport) -> None:
        (local.dest / "x.txt").write_bytes(b"data")
        (local.dest / "sub").mkdir()

        assert local.read_file("x.txt") == b"data"
        assert local.read_file("missing.txt") is None
        assert local.read_file("sub") is None

    def test_delete(self, local: LocalTransport) -> None:
        (local.dest / "d").mkdir()
        (local.dest / "d" / "f.txt").write_text("x")
        (local.dest / "g.txt").write_text("y")

        local.delete("d")
        local.delete("g.txt")
        local.delete("never-existed.txt")

        assert list(local.dest.iterdir()) == []

    def test_list_remote(self, local: LocalTransport) -> None:
        (local.dest / "css").mkdir()
        (local.dest / "css" / "site.css").write_text("x")
        (local.dest / "index.html").write_text("y")
        (local.dest / "empty").mkdir()

        assert local.list_remote() == ["css/site.css", "index.html"]
