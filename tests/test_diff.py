"""
Tests for deploysync.diff module.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from deploysync.diff import _classify, apply_diff, compute_diff, compute_manual_diff
from deploysync.errors import UploadTransferError
from deploysync.models import (
    ChangeKind,
    DiffEntry,
    DiffKind,
    DiffResult,
    UploadFile,
)
from deploysync.protocols.base import NativeDiffCapable

from conftest import MemoryTransport, upload_file


class NativeDiffTransport(MemoryTransport, NativeDiffCapable):
    """MemoryTransport whose tool reports a fixed diff."""

    def __init__(self, *args: Any, diff: Optional[DiffResult] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.diff = diff or DiffResult()
        self.get_diff_calls: List[Dict[str, Any]] = []

    def get_diff(self, local_dir, files=None, checksum=False, remote_dir=None, ignore_patterns=None):
        self.get_diff_calls.append(
            {
                "local_dir": local_dir,
                "files": files,
                "checksum": checksum,
                "remote_dir": remote_dir,
                "ignore_patterns": ignore_patterns,
            }
        )
        return self.diff


class TestClassify:
    """Tests for per-file classification."""

    def test_missing_remote_is_added(self, make_target) -> None:
        transport = MemoryTransport(make_target())
        entry = _classify(transport, upload_file("a.txt", "hello"))
        assert entry == DiffEntry("a.txt", DiffKind.ADDED)

    def test_different_bytes_is_modified(self, make_target) -> None:
        transport = MemoryTransport(make_target(), remote={"a.txt": b"old"})
        entry = _classify(transport, upload_file("a.txt", "new"))
        assert entry == DiffEntry("a.txt", DiffKind.MODIFIED)

    def test_equal_bytes_is_unchanged(self, make_target) -> None:
        transport = MemoryTransport(make_target(), remote={"a.txt": b"same"})
        assert _classify(transport, upload_file("a.txt", "same")) is None

    def test_unreadable_local_is_modified(self, make_target, temp_dir: Path) -> None:
        """Test a local file that cannot be read is uploaded anyway."""
        transport = MemoryTransport(make_target(), remote={"gone.txt": b"x"})
        file = UploadFile("gone.txt", source_path=temp_dir / "missing.txt")
        assert _classify(transport, file) == DiffEntry("gone.txt", DiffKind.MODIFIED)

    def test_remote_error_is_modified(self, make_target) -> None:
        """Test a failing remote read errs on the side of uploading."""
        transport = MemoryTransport(make_target())

        def broken(path: str) -> bytes:
            raise UploadTransferError("read failed")

        transport.read_file = broken  # type: ignore[method-assign]
        assert _classify(transport, upload_file("a.txt", "x")) == DiffEntry(
            "a.txt", DiffKind.MODIFIED
        )

    def test_remote_not_found_exception_is_added(self, make_target) -> None:
        transport = MemoryTransport(make_target())

        def missing(path: str) -> bytes:
            raise FileNotFoundError(path)

        transport.read_file = missing  # type: ignore[method-assign]
        assert _classify(transport, upload_file("a.txt", "x")) == DiffEntry(
            "a.txt", DiffKind.ADDED
        )

    def test_delete_of_existing_remote(self, make_target) -> None:
        transport = MemoryTransport(make_target(), remote={"old.txt": b"x"})
        file = UploadFile("old.txt", change_kind=ChangeKind.DELETE)
        assert _classify(transport, file) == DiffEntry("old.txt", DiffKind.DELETED)

    def test_delete_of_absent_remote_is_noop(self, make_target) -> None:
        transport = MemoryTransport(make_target())
        file = UploadFile("old.txt", change_kind=ChangeKind.DELETE)
        assert _classify(transport, file) is None


class TestComputeManualDiff:
    """Tests for compute_manual_diff function."""

    def test_classifies_batch(self, make_target) -> None:
        transport = MemoryTransport(
            make_target(),
            remote={"same.txt": b"same", "changed.txt": b"v1", "stale.txt": b"x"},
        )
        files = [
            upload_file("same.txt", "same"),
            upload_file("changed.txt", "v2"),
            upload_file("new.txt", "fresh"),
            UploadFile("stale.txt", change_kind=ChangeKind.DELETE),
            UploadFile("assets", is_directory=True),
        ]

        diff = compute_manual_diff(transport, files, concurrency=4)

        assert diff.paths == {
            "changed.txt": DiffKind.MODIFIED,
            "new.txt": DiffKind.ADDED,
            "stale.txt": DiffKind.DELETED,
        }

    def test_empty_batch(self, make_target) -> None:
        transport = MemoryTransport(make_target())
        assert compute_manual_diff(transport, []).total == 0

    @pytest.mark.parametrize("concurrency", [1, 3])
    def test_concurrency_is_bounded(self, make_target, concurrency: int) -> None:
        """Test no more than ``concurrency`` remote reads are ever in flight."""
        transport = MemoryTransport(make_target(), read_delay=0.01)
        files = [upload_file(f"f{i}.txt", str(i)) for i in range(20)]

        diff = compute_manual_diff(transport, files, concurrency=concurrency)

        assert diff.added == 20
        assert 1 <= transport.peak_in_flight <= concurrency


class TestComputeDiff:
    """Tests for compute_diff function."""

    def test_native_diff_passes_deletes_through(self, make_target, temp_dir: Path) -> None:
        """Test that the native path diffs only non-delete files and appends deletes."""
        transport = NativeDiffTransport(
            make_target(),
            diff=DiffResult([DiffEntry("a.txt", DiffKind.MODIFIED)]),
        )
        files = [
            upload_file("a.txt", "x"),
            upload_file("b.txt", "y"),
            UploadFile("docs", is_directory=True),
            UploadFile("gone.txt", change_kind=ChangeKind.DELETE),
        ]

        diff = compute_diff(transport, files, local_dir=temp_dir, checksum=True)

        assert diff.paths == {"a.txt": DiffKind.MODIFIED, "gone.txt": DiffKind.DELETED}
        call = transport.get_diff_calls[0]
        assert call["files"] == ["a.txt", "b.txt"]
        assert call["checksum"] is True
        assert call["local_dir"] == temp_dir

    def test_native_without_local_dir_falls_back_to_manual(self, make_target) -> None:
        transport = NativeDiffTransport(make_target())
        diff = compute_diff(transport, [upload_file("a.txt", "x")])

        assert transport.get_diff_calls == []
        assert diff.paths == {"a.txt": DiffKind.ADDED}

    def test_native_with_only_deletes_skips_tool(self, make_target, temp_dir: Path) -> None:
        transport = NativeDiffTransport(make_target())
        files = [UploadFile("gone.txt", change_kind=ChangeKind.DELETE)]

        diff = compute_diff(transport, files, local_dir=temp_dir)

        assert transport.get_diff_calls == []
        assert diff.paths == {"gone.txt": DiffKind.DELETED}

    def test_manual_and_native_agree(self, make_target, temp_dir: Path) -> None:
        """Test both strategies report the same changes for the same state."""
        remote = {"same.txt": b"same", "changed.txt": b"v1"}
        files = [
            upload_file("same.txt", "same"),
            upload_file("changed.txt", "v2"),
            upload_file("new.txt", "fresh"),
        ]
        expected = DiffResult(
            [
                DiffEntry("changed.txt", DiffKind.MODIFIED),
                DiffEntry("new.txt", DiffKind.ADDED),
            ]
        )
        native = NativeDiffTransport(make_target(), remote=dict(remote), diff=expected)
        manual = MemoryTransport(make_target(), remote=dict(remote))

        native_diff = compute_diff(native, files, local_dir=temp_dir)
        manual_diff = compute_diff(manual, files, local_dir=temp_dir)

        assert native_diff.paths == manual_diff.paths


class TestApplyDiff:
    """Tests for apply_diff function."""

    def test_narrows_and_sets_change_kind(self) -> None:
        files = [
            upload_file("a.txt", "1"),
            upload_file("b.txt", "2"),
            upload_file("c.txt", "3"),
            UploadFile("dir", is_directory=True),
        ]
        diff = DiffResult(
            [DiffEntry("a.txt", DiffKind.ADDED), DiffEntry("b.txt", DiffKind.MODIFIED)]
        )

        changed = apply_diff(files, diff)

        assert [(f.relative_path, f.change_kind) for f in changed] == [
            ("a.txt", ChangeKind.ADD),
            ("b.txt", ChangeKind.MODIFY),
        ]

    def test_does_not_mutate_input(self) -> None:
        """Test the shared batch keeps its original change kinds."""
        original = upload_file("a.txt", "1", change_kind=ChangeKind.ADD)
        diff = DiffResult([DiffEntry("a.txt", DiffKind.MODIFIED)])

        changed = apply_diff([original], diff)

        assert changed[0].change_kind == ChangeKind.MODIFY
        assert original.change_kind == ChangeKind.ADD

    def test_delete_kept_only_for_deleted_entry(self) -> None:
        delete = UploadFile("old.txt", change_kind=ChangeKind.DELETE)
        assert apply_diff([delete], DiffResult([DiffEntry("old.txt", DiffKind.DELETED)])) == [
            delete
        ]
        assert apply_diff([delete], DiffResult()) == []

    def test_upload_with_deleted_entry_is_skipped(self) -> None:
        file = upload_file("a.txt", "1")
        assert apply_diff([file], DiffResult([DiffEntry("a.txt", DiffKind.DELETED)])) == []
