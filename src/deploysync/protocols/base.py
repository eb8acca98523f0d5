"""
Transport capability contract.

Every transport implements ``Transport``. Optional capabilities are
separate mixins; callers detect them at runtime with the ``has_*``
predicates and fall back when they are absent.
"""

import abc
import posixpath
from pathlib import Path
from typing import Iterable, List, Optional

from deploysync.models import (
    BulkProgressCallback,
    BulkTransferResult,
    ByteProgressCallback,
    DiffResult,
    TargetConfig,
    UploadFile,
)


class Transport(abc.ABC):
    """Operations every transport supports."""

    def __init__(self, target: TargetConfig):
        self.target = target

    @property
    def name(self) -> str:
        return self.target.protocol.value

    @abc.abstractmethod
    def connect(self) -> None:
        """Open the connection, retrying as configured."""

    @abc.abstractmethod
    def disconnect(self) -> None:
        """Release the connection and temporary storage. Idempotent, never raises."""

    @abc.abstractmethod
    def mkdir(self, remote_path: str) -> None:
        """Create ``remote_path`` (relative to dest) and its parents."""

    @abc.abstractmethod
    def transfer(
        self,
        file: UploadFile,
        remote_path: str,
        on_progress: Optional[ByteProgressCallback] = None,
    ) -> None:
        """Create or overwrite ``remote_path`` with the file's bytes."""

    @abc.abstractmethod
    def delete(self, remote_path: str) -> None:
        """Remove ``remote_path``. A missing path is not an error."""

    @abc.abstractmethod
    def read_file(self, remote_path: str) -> Optional[bytes]:
        """Return the remote bytes, or None if absent or a directory."""

    def remote_full_path(self, remote_path: str) -> str:
        """Join a dest-relative path onto the target's dest."""
        return posixpath.join(self.target.dest, remote_path)

    def __enter__(self) -> "Transport":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()


class BulkTransferCapable(abc.ABC):
    """Transfers many files with a single command."""

    @abc.abstractmethod
    def bulk_transfer(
        self,
        files: List[UploadFile],
        on_progress: Optional[BulkProgressCallback] = None,
    ) -> BulkTransferResult:
        """Transfer all non-delete files in one operation."""


class NativeDiffCapable(abc.ABC):
    """The underlying tool can report changes itself."""

    @abc.abstractmethod
    def get_diff(
        self,
        local_dir: Path,
        files: Optional[List[str]] = None,
        checksum: bool = False,
        remote_dir: Optional[str] = None,
        ignore_patterns: Optional[Iterable[str]] = None,
    ) -> DiffResult:
        """
        Compare ``local_dir`` with the remote side.

        With ``files`` only those paths are compared and deletions are not
        reported; without, the whole directory is compared including
        deletions. ``remote_dir`` overrides the target dest as the
        comparison root.
        """


class RemoteListingCapable(abc.ABC):
    """Can enumerate files under the target dest."""

    @abc.abstractmethod
    def list_remote(self) -> List[str]:
        """Return every regular file under dest as a relative path."""


def has_bulk_transfer(transport: Transport) -> bool:
    return isinstance(transport, BulkTransferCapable)


def has_native_diff(transport: Transport) -> bool:
    return isinstance(transport, NativeDiffCapable)


def has_remote_listing(transport: Transport) -> bool:
    return isinstance(transport, RemoteListingCapable)


def parent_dirs(remote_path: str) -> List[str]:
    """
    Return every ancestor directory of a relative path, shallowest first.

    >>> parent_dirs("a/b/c.txt")
    ['a', 'a/b']
    """
    parts = remote_path.strip("/").split("/")[:-1]
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]
