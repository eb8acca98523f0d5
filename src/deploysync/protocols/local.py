"""
Local filesystem protocol implementation for deploysync.

Copies files into a destination directory on this machine. Useful for
staging directories, mounted shares and tests.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional

from deploysync.errors import (
    UploadConnectionError,
    UploadPermissionError,
    UploadTransferError,
)
from deploysync.models import ByteProgressCallback, TargetConfig, UploadFile
from deploysync.protocols.base import RemoteListingCapable, Transport

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class LocalTransport(Transport, RemoteListingCapable):
    """Transport whose remote side is a local directory."""

    def __init__(self, target: TargetConfig):
        super().__init__(target)
        self.connected = False

    @property
    def dest(self) -> Path:
        return Path(self.target.dest)

    def connect(self) -> None:
        if self.dest.exists() and not self.dest.is_dir():
            raise UploadPermissionError(
                f"Destination is not a directory: {self.target.dest}"
            )
        try:
            self.dest.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise UploadConnectionError(
                f"Failed to access destination: {self.target.dest}", e
            ) from e
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def _ensure_connected(self) -> None:
        if not self.connected:
            raise UploadConnectionError("Not connected")

    def _full_path(self, remote_path: str) -> Path:
        return self.dest / remote_path.strip("/")

    def mkdir(self, remote_path: str) -> None:
        self._ensure_connected()
        full_path = self._full_path(remote_path)
        try:
            full_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise UploadPermissionError(
                f"Failed to create directory: {full_path}", e
            ) from e

    def transfer(
        self,
        file: UploadFile,
        remote_path: str,
        on_progress: Optional[ByteProgressCallback] = None,
    ) -> None:
        self._ensure_connected()

        if file.is_directory:
            self.mkdir(remote_path)
            if on_progress:
                on_progress(0, 0)
            return

        dest_path = self._full_path(remote_path)
        if dest_path.parent != self.dest:
            self.mkdir(str(dest_path.parent.relative_to(self.dest)))

        try:
            if file.content is not None:
                dest_path.write_bytes(file.content)
                if on_progress:
                    on_progress(file.size, file.size)
            elif file.source_path is not None:
                self._copy_file(Path(file.source_path), dest_path, file.size, on_progress)
                if self.target.preserve_timestamps:
                    shutil.copystat(file.source_path, dest_path)
                elif self.target.preserve_permissions:
                    shutil.copymode(file.source_path, dest_path)
            else:
                raise UploadTransferError(
                    f"No source for file upload: {file.relative_path}"
                )
        except OSError as e:
            raise UploadTransferError(
                f"Failed to copy file: {file.relative_path}", e
            ) from e

    def _copy_file(
        self,
        src: Path,
        dest: Path,
        size: int,
        on_progress: Optional[ByteProgressCallback],
    ) -> None:
        transferred = 0
        with open(src, "rb") as fin, open(dest, "wb") as fout:
            while True:
                chunk = fin.read(CHUNK_SIZE)
                if not chunk:
                    break
                fout.write(chunk)
                transferred += len(chunk)
                if on_progress:
                    on_progress(transferred, size)

    def delete(self, remote_path: str) -> None:
        self._ensure_connected()
        full_path = self._full_path(remote_path)
        try:
            if full_path.is_dir() and not full_path.is_symlink():
                shutil.rmtree(full_path)
            else:
                full_path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise UploadPermissionError(f"Failed to delete: {full_path}", e) from e

    def read_file(self, remote_path: str) -> Optional[bytes]:
        self._ensure_connected()
        full_path = self._full_path(remote_path)
        try:
            if full_path.is_dir():
                return None
            return full_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise UploadTransferError(f"Failed to read file: {full_path}", e) from e

    def list_remote(self) -> List[str]:
        self._ensure_connected()
        if not self.dest.is_dir():
            return []

        files: List[str] = []
        for root, _dirs, names in os.walk(self.dest):
            for name in names:
                rel = os.path.relpath(os.path.join(root, name), self.dest)
                files.append(rel.replace(os.sep, "/"))
        files.sort()
        return files
