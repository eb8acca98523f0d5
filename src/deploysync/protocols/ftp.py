"""
FTP protocol implementation for deploysync.

One ftplib control connection per target. A control connection serves
one command at a time, so every session call holds the transport lock.
"""

import ftplib
import io
import logging
import posixpath
import threading
import time
from collections import deque
from typing import Callable, Deque, List, Optional, Set, Tuple

from deploysync.errors import (
    UploadAuthError,
    UploadConnectionError,
    UploadPermissionError,
    UploadTransferError,
)
from deploysync.models import ByteProgressCallback, TargetConfig, UploadFile
from deploysync.protocols.base import RemoteListingCapable, Transport
from deploysync.retry import with_retry

logger = logging.getLogger(__name__)

BLOCK_SIZE = 8192


class FtpTransport(Transport, RemoteListingCapable):
    """Transport backed by a plain ftplib session."""

    def __init__(
        self, target: TargetConfig, sleep: Callable[[float], None] = time.sleep
    ):
        super().__init__(target)
        self.ftp: Optional[ftplib.FTP] = None
        self._sleep = sleep
        self._lock = threading.RLock()
        self._created_dirs: Set[str] = set()

    def _open(self) -> None:
        ftp = ftplib.FTP()
        try:
            ftp.connect(self.target.host, self.target.resolved_port, timeout=self.target.timeout)
            ftp.login(self.target.user or "anonymous", self.target.password or "")
        except ftplib.error_perm as e:
            ftp.close()
            raise UploadAuthError(f"Authentication failed: {self.target.host}", e) from e
        except (ftplib.Error, OSError, EOFError) as e:
            ftp.close()
            raise UploadConnectionError(f"Connection failed: {e}", e) from e
        ftp.set_pasv(self.target.passive)
        self.ftp = ftp

    def connect(self) -> None:
        attempts = max(1, self.target.retry)
        try:
            with_retry(
                self._open,
                max_retries=attempts,
                should_retry=lambda e: not isinstance(e, UploadAuthError),
                sleep=self._sleep,
            )
        except UploadAuthError:
            raise
        except Exception as e:
            raise UploadConnectionError(
                f"Failed to connect to {self.target.host} after {attempts} attempts: {e}",
                e,
            ) from e
        self._created_dirs.clear()

    def disconnect(self) -> None:
        with self._lock:
            ftp, self.ftp = self.ftp, None
            if ftp is None:
                return
            try:
                ftp.quit()
            except (ftplib.Error, OSError, EOFError) as e:
                logger.debug("[%s] error while closing: %s", self.target.host, e)
                ftp.close()

    def _session(self) -> ftplib.FTP:
        if self.ftp is None:
            raise UploadConnectionError("Not connected")
        return self.ftp

    def _is_dir(self, ftp: ftplib.FTP, path: str) -> bool:
        current = ftp.pwd()
        try:
            ftp.cwd(path)
        except ftplib.error_perm:
            return False
        ftp.cwd(current)
        return True

    def mkdir(self, remote_path: str) -> None:
        with self._lock:
            ftp = self._session()
            full_path = self.remote_full_path(remote_path).rstrip("/")
            if full_path in self._created_dirs:
                return

            parts = [p for p in full_path.split("/") if p]
            for i in range(len(parts)):
                current = "/".join(parts[: i + 1])
                if full_path.startswith("/"):
                    current = "/" + current
                if current in self._created_dirs:
                    continue
                if not self._is_dir(ftp, current):
                    try:
                        ftp.mkd(current)
                    except ftplib.error_perm as e:
                        raise UploadPermissionError(
                            f"Failed to create directory: {current}", e
                        ) from e
                self._created_dirs.add(current)

    def transfer(
        self,
        file: UploadFile,
        remote_path: str,
        on_progress: Optional[ByteProgressCallback] = None,
    ) -> None:
        if file.is_directory:
            self.mkdir(remote_path)
            if on_progress:
                on_progress(0, 0)
            return

        parent = posixpath.dirname(remote_path.strip("/"))
        if parent:
            self.mkdir(parent)

        dest_path = self.remote_full_path(remote_path)
        transferred = 0

        def callback(block: bytes) -> None:
            nonlocal transferred
            transferred += len(block)
            if on_progress:
                on_progress(transferred, file.size)

        with self._lock:
            ftp = self._session()
            try:
                if file.content is not None:
                    ftp.storbinary(
                        f"STOR {dest_path}", io.BytesIO(file.content), BLOCK_SIZE, callback
                    )
                elif file.source_path is not None:
                    with open(file.source_path, "rb") as f:
                        ftp.storbinary(f"STOR {dest_path}", f, BLOCK_SIZE, callback)
                else:
                    raise UploadTransferError(
                        f"No source for file upload: {file.relative_path}"
                    )
            except ftplib.error_perm as e:
                raise UploadPermissionError(f"Permission denied: {dest_path}", e) from e
            except (ftplib.Error, OSError, EOFError) as e:
                raise UploadTransferError(
                    f"Failed to upload file: {file.relative_path}: {e}", e
                ) from e

    def delete(self, remote_path: str) -> None:
        with self._lock:
            ftp = self._session()
            full_path = self.remote_full_path(remote_path)
            try:
                if self._is_dir(ftp, full_path):
                    self._remove_tree(ftp, full_path)
                else:
                    ftp.delete(full_path)
            except ftplib.error_perm as e:
                # 550 covers "no such file"
                if str(e).startswith("550"):
                    return
                raise UploadPermissionError(f"Failed to delete: {full_path}", e) from e

    def _remove_tree(self, ftp: ftplib.FTP, path: str) -> None:
        for name, is_dir in self._list_dir(ftp, path):
            child = f"{path}/{name}"
            if is_dir:
                self._remove_tree(ftp, child)
            else:
                ftp.delete(child)
        ftp.rmd(path)
        self._created_dirs.discard(path)

    def read_file(self, remote_path: str) -> Optional[bytes]:
        with self._lock:
            ftp = self._session()
            full_path = self.remote_full_path(remote_path)
            if self._is_dir(ftp, full_path):
                return None
            buffer = io.BytesIO()
            try:
                ftp.retrbinary(f"RETR {full_path}", buffer.write)
            except ftplib.error_perm as e:
                if str(e).startswith("550"):
                    return None
                raise UploadTransferError(f"Failed to read file: {full_path}", e) from e
            except (ftplib.Error, OSError, EOFError) as e:
                raise UploadTransferError(f"Failed to read file: {full_path}", e) from e
            return buffer.getvalue()

    def _list_dir(self, ftp: ftplib.FTP, path: str) -> List[Tuple[str, bool]]:
        """Return (name, is_dir) pairs, preferring MLSD over NLST."""
        entries: List[Tuple[str, bool]] = []
        try:
            for name, facts in ftp.mlsd(path):
                if name in (".", ".."):
                    continue
                entries.append((name, facts.get("type") == "dir"))
            return entries
        except ftplib.error_perm:
            # MLSD not supported, fall back to NLST + probing each entry
            pass

        for full_path in ftp.nlst(path):
            name = posixpath.basename(full_path)
            if name in (".", ".."):
                continue
            entries.append((name, self._is_dir(ftp, f"{path}/{name}")))
        return entries

    def list_remote(self) -> List[str]:
        with self._lock:
            ftp = self._session()
            remote_base = self.target.dest.rstrip("/") or "/"
            files: List[str] = []
            dirs_queue: Deque[str] = deque([remote_base])

            while dirs_queue:
                path = dirs_queue.popleft()
                try:
                    entries = self._list_dir(ftp, path)
                except ftplib.error_perm as e:
                    if path == remote_base:
                        return []
                    logger.debug("Skipping unreadable directory %s: %s", path, e)
                    continue

                for name, is_dir in entries:
                    full_path = f"{path}/{name}".replace("//", "/")
                    if is_dir:
                        dirs_queue.append(full_path)
                    elif full_path.startswith(remote_base.rstrip("/") + "/"):
                        files.append(full_path[len(remote_base.rstrip("/")) + 1 :])

            files.sort()
            return files
