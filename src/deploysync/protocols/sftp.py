"""
SFTP protocol implementation for deploysync.

Uses a single paramiko SSH connection with one SFTP session per target.
"""

import io
import logging
import os
import posixpath
import stat
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set

import paramiko

from deploysync.errors import (
    UploadAuthError,
    UploadConnectionError,
    UploadPermissionError,
    UploadTransferError,
)
from deploysync.models import ByteProgressCallback, TargetConfig, UploadFile
from deploysync.protocols.base import RemoteListingCapable
from deploysync.protocols.ssh_base import SshTransportBase

logger = logging.getLogger(__name__)

# Disabled unless the target opts into legacy_mode.
LEGACY_DISABLED_ALGORITHMS = {
    "kex": [
        "diffie-hellman-group-exchange-sha1",
        "diffie-hellman-group14-sha1",
        "diffie-hellman-group1-sha1",
    ],
    "keys": ["ssh-dss"],
    "pubkeys": ["ssh-dss"],
}


class SftpTransport(SshTransportBase, RemoteListingCapable):
    """Transport backed by a paramiko SFTP session."""

    def __init__(
        self, target: TargetConfig, sleep: Callable[[float], None] = time.sleep
    ):
        super().__init__(target, sleep=sleep)
        self.client: Optional[paramiko.SSHClient] = None
        self.sftp: Optional[paramiko.SFTPClient] = None
        self._created_dirs: Set[str] = set()
        self._dirs_lock = threading.Lock()

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``paramiko.SSHClient.connect``."""
        kwargs: Dict[str, Any] = {
            "hostname": self.target.host,
            "port": self.target.resolved_port,
            "username": self.target.user or None,
            "timeout": self.target.timeout,
            "banner_timeout": self.target.timeout,
            "auth_timeout": self.target.timeout,
            "compress": True,
        }
        if self.target.key_file:
            kwargs["key_filename"] = self.target.key_file
            if self.target.password:
                # passphrase for encrypted keys
                kwargs["password"] = self.target.password
        elif self.target.password:
            kwargs["password"] = self.target.password
            kwargs["look_for_keys"] = False
            kwargs["allow_agent"] = False
        if not self.target.legacy_mode:
            kwargs["disabled_algorithms"] = LEGACY_DISABLED_ALGORITHMS
        return kwargs

    def _open(self) -> None:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(**self.connect_kwargs())
            sftp = client.open_sftp()
        except paramiko.AuthenticationException as e:
            client.close()
            raise UploadAuthError(f"Authentication failed: {self.target.host}", e) from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise UploadConnectionError(f"Connection failed: {e}", e) from e

        self.client = client
        self.sftp = sftp
        with self._dirs_lock:
            self._created_dirs.clear()

    def _close(self) -> None:
        sftp, self.sftp = self.sftp, None
        client, self.client = self.client, None
        try:
            if sftp is not None:
                sftp.close()
        finally:
            if client is not None:
                client.close()

    def _session(self) -> paramiko.SFTPClient:
        self._ensure_connected()
        if self.sftp is None:
            raise UploadConnectionError("Not connected")
        return self.sftp

    def mkdir(self, remote_path: str) -> None:
        sftp = self._session()
        full_path = self.remote_full_path(remote_path).rstrip("/")

        with self._dirs_lock:
            if full_path in self._created_dirs:
                return

            parts = [p for p in full_path.split("/") if p]
            for i in range(len(parts)):
                current = "/".join(parts[: i + 1])
                if full_path.startswith("/"):
                    current = "/" + current
                if current in self._created_dirs:
                    continue
                try:
                    sftp.stat(current)
                except FileNotFoundError:
                    try:
                        sftp.mkdir(current)
                    except OSError as e:
                        raise UploadPermissionError(
                            f"Failed to create directory: {current}", e
                        ) from e
                except OSError as e:
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
        sftp = self._session()

        if file.is_directory:
            self.mkdir(remote_path)
            if on_progress:
                on_progress(0, 0)
            return

        parent = posixpath.dirname(remote_path.strip("/"))
        if parent:
            self.mkdir(parent)

        dest_path = self.remote_full_path(remote_path)
        try:
            if file.content is not None:
                sftp.putfo(
                    io.BytesIO(file.content),
                    dest_path,
                    file_size=file.size,
                    callback=on_progress,
                )
            elif file.source_path is not None:
                sftp.put(str(file.source_path), dest_path, callback=on_progress)
                self._copy_attributes(sftp, str(file.source_path), dest_path)
            else:
                raise UploadTransferError(
                    f"No source for file upload: {file.relative_path}"
                )
        except PermissionError as e:
            raise UploadPermissionError(f"Permission denied: {dest_path}", e) from e
        except (paramiko.SSHException, OSError) as e:
            raise UploadTransferError(
                f"Failed to upload file: {file.relative_path}: {e}", e
            ) from e

    def _copy_attributes(
        self, sftp: paramiko.SFTPClient, src: str, dest_path: str
    ) -> None:
        if not (self.target.preserve_timestamps or self.target.preserve_permissions):
            return
        st = os.stat(src)
        if self.target.preserve_permissions:
            sftp.chmod(dest_path, stat.S_IMODE(st.st_mode))
        if self.target.preserve_timestamps:
            sftp.utime(dest_path, (st.st_atime, st.st_mtime))

    def delete(self, remote_path: str) -> None:
        sftp = self._session()
        full_path = self.remote_full_path(remote_path)
        try:
            self._remove(sftp, full_path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise UploadPermissionError(f"Failed to delete: {full_path}", e) from e

    def _remove(self, sftp: paramiko.SFTPClient, path: str) -> None:
        attrs = sftp.lstat(path)
        if attrs.st_mode is not None and stat.S_ISDIR(attrs.st_mode):
            for entry in sftp.listdir_attr(path):
                self._remove(sftp, f"{path}/{entry.filename}")
            sftp.rmdir(path)
            with self._dirs_lock:
                self._created_dirs.discard(path)
        else:
            sftp.remove(path)

    def read_file(self, remote_path: str) -> Optional[bytes]:
        sftp = self._session()
        full_path = self.remote_full_path(remote_path)
        try:
            attrs = sftp.stat(full_path)
            if attrs.st_mode is not None and stat.S_ISDIR(attrs.st_mode):
                return None
            with sftp.open(full_path, "rb") as fh:
                return fh.read()
        except FileNotFoundError:
            return None
        except (paramiko.SSHException, OSError) as e:
            raise UploadTransferError(f"Failed to read file: {full_path}", e) from e

    def list_remote(self) -> List[str]:
        """
        List every file under dest, breadth first.

        Unreadable subdirectories are skipped. A missing dest yields an
        empty list.
        """
        sftp = self._session()
        remote_base = self.target.dest.rstrip("/") or "/"
        files: List[str] = []
        dirs_queue: Deque[str] = deque([remote_base])

        while dirs_queue:
            path = dirs_queue.popleft()
            try:
                entries = sftp.listdir_attr(path)
            except FileNotFoundError:
                if path == remote_base:
                    return []
                continue
            except OSError as e:
                if path == remote_base:
                    raise UploadTransferError(
                        f"Failed to list remote files: {path}", e
                    ) from e
                logger.debug("Skipping unreadable directory %s: %s", path, e)
                continue

            for entry in entries:
                if entry.filename in (".", ".."):
                    continue
                full_path = f"{path}/{entry.filename}".replace("//", "/")
                if entry.st_mode is not None and stat.S_ISDIR(entry.st_mode):
                    dirs_queue.append(full_path)
                    continue
                if full_path.startswith(remote_base.rstrip("/") + "/"):
                    files.append(full_path[len(remote_base.rstrip("/")) + 1 :])

        files.sort()
        return files
