"""
Shared lifecycle for secure-shell transports.

SshTransportBase owns the connect/retry/disconnect state machine and the
per-connection temporary directory. SshCommandTransport adds the
subprocess plumbing (ssh, sshpass) used by the scp and rsync transports,
which only implement the data-transfer primitive.
"""

import abc
import logging
import posixpath
import shlex
import shutil
import tempfile
import threading
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Set

from deploysync.errors import (
    UploadAuthError,
    UploadConnectionError,
    UploadPermissionError,
    UploadTransferError,
    is_ssh_auth_error,
)
from deploysync.executor import CommandResult, CommandRunner, build_ssh_args
from deploysync.models import ByteProgressCallback, TargetConfig, UploadFile
from deploysync.protocols.base import Transport, parent_dirs
from deploysync.retry import with_retry

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SshTransportBase(Transport):
    """Connection state machine shared by every secure-shell transport."""

    retry_initial_delay = 1.0
    retry_backoff_factor = 2.0
    temp_prefix = "deploysync_"

    def __init__(
        self, target: TargetConfig, sleep: Callable[[float], None] = time.sleep
    ):
        super().__init__(target)
        self.state = TransportState.DISCONNECTED
        self._sleep = sleep
        self._temp_dir: Optional[Path] = None
        self._temp_lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self.state == TransportState.CONNECTED

    def _preflight(self) -> None:
        """Checks that must pass before any network attempt."""

    @abc.abstractmethod
    def _open(self) -> None:
        """Make one connection attempt. Raise UploadAuthError to stop retrying."""

    def _close(self) -> None:
        """Release the underlying connection."""

    def connect(self) -> None:
        self.state = TransportState.CONNECTING
        attempts = max(1, self.target.retry)
        try:
            self._preflight()
            with_retry(
                self._open,
                max_retries=attempts,
                initial_delay=self.retry_initial_delay,
                backoff_factor=self.retry_backoff_factor,
                should_retry=lambda e: not isinstance(e, UploadAuthError),
                sleep=self._sleep,
            )
        except UploadAuthError:
            self.state = TransportState.DISCONNECTED
            raise
        except Exception as e:
            self.state = TransportState.DISCONNECTED
            raise UploadConnectionError(
                f"Failed to connect to {self.target.host} after {attempts} attempts: {e}",
                e,
            ) from e
        self.state = TransportState.CONNECTED
        logger.debug("[%s] connected via %s", self.target.host, self.name)

    def disconnect(self) -> None:
        try:
            self._close()
        except Exception as e:
            logger.debug("[%s] error while closing: %s", self.target.host, e)
        self.state = TransportState.DISCONNECTED

        with self._temp_lock:
            temp_dir, self._temp_dir = self._temp_dir, None
        if temp_dir is not None:
            try:
                shutil.rmtree(temp_dir)
            except OSError as e:
                logger.warning("Failed to remove temp directory %s: %s", temp_dir, e)

    def _ensure_connected(self) -> None:
        if not self.is_connected:
            raise UploadConnectionError("Not connected")

    def get_temp_dir(self) -> Path:
        """Return this connection's private temp directory, creating it lazily."""
        with self._temp_lock:
            if self._temp_dir is None:
                self._temp_dir = Path(tempfile.mkdtemp(prefix=self.temp_prefix))
            return self._temp_dir


class SshCommandTransport(SshTransportBase):
    """
    Secure-shell transport driven through external commands.

    Remote mkdir, delete and read run as shell commands over ssh.
    Subclasses implement ``_upload_from_path`` with their own tool.
    """

    def __init__(
        self,
        target: TargetConfig,
        runner: Optional[CommandRunner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(target, sleep=sleep)
        self.runner = runner or CommandRunner()
        self._sshpass_available: Optional[bool] = None
        self._created_dirs: Set[str] = set()
        self._dirs_lock = threading.Lock()

    # -- command plumbing -------------------------------------------------

    def sshpass_available(self) -> bool:
        if self._sshpass_available is None:
            self._sshpass_available = self.runner.which("sshpass")
        return self._sshpass_available

    def _uses_sshpass(self) -> bool:
        return bool(self.target.password) and self.sshpass_available()

    def _run(
        self, program: str, args: List[str], timeout: Optional[float] = None
    ) -> CommandResult:
        """Run ``program``, wrapped in sshpass when password auth is in use."""
        if self._uses_sshpass():
            return self.runner.run(
                ["sshpass", "-e", program] + args,
                env={"SSHPASS": self.target.password or ""},
                timeout=timeout,
            )
        return self.runner.run([program] + args, timeout=timeout)

    def ssh_args(self, port_flag: str = "-p", key_file_first: bool = False) -> List[str]:
        return build_ssh_args(
            port=self.target.resolved_port,
            key_file=self.target.key_file,
            password=self.target.password,
            timeout=self.target.timeout,
            legacy_mode=self.target.legacy_mode,
            port_flag=port_flag,
            key_file_first=key_file_first,
        )

    @property
    def login(self) -> str:
        if self.target.user:
            return f"{self.target.user}@{self.target.host}"
        return self.target.host

    def remote_spec(self, full_path: str) -> str:
        """Compose ``user@host:path``."""
        return f"{self.login}:{full_path}"

    def _use_sudo(self) -> bool:
        return False

    def _run_remote(self, command: str) -> CommandResult:
        if self._use_sudo():
            command = f"sudo {command}"
        return self._run("ssh", self.ssh_args() + [self.login, command])

    # -- lifecycle --------------------------------------------------------

    def _preflight(self) -> None:
        if self.target.password and not self.target.key_file:
            if not self.sshpass_available():
                raise UploadAuthError(
                    "sshpass is required for password authentication. "
                    "Install it with: apt install sshpass"
                )

    def _open(self) -> None:
        result = self._run(
            "ssh",
            self.ssh_args() + [self.login, "echo", "ok"],
            timeout=self.target.timeout + 10,
        )
        if result.ok:
            return
        message = result.stderr_text
        if is_ssh_auth_error(message):
            raise UploadAuthError(f"Authentication failed: {self.target.host}")
        raise UploadConnectionError(f"Connection test failed: {message.strip()}")

    def disconnect(self) -> None:
        with self._dirs_lock:
            self._created_dirs.clear()
        super().disconnect()

    # -- contract ---------------------------------------------------------

    def mkdir(self, remote_path: str) -> None:
        self._ensure_connected()
        full_path = self.remote_full_path(remote_path)
        with self._dirs_lock:
            if full_path in self._created_dirs:
                return

        result = self._run_remote(f"mkdir -p {shlex.quote(full_path)}")
        if not result.ok:
            raise UploadPermissionError(
                f"Failed to create directory: {full_path}: {result.stderr_text.strip()}"
            )
        with self._dirs_lock:
            # mkdir -p created every ancestor too
            self._created_dirs.add(full_path)
            for parent in parent_dirs(remote_path):
                self._created_dirs.add(self.remote_full_path(parent))

    def delete(self, remote_path: str) -> None:
        self._ensure_connected()
        full_path = self.remote_full_path(remote_path)
        result = self._run_remote(f"rm -rf {shlex.quote(full_path)}")
        if not result.ok and "No such file" not in result.stderr_text:
            raise UploadPermissionError(
                f"Failed to delete: {full_path}: {result.stderr_text.strip()}"
            )

    def read_file(self, remote_path: str) -> Optional[bytes]:
        self._ensure_connected()
        full_path = self.remote_full_path(remote_path)
        result = self._run_remote(f"cat {shlex.quote(full_path)}")
        if result.ok:
            return result.stdout

        message = result.stderr_text
        if (
            "No such file" in message
            or "not found" in message
            or "Is a directory" in message
        ):
            return None
        raise UploadTransferError(f"Failed to read file: {full_path}: {message.strip()}")

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

        parent = posixpath.dirname(remote_path.strip("/"))
        if parent:
            self.mkdir(parent)

        dest_path = self.remote_full_path(remote_path)

        if file.content is not None:
            self._upload_buffer(file.content, dest_path, file.size, on_progress)
        elif file.source_path is not None:
            self._upload_from_path(
                Path(file.source_path), dest_path, file.size, on_progress
            )
        else:
            raise UploadTransferError(
                f"No source for file upload: {file.relative_path}"
            )

    def _upload_buffer(
        self,
        data: bytes,
        dest_path: str,
        size: int,
        on_progress: Optional[ByteProgressCallback],
    ) -> None:
        """Stage in-memory content in the temp directory and upload it."""
        temp_file = self.get_temp_dir() / uuid.uuid4().hex
        temp_file.write_bytes(data)
        try:
            self._upload_from_path(temp_file, dest_path, size, on_progress)
        finally:
            try:
                temp_file.unlink()
            except OSError as e:
                logger.warning("Failed to remove temp file %s: %s", temp_file, e)

    def _raise_for_transfer(self, result: CommandResult, src: Path) -> None:
        message = result.stderr_text
        if is_ssh_auth_error(message):
            raise UploadAuthError(f"Authentication failed: {self.target.host}")
        raise UploadTransferError(f"Failed to upload file: {src}: {message.strip()}")

    @abc.abstractmethod
    def _upload_from_path(
        self,
        src: Path,
        dest_path: str,
        size: int,
        on_progress: Optional[ByteProgressCallback],
    ) -> None:
        """Move one local file to ``dest_path`` on the remote host."""
