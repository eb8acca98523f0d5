"""
rsync protocol implementation for deploysync.

Supports single-command bulk transfer through a local staging directory
and native change detection with ``rsync -n --itemize-changes``.
"""

import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Iterable, List, Optional

from deploysync.errors import (
    UploadAuthError,
    UploadConnectionError,
    UploadTransferError,
    is_connection_refused,
    is_ssh_auth_error,
)
from deploysync.executor import build_ssh_command
from deploysync.itemize import parse_itemize_changes
from deploysync.models import (
    BulkProgressCallback,
    BulkTransferResult,
    ByteProgressCallback,
    DiffResult,
    UploadFile,
)
from deploysync.protocols.base import BulkTransferCapable, NativeDiffCapable
from deploysync.protocols.ssh_base import SshCommandTransport

logger = logging.getLogger(__name__)


class RsyncTransport(SshCommandTransport, BulkTransferCapable, NativeDiffCapable):
    """Transport backed by the external ``rsync`` command over ssh."""

    temp_prefix = "deploysync_rsync_"

    def _use_sudo(self) -> bool:
        return "sudo" in (self.target.rsync_path or "")

    def ssh_command(self) -> str:
        """ssh command line handed to ``rsync -e``."""
        return build_ssh_command(
            port=self.target.resolved_port,
            key_file=self.target.key_file,
            password=self.target.password,
            timeout=self.target.timeout,
            legacy_mode=self.target.legacy_mode,
        )

    def _common_args(self) -> List[str]:
        args: List[str] = []
        if self.target.preserve_timestamps:
            args.append("-t")
        if self.target.preserve_permissions:
            args.append("-p")
        args += ["-e", self.ssh_command()]
        if self.target.rsync_path:
            args.append(f"--rsync-path={self.target.rsync_path}")
        args += list(self.target.rsync_options)
        return args

    def _upload_from_path(
        self,
        src: Path,
        dest_path: str,
        size: int,
        on_progress: Optional[ByteProgressCallback],
    ) -> None:
        args = ["-rlD"] + self._common_args() + [str(src), self.remote_spec(dest_path)]

        if on_progress:
            on_progress(0, size)

        result = self._run("rsync", args)
        if not result.ok:
            self._raise_for_transfer(result, src)

        if on_progress:
            on_progress(size, size)

    def bulk_transfer(
        self,
        files: List[UploadFile],
        on_progress: Optional[BulkProgressCallback] = None,
    ) -> BulkTransferResult:
        """
        Transfer every non-delete file with one rsync invocation.

        Files are staged under a temporary directory mirroring their
        relative layout, then the staging directory is synced onto dest.

        Args:
            files: Files to transfer; delete-kind entries are ignored.
            on_progress: Called with (index, total, message) while staging
                and once before the transfer starts.

        Returns:
            BulkTransferResult. A failed rsync run marks every file failed;
            a file with no local source fails on its own.

        Raises:
            UploadAuthError: If rsync reports an authentication failure.
        """
        self._ensure_connected()
        start = time.monotonic()
        to_upload = [f for f in files if not f.is_delete]

        if not to_upload:
            return BulkTransferResult(duration=time.monotonic() - start)

        staging_dir = Path(tempfile.mkdtemp(prefix="deploysync_bulk_"))
        try:
            total_size = 0
            missing: List[str] = []
            for i, file in enumerate(to_upload):
                staged = staging_dir / file.relative_path
                staged.parent.mkdir(parents=True, exist_ok=True)

                if file.is_directory:
                    staged.mkdir(parents=True, exist_ok=True)
                elif file.content is not None:
                    staged.write_bytes(file.content)
                    total_size += file.size
                elif file.source_path is not None:
                    shutil.copy2(file.source_path, staged)
                    total_size += file.size
                else:
                    missing.append(file.relative_path)

                if on_progress and i % 100 == 0:
                    on_progress(i, len(to_upload), f"Preparing: {file.relative_path}")

            if on_progress:
                on_progress(max(0, len(to_upload) - 1), len(to_upload), "Transferring...")

            error = self._run_bulk(staging_dir)
            if error:
                failed_paths = [f.relative_path for f in to_upload]
            else:
                failed_paths = missing
                if missing:
                    error = f"No local source for: {', '.join(missing)}"
            return BulkTransferResult(
                success_count=len(to_upload) - len(failed_paths),
                failed_count=len(failed_paths),
                total_size=total_size,
                duration=time.monotonic() - start,
                error=error,
                failed_paths=failed_paths,
            )
        finally:
            try:
                shutil.rmtree(staging_dir)
            except OSError as e:
                logger.warning(
                    "Failed to remove staging directory %s: %s", staging_dir, e
                )

    def _run_bulk(self, staging_dir: Path) -> Optional[str]:
        """Sync the staging directory onto dest. Returns an error message or None."""
        args = ["-r", "-l", "-D"] + self._common_args()
        args += [f"{staging_dir}/", self.remote_spec(self.target.dest.rstrip("/") + "/")]

        result = self._run("rsync", args)
        if result.ok:
            return None

        message = result.stderr_text
        if is_ssh_auth_error(message):
            raise UploadAuthError(f"Authentication failed: {self.target.host}")
        return (message or result.stdout_text).strip() or f"rsync exited {result.returncode}"

    def get_diff(
        self,
        local_dir: Path,
        files: Optional[List[str]] = None,
        checksum: bool = False,
        remote_dir: Optional[str] = None,
        ignore_patterns: Optional[Iterable[str]] = None,
    ) -> DiffResult:
        self._ensure_connected()

        files_from: Optional[str] = None
        try:
            args = ["-n", "--itemize-changes", "-r"]
            if checksum:
                args.append("--checksum")

            if files:
                # directories are created implicitly
                listing = "\n".join(f for f in files if not f.endswith("/"))
                fd, files_from = tempfile.mkstemp(prefix="deploysync_files_")
                with os.fdopen(fd, "w") as fh:
                    fh.write(listing)
                args.append(f"--files-from={files_from}")
            else:
                args.append("--delete")

            for pattern in ignore_patterns or ():
                args.append(f"--exclude={pattern}")

            args += ["-e", self.ssh_command()]
            if self.target.rsync_path:
                args.append(f"--rsync-path={self.target.rsync_path}")

            src = str(local_dir)
            if not src.endswith("/"):
                src += "/"
            dest = (remote_dir or self.target.dest).rstrip("/") + "/"
            args += [src, self.remote_spec(dest)]

            result = self._run("rsync", args)
            if not result.ok:
                message = result.stderr_text
                if is_ssh_auth_error(message):
                    raise UploadAuthError(f"Authentication failed: {self.target.host}")
                if is_connection_refused(message):
                    raise UploadConnectionError(
                        f"Connection refused: {self.target.host}"
                    )
                raise UploadTransferError(f"rsync diff failed: {message.strip()}")

            return parse_itemize_changes(result.stdout)
        finally:
            if files_from:
                try:
                    os.unlink(files_from)
                except OSError as e:
                    logger.warning("Failed to remove temp file %s: %s", files_from, e)
