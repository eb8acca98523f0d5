"""
SCP protocol implementation for deploysync.

Copies one file per ``scp`` invocation; remote directories and deletes
go through ssh shell commands.
"""

import logging
from pathlib import Path
from typing import Optional

from deploysync.models import ByteProgressCallback
from deploysync.protocols.ssh_base import SshCommandTransport

logger = logging.getLogger(__name__)


class ScpTransport(SshCommandTransport):
    """Transport backed by the external ``scp`` command."""

    def _upload_from_path(
        self,
        src: Path,
        dest_path: str,
        size: int,
        on_progress: Optional[ByteProgressCallback],
    ) -> None:
        # scp spells the port flag -P and wants -i up front
        args = self.ssh_args(port_flag="-P", key_file_first=True)
        if self.target.preserve_timestamps:
            args.append("-p")
        args += [str(src), self.remote_spec(dest_path)]

        if on_progress:
            on_progress(0, size)

        result = self._run("scp", args)
        if not result.ok:
            self._raise_for_transfer(result, src)

        logger.debug("[%s] scp %s -> %s", self.target.host, src, dest_path)
        if on_progress:
            on_progress(size, size)
