"""
Command building and execution for subprocess-based transports.

Transports build argument lists with the helpers here and hand them to a
CommandRunner, which tests replace with a fake.
"""

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional

from deploysync.errors import UploadConnectionError, UploadTimeoutError

logger = logging.getLogger(__name__)

LEGACY_KEX_ALGORITHMS = (
    "+diffie-hellman-group-exchange-sha1,"
    "diffie-hellman-group14-sha1,"
    "diffie-hellman-group1-sha1"
)
LEGACY_HOST_KEY_ALGORITHMS = "+ssh-rsa,ssh-dss"
LEGACY_PUBKEY_ALGORITHMS = "+ssh-rsa"


@dataclass
class CommandResult:
    """Exit status and captured output of one command."""

    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


class CommandRunner:
    """Runs external commands and captures their output."""

    def which(self, name: str) -> bool:
        """Return True if ``name`` is on PATH."""
        return shutil.which(name) is not None

    def run(
        self,
        args: List[str],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            args: Program and arguments.
            env: Extra environment variables merged over os.environ.
            timeout: Seconds before the process is killed.

        Returns:
            CommandResult with the exit code and captured output.

        Raises:
            UploadTimeoutError: If the command exceeds ``timeout``.
            UploadConnectionError: If the program cannot be started.
        """
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)

        logger.debug("exec: %s", " ".join(shlex.quote(a) for a in args))
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                env=full_env,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise UploadTimeoutError(
                f"Command timed out after {timeout}s: {args[0]}", e
            ) from e
        except FileNotFoundError as e:
            raise UploadConnectionError(f"Command not found: {args[0]}", e) from e
        return CommandResult(proc.returncode, proc.stdout, proc.stderr)


def build_ssh_args(
    port: int,
    key_file: Optional[str] = None,
    password: Optional[str] = None,
    timeout: Optional[int] = None,
    legacy_mode: bool = False,
    port_flag: str = "-p",
    key_file_first: bool = False,
) -> List[str]:
    """
    Build the common option list for ssh, scp and rsync's ``-e`` command.

    Args:
        port: Remote port.
        key_file: Private key path.
        password: If set, BatchMode is left off so sshpass can answer.
        timeout: Connect timeout in seconds (default 30).
        legacy_mode: Re-enable SHA-1 key exchange and ssh-rsa/ssh-dss keys.
        port_flag: ``-p`` for ssh, ``-P`` for scp.
        key_file_first: Put ``-i`` before the other options (scp).

    Returns:
        Argument list without the program name.
    """
    args: List[str] = []

    if key_file_first and key_file:
        args += ["-i", key_file]

    if not password:
        args += ["-o", "BatchMode=yes"]

    args += [
        "-o",
        "StrictHostKeyChecking=accept-new",
        "-o",
        f"ConnectTimeout={timeout if timeout is not None else 30}",
        port_flag,
        str(port),
    ]

    if not key_file_first and key_file:
        args += ["-i", key_file]

    if legacy_mode:
        args += [
            "-o",
            f"KexAlgorithms={LEGACY_KEX_ALGORITHMS}",
            "-o",
            f"HostKeyAlgorithms={LEGACY_HOST_KEY_ALGORITHMS}",
            "-o",
            f"PubkeyAcceptedAlgorithms={LEGACY_PUBKEY_ALGORITHMS}",
        ]

    return args


def build_ssh_command(**kwargs) -> str:
    """Build the ssh command string passed to ``rsync -e``."""
    return " ".join(["ssh"] + [shlex.quote(a) for a in build_ssh_args(**kwargs)])
