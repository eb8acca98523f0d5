"""
Protocols subpackage for deploysync.

Re-exports the transport classes and the ``create_transport`` factory.
"""

from typing import Optional

from deploysync.errors import UploadConnectionError
from deploysync.executor import CommandRunner
from deploysync.models import Protocol, TargetConfig
from deploysync.protocols.base import (
    BulkTransferCapable,
    NativeDiffCapable,
    RemoteListingCapable,
    Transport,
    has_bulk_transfer,
    has_native_diff,
    has_remote_listing,
)
from deploysync.protocols.ftp import FtpTransport
from deploysync.protocols.local import LocalTransport
from deploysync.protocols.rsync import RsyncTransport
from deploysync.protocols.scp import ScpTransport
from deploysync.protocols.sftp import SftpTransport
from deploysync.protocols.ssh_base import (
    SshCommandTransport,
    SshTransportBase,
    TransportState,
)


def create_transport(
    target: TargetConfig, runner: Optional[CommandRunner] = None
) -> Transport:
    """
    Build the transport for a target.

    Args:
        target: Resolved target configuration.
        runner: Command runner for subprocess transports (tests inject a fake).

    Returns:
        An unconnected Transport.

    Raises:
        UploadConnectionError: If the protocol is not supported.
    """
    protocol = target.protocol
    if protocol == Protocol.LOCAL:
        return LocalTransport(target)
    if protocol == Protocol.SCP:
        return ScpTransport(target, runner=runner)
    if protocol == Protocol.RSYNC:
        return RsyncTransport(target, runner=runner)
    if protocol == Protocol.SFTP:
        return SftpTransport(target)
    if protocol == Protocol.FTP:
        return FtpTransport(target)
    raise UploadConnectionError(f"Unsupported protocol: {protocol}")


__all__ = [
    "Transport",
    "BulkTransferCapable",
    "NativeDiffCapable",
    "RemoteListingCapable",
    "has_bulk_transfer",
    "has_native_diff",
    "has_remote_listing",
    "SshTransportBase",
    "SshCommandTransport",
    "TransportState",
    "LocalTransport",
    "ScpTransport",
    "RsyncTransport",
    "SftpTransport",
    "FtpTransport",
    "create_transport",
]
