"""
Data model for deploysync.

Target configuration, upload units, diff results, transfer results and
progress events shared by the transports and the upload engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple


class Protocol(str, Enum):
    """Transport protocols a target can use."""

    LOCAL = "local"
    SCP = "scp"
    RSYNC = "rsync"
    SFTP = "sftp"
    FTP = "ftp"


class SyncMode(str, Enum):
    """How remote-only files are treated."""

    UPDATE = "update"
    """Only add and overwrite"""

    MIRROR = "mirror"
    """Also delete remote files that no longer exist locally"""


class ChangeKind(str, Enum):
    """Kind of change carried by an UploadFile."""

    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"


class DiffKind(str, Enum):
    """Kind of a diff entry."""

    ADDED = "A"
    MODIFIED = "M"
    DELETED = "D"


class TransferStatus(str, Enum):
    """Status of a file or a target during an upload run."""

    PENDING = "pending"
    CONNECTING = "connecting"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExitCode:
    """Process exit codes used by the CLI."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    CONFIG_ERROR = 2
    AUTH_ERROR = 3
    CONNECTION_ERROR = 4
    PARTIAL_FAILURE = 5


SSH_PROTOCOLS = (Protocol.SCP, Protocol.RSYNC, Protocol.SFTP)


@dataclass(frozen=True)
class TargetConfig:
    """One remote destination, fully resolved and read-only to the engine."""

    host: str
    protocol: Protocol
    dest: str
    port: Optional[int] = None
    user: str = ""
    key_file: Optional[str] = None
    password: Optional[str] = None
    sync_mode: SyncMode = SyncMode.UPDATE
    timeout: int = 30
    retry: int = 3
    legacy_mode: bool = False
    ignore: Tuple[str, ...] = ()
    preserve_permissions: bool = False
    preserve_timestamps: bool = False
    rsync_path: Optional[str] = None
    rsync_options: Tuple[str, ...] = ()
    passive: bool = True

    @property
    def resolved_port(self) -> int:
        """Port to connect to, falling back to the protocol default."""
        if self.port is not None:
            return self.port
        return 21 if self.protocol == Protocol.FTP else 22

    @property
    def target_id(self) -> str:
        """
        Unique key of this target within a run.

        ``[user@]host:port:dest`` for remote targets, ``host:dest`` for local ones.
        """
        if self.protocol == Protocol.LOCAL:
            return f"{self.host}:{self.dest}"
        login = f"{self.user}@{self.host}" if self.user else self.host
        return f"{login}:{self.resolved_port}:{self.dest}"

    @property
    def is_mirror(self) -> bool:
        return self.sync_mode == SyncMode.MIRROR


@dataclass
class UploadFile:
    """One unit of work: a file or directory to create, update or delete."""

    relative_path: str
    source_path: Optional[Path] = None
    content: Optional[bytes] = None
    size: int = 0
    is_directory: bool = False
    change_kind: Optional[ChangeKind] = None

    @property
    def is_delete(self) -> bool:
        return self.change_kind == ChangeKind.DELETE

    def read_local(self) -> Optional[bytes]:
        """
        Return the local bytes of this file.

        In-memory content wins over the source path. Returns None when the
        file has neither.

        Raises:
            OSError: If the source path cannot be read.
        """
        if self.content is not None:
            return self.content
        if self.source_path is not None:
            return Path(self.source_path).read_bytes()
        return None


@dataclass(frozen=True)
class DiffEntry:
    """A single changed path."""

    path: str
    kind: DiffKind


@dataclass
class DiffResult:
    """Normalized diff. Each path appears at most once."""

    entries: List[DiffEntry] = field(default_factory=list)

    @classmethod
    def from_entries(cls, entries: List[DiffEntry]) -> "DiffResult":
        """Build a result keeping the first entry seen for each path."""
        seen = set()
        unique: List[DiffEntry] = []
        for entry in entries:
            if entry.path in seen:
                continue
            seen.add(entry.path)
            unique.append(entry)
        return cls(entries=unique)

    def _count(self, kind: DiffKind) -> int:
        return sum(1 for e in self.entries if e.kind == kind)

    @property
    def added(self) -> int:
        return self._count(DiffKind.ADDED)

    @property
    def modified(self) -> int:
        return self._count(DiffKind.MODIFIED)

    @property
    def deleted(self) -> int:
        return self._count(DiffKind.DELETED)

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def paths(self) -> Dict[str, DiffKind]:
        return {e.path: e.kind for e in self.entries}

    def with_prefix(self, prefix: str) -> "DiffResult":
        """Return a copy with ``prefix`` prepended to every path."""
        if not prefix:
            return DiffResult(entries=list(self.entries))
        return DiffResult(
            entries=[DiffEntry(f"{prefix}{e.path}", e.kind) for e in self.entries]
        )


@dataclass
class FileTransferResult:
    """Outcome of one file operation."""

    path: str
    status: TransferStatus
    size: int = 0
    duration: float = 0.0
    error: Optional[str] = None


@dataclass
class TargetResult:
    """Outcome of one target."""

    target: TargetConfig
    status: TransferStatus = TransferStatus.PENDING
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    files: List[FileTransferResult] = field(default_factory=list)
    duration: float = 0.0
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TransferStatus.COMPLETED


@dataclass
class OverallResult:
    """Aggregate of all targets in a run."""

    success_targets: int
    failed_targets: int
    targets: List[TargetResult]
    total_files: int = 0
    total_size: int = 0
    total_duration: float = 0.0

    def exit_code(self) -> int:
        """Map this result to a process exit code."""
        if self.failed_targets == 0:
            return ExitCode.SUCCESS
        if self.success_targets > 0:
            return ExitCode.PARTIAL_FAILURE

        first = next((t for t in self.targets if t.error_code), None)
        if first is not None:
            if first.error_code == "auth":
                return ExitCode.AUTH_ERROR
            if first.error_code in ("connection", "timeout"):
                return ExitCode.CONNECTION_ERROR
        return ExitCode.GENERAL_ERROR


@dataclass(frozen=True)
class ProgressEvent:
    """Observational progress notification. Never drives control flow."""

    target_index: int
    total_targets: int
    host: str
    file_index: int
    total_files: int
    current_file: str
    bytes_transferred: int
    file_size: int
    status: TransferStatus


ProgressCallback = Callable[[ProgressEvent], None]
ByteProgressCallback = Callable[[int, int], None]
BulkProgressCallback = Callable[[int, int, Optional[str]], None]


@dataclass
class BulkTransferResult:
    """Outcome of a single-command transfer of many files."""

    success_count: int = 0
    failed_count: int = 0
    total_size: int = 0
    duration: float = 0.0
    error: Optional[str] = None
    # empty with a failure means every file failed
    failed_paths: List[str] = field(default_factory=list)


@dataclass
class UploadOptions:
    """Run options supplied by the caller."""

    dry_run: bool = False
    strict: bool = False
    parallel: bool = False
    concurrency: int = 10
    changed_only: bool = True
    local_dir: Optional[Path] = None
    checksum: bool = False
    files_by_target: Optional[Dict[str, List[UploadFile]]] = None
