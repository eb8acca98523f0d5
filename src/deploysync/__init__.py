"""
deploysync - Deploy files to multiple remote targets, transferring only what changed

License: MIT License
"""

__version__ = "1.0.0"

# Public API exports
from deploysync.config import load_config, load_config_with_sources, resolve_targets
from deploysync.diff import compute_diff, compute_manual_diff
from deploysync.engine import get_target_diffs, upload_to_target, upload_to_targets
from deploysync.errors import (
    ConfigError,
    UploadAuthError,
    UploadConnectionError,
    UploadError,
    UploadPermissionError,
    UploadTimeoutError,
    UploadTransferError,
)
from deploysync.excludes import IgnoreMatcher, apply_ignore_filter
from deploysync.itemize import parse_itemize_changes, parse_itemize_line
from deploysync.mirror import detect_base_directory, prepare_mirror_sync
from deploysync.models import (
    DiffEntry,
    DiffKind,
    DiffResult,
    OverallResult,
    Protocol,
    SyncMode,
    TargetConfig,
    UploadFile,
    UploadOptions,
)
from deploysync.protocols import create_transport
from deploysync.retry import with_retry

__all__ = [
    "__version__",
    "load_config",
    "load_config_with_sources",
    "resolve_targets",
    "compute_diff",
    "compute_manual_diff",
    "get_target_diffs",
    "upload_to_target",
    "upload_to_targets",
    "ConfigError",
    "UploadError",
    "UploadAuthError",
    "UploadConnectionError",
    "UploadPermissionError",
    "UploadTimeoutError",
    "UploadTransferError",
    "IgnoreMatcher",
    "apply_ignore_filter",
    "parse_itemize_changes",
    "parse_itemize_line",
    "detect_base_directory",
    "prepare_mirror_sync",
    "DiffEntry",
    "DiffKind",
    "DiffResult",
    "OverallResult",
    "Protocol",
    "SyncMode",
    "TargetConfig",
    "UploadFile",
    "UploadOptions",
    "create_transport",
    "with_retry",
]
