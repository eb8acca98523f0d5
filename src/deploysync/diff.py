"""
Change detection between a local batch and a target.

Transports with a native diff report changes themselves; everything else
goes through the manual engine, which reads each remote file back and
compares bytes under a bounded worker pool.
"""

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, List, Optional

from deploysync.models import ChangeKind, DiffEntry, DiffKind, DiffResult, UploadFile
from deploysync.protocols.base import Transport, has_native_diff

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10


def _classify(transport: Transport, file: UploadFile) -> Optional[DiffEntry]:
    """Compare one file against the remote. Never raises."""
    path = file.relative_path

    if file.is_delete:
        try:
            remote = transport.read_file(path)
        except Exception as e:
            logger.debug("Remote check failed for %s: %s", path, e)
            return DiffEntry(path, DiffKind.DELETED)
        return DiffEntry(path, DiffKind.DELETED) if remote is not None else None

    try:
        local = file.read_local()
    except OSError as e:
        logger.debug("Cannot read local %s: %s", path, e)
        local = None
    if local is None:
        return DiffEntry(path, DiffKind.MODIFIED)

    try:
        remote = transport.read_file(path)
    except FileNotFoundError:
        return DiffEntry(path, DiffKind.ADDED)
    except Exception as e:
        logger.debug("Remote read failed for %s: %s", path, e)
        return DiffEntry(path, DiffKind.MODIFIED)

    if remote is None:
        return DiffEntry(path, DiffKind.ADDED)
    if remote != local:
        return DiffEntry(path, DiffKind.MODIFIED)
    return None


def compute_manual_diff(
    transport: Transport,
    files: List[UploadFile],
    concurrency: int = DEFAULT_CONCURRENCY,
) -> DiffResult:
    """
    Classify files by reading them back from the remote side.

    Directories are skipped. Delete-kind files produce a ``D`` entry when
    the path still exists remotely. At most ``concurrency`` comparisons
    are in flight at once; entry order is unspecified.

    Args:
        transport: Connected transport.
        files: Files to compare.
        concurrency: Worker pool width.

    Returns:
        DiffResult with one entry per changed path.
    """
    candidates = [f for f in files if not f.is_directory]
    if not candidates:
        return DiffResult()

    entries: List[DiffEntry] = []
    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as executor:
        futures = [executor.submit(_classify, transport, f) for f in candidates]
        for future in as_completed(futures):
            entry = future.result()
            if entry is not None:
                entries.append(entry)

    return DiffResult.from_entries(entries)


def compute_diff(
    transport: Transport,
    files: List[UploadFile],
    local_dir: Optional[Path] = None,
    checksum: bool = False,
    concurrency: int = DEFAULT_CONCURRENCY,
    ignore_patterns: Optional[Iterable[str]] = None,
) -> DiffResult:
    """
    Diff a batch against a target, natively when the transport can.

    The native path needs ``local_dir`` because the underlying tool
    compares directories; delete-kind files pass straight through as
    ``D`` entries there.
    """
    if has_native_diff(transport) and local_dir is not None:
        paths = [
            f.relative_path for f in files if not f.is_delete and not f.is_directory
        ]
        diff = DiffResult()
        if paths:
            diff = transport.get_diff(
                Path(local_dir),
                files=paths,
                checksum=checksum,
                ignore_patterns=ignore_patterns,
            )
        deletes = [
            DiffEntry(f.relative_path, DiffKind.DELETED) for f in files if f.is_delete
        ]
        return DiffResult.from_entries(diff.entries + deletes)

    return compute_manual_diff(transport, files, concurrency=concurrency)


def apply_diff(files: List[UploadFile], diff: DiffResult) -> List[UploadFile]:
    """
    Narrow a batch to the files the diff reports as changed.

    Change kinds are set from the diff. Directory entries are dropped;
    transfers create the parents of changed files themselves.
    """
    kinds = diff.paths
    changed: List[UploadFile] = []
    for f in files:
        if f.is_directory:
            continue
        kind = kinds.get(f.relative_path)
        if kind is None:
            continue
        if f.is_delete:
            if kind == DiffKind.DELETED:
                changed.append(f)
            continue
        if kind == DiffKind.DELETED:
            continue
        change_kind = ChangeKind.ADD if kind == DiffKind.ADDED else ChangeKind.MODIFY
        # the batch is shared across targets; never mutate it
        changed.append(dataclasses.replace(f, change_kind=change_kind))

    return changed
