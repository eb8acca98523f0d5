"""
Mirror-mode reconciliation.

Finds files that exist only on the remote side and turns them into
delete-kind UploadFiles, never reaching outside the batch's common base
directory.
"""

import logging
import posixpath
from pathlib import Path
from typing import Iterable, List, Optional

from deploysync.excludes import IgnoreMatcher
from deploysync.models import ChangeKind, DiffKind, UploadFile
from deploysync.protocols.base import Transport, has_native_diff, has_remote_listing

logger = logging.getLogger(__name__)


def detect_base_directory(files: List[UploadFile]) -> str:
    """
    Return the longest common directory prefix of the non-delete files.

    Directory entries count as ``path/``. The result ends with ``/`` or is
    empty when the files share no directory.

    >>> detect_base_directory([UploadFile("src/a.py"), UploadFile("src/lib/b.py")])
    'src/'
    """
    paths: List[str] = []
    for f in files:
        if f.is_delete:
            continue
        path = f.relative_path.strip("/")
        paths.append(path + "/" if f.is_directory else path)

    if not paths:
        return ""

    prefix = posixpath.commonprefix(paths)
    cut = prefix.rfind("/")
    return prefix[: cut + 1] if cut >= 0 else ""


def _synthesize_deletions(
    remote_paths: Iterable[str],
    files: List[UploadFile],
    ignore_patterns: Iterable[str],
) -> List[UploadFile]:
    matcher = IgnoreMatcher(ignore_patterns)
    local_paths = {f.relative_path for f in files if not f.is_delete}
    pending = {f.relative_path for f in files}

    deletions: List[UploadFile] = []
    for path in remote_paths:
        if matcher.matches(path):
            continue
        if path in local_paths or path in pending:
            continue
        deletions.append(UploadFile(relative_path=path, change_kind=ChangeKind.DELETE))
        pending.add(path)
    return deletions


def prepare_mirror_sync(
    transport: Transport,
    files: List[UploadFile],
    ignore_patterns: Iterable[str],
    local_dir: Optional[Path] = None,
    dest: Optional[str] = None,
) -> List[UploadFile]:
    """
    Append deletions for remote-only files under the batch's base directory.

    Args:
        transport: Connected transport for the target.
        files: Files about to be uploaded.
        ignore_patterns: Patterns applied to the remote side as well.
        local_dir: Local root of ``files``; enables the native-diff path.
        dest: Remote root; defaults to the transport's target dest.

    Returns:
        ``files`` followed by the synthesized deletions. On any failure the
        input list is returned unchanged.
    """
    patterns = list(ignore_patterns)
    base = detect_base_directory(files)

    try:
        if has_remote_listing(transport):
            logger.debug("Fetching remote file list for mirror sync...")
            remote_files = transport.list_remote()
            logger.debug("Found %d files on remote", len(remote_files))
            in_base = [p for p in remote_files if p.startswith(base)]
            deletions = _synthesize_deletions(in_base, files, patterns)

        elif has_native_diff(transport) and local_dir is not None:
            remote_root = dest or transport.target.dest
            diff = transport.get_diff(
                Path(local_dir) / base if base else Path(local_dir),
                remote_dir=posixpath.join(remote_root, base) if base else remote_root,
                ignore_patterns=patterns,
            )
            deleted = [
                e.path for e in diff.with_prefix(base).entries if e.kind == DiffKind.DELETED
            ]
            deletions = _synthesize_deletions(deleted, files, patterns)

        else:
            logger.warning(
                "%s transport cannot list remote files; skipping mirror deletions",
                transport.name,
            )
            return list(files)

    except Exception as e:
        logger.warning("Failed to fetch remote file list for mirror sync: %s", e)
        logger.warning(
            "Continuing without mirror sync (remote-only files will not be deleted)"
        )
        return list(files)

    if deletions:
        logger.debug("Found %d files to delete for mirror sync", len(deletions))
    return list(files) + deletions
