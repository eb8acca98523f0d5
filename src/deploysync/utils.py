"""
Utility functions for deploysync.

Contains helpers for collecting local files into UploadFiles and for
formatting sizes and durations.
"""

import glob
import logging
import os
from pathlib import Path
from typing import List, Optional, Set

import click

from deploysync.excludes import is_excluded, walk_directory
from deploysync.models import ChangeKind, UploadFile

logger = logging.getLogger(__name__)


def display_comment(comment: str, prefix: str = "💬") -> None:
    """
    Display a comment with appropriate styling.

    Args:
        comment: Comment text to display.
        prefix: Emoji prefix for the comment.
    """
    if comment:
        click.echo(click.style(f"{prefix} {comment}", fg="cyan"))


def relative_posix_path(path: Path, local_basepath: Path) -> Optional[str]:
    """Return ``path`` relative to the base as a slash path, or None if outside."""
    try:
        rel = path.resolve().relative_to(local_basepath.resolve())
    except ValueError:
        return None
    return str(rel).replace(os.sep, "/")


def expand_patterns(
    patterns: List[str],
    excludes: List[str],
    local_basepath: Path,
    recursive: bool = True,
) -> List[Path]:
    """
    Expand glob patterns to a list of files.

    Args:
        patterns: List of file patterns or paths.
        excludes: List of exclude patterns.
        local_basepath: Base directory for relative path calculation.
        recursive: If True, search recursively for patterns without path separators.

    Returns:
        List of resolved file paths inside local_basepath.
    """
    files: List[Path] = []
    seen: Set[Path] = set()
    base = local_basepath.resolve()

    for pattern in patterns:
        matched: List[str] = []

        if recursive and "/" not in pattern and "\\" not in pattern:
            matched = [str(p) for p in Path.cwd().rglob(pattern) if p.is_file()]

        if not matched:
            matched = glob.glob(pattern, recursive=True)

        if not matched:
            if os.path.exists(pattern):
                matched = [pattern]
            else:
                click.echo(f"Warning: No files found for pattern '{pattern}'", err=True)
                continue

        for m in matched:
            path = Path(m).resolve()
            if path in seen:
                continue

            try:
                path.relative_to(base)
            except ValueError:
                logger.debug("Skipping %s: outside %s", path, base)
                continue

            if is_excluded(path, excludes, base):
                continue

            if path.is_file():
                files.append(path)
                seen.add(path)
            elif path.is_dir():
                for f in walk_directory(path, excludes, base):
                    if f not in seen:
                        files.append(f)
                        seen.add(f)

    return files


def collect_upload_files(
    patterns: List[str],
    excludes: List[str],
    local_basepath: Path,
    recursive: bool = True,
) -> List[UploadFile]:
    """
    Collect local files as UploadFiles relative to local_basepath.

    With no patterns the whole base path is collected.

    Returns:
        UploadFiles sorted by depth, then path.
    """
    base = local_basepath.resolve()
    if patterns:
        paths = expand_patterns(patterns, excludes, base, recursive)
    else:
        paths = walk_directory(base, excludes, base)

    uploads: List[UploadFile] = []
    for path in paths:
        rel = relative_posix_path(path, base)
        if rel is None:
            continue
        uploads.append(
            UploadFile(
                relative_path=rel,
                source_path=path,
                size=path.stat().st_size,
                change_kind=ChangeKind.ADD,
            )
        )

    uploads.sort(key=lambda f: (f.relative_path.count("/"), f.relative_path.lower()))
    return uploads


def format_size(num_bytes: float) -> str:
    """
    Format a byte count for humans.

    >>> format_size(1536)
    '1.5 KB'
    """
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{int(size)} B"
    return f"{size:.1f} {units[unit]}"


def format_duration(elapsed: float) -> str:
    """Format seconds as e.g. ``1h 2m 3.45s``."""
    days = int(elapsed // 86400)
    hours = int((elapsed % 86400) // 3600)
    minutes = int((elapsed % 3600) // 60)
    seconds = elapsed % 60

    time_parts = []
    if days > 0:
        time_parts.append(f"{days}d")
    if hours > 0 or days > 0:
        time_parts.append(f"{hours}h")
    if minutes > 0 or hours > 0 or days > 0:
        time_parts.append(f"{minutes}m")
    time_parts.append(f"{seconds:.2f}s")
    return " ".join(time_parts)


def format_speed(num_bytes: float, elapsed: float) -> str:
    if elapsed <= 0:
        return "0 B/s"
    return f"{format_size(num_bytes / elapsed)}/s"
