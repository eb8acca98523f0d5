"""
File exclusion pattern handling for deploysync.

Handles .deploysync_ignore files, gitignore-style pattern matching on
relative paths, and directory walking.
"""

import fnmatch
import os
import re
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Tuple

import click

from deploysync.models import UploadFile

IGNORE_FILENAME = ".deploysync_ignore"

DEFAULT_IGNORE_PATTERNS = [
    ".git/",
    ".svn/",
    ".hg/",
    "node_modules/",
    ".DS_Store",
    "Thumbs.db",
    "*.swp",
    "*.swo",
    "*~",
]


def _glob_to_regex(pattern: str) -> Pattern[str]:
    """Translate a slash-containing glob into an anchored regex."""
    i = 0
    out: List[str] = []
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


class IgnoreMatcher:
    """
    Gitignore-style predicate over relative, slash-separated paths.

    Pattern rules:
      - ``name`` or ``*.ext`` (no slash): matches that name at any depth,
        including any directory along the path.
      - ``name/`` (trailing slash): matches directories only, at any depth,
        which excludes everything beneath them.
      - ``a/b`` or ``/a/*.tmp`` (inner slash): anchored to the root;
        ``*`` does not cross ``/``, ``**`` does.
    """

    def __init__(self, patterns: Iterable[str]):
        self.patterns: List[Tuple[str, bool, bool, Optional[Pattern[str]]]] = []
        for raw in patterns:
            p = raw.strip()
            if not p or p.startswith("#"):
                continue
            dir_only = p.endswith("/")
            if dir_only:
                p = p.rstrip("/")
            anchored = "/" in p
            p = p.lstrip("/")
            regex = _glob_to_regex(p) if anchored else None
            self.patterns.append((p, dir_only, anchored, regex))

    def __len__(self) -> int:
        return len(self.patterns)

    def matches(self, path: str, is_directory: bool = False) -> bool:
        """
        Check whether a relative path is ignored.

        Args:
            path: Relative path; backslashes and a leading slash are normalized.
            is_directory: True if ``path`` itself names a directory.

        Returns:
            True if any pattern matches the path or one of its parents.
        """
        normalized = path.replace("\\", "/").strip("/")
        if not normalized:
            return False
        parts = normalized.split("/")

        # Every leading prefix is a candidate; all but the last are directories.
        candidates: List[Tuple[str, str, bool]] = []
        for idx in range(len(parts)):
            prefix = "/".join(parts[: idx + 1])
            is_dir = idx < len(parts) - 1 or is_directory
            candidates.append((prefix, parts[idx], is_dir))

        for pattern, dir_only, anchored, regex in self.patterns:
            for prefix, name, is_dir in candidates:
                if dir_only and not is_dir:
                    continue
                if anchored:
                    if regex is not None and regex.match(prefix):
                        return True
                elif fnmatch.fnmatchcase(name, pattern):
                    return True
        return False

    def filter_paths(self, paths: Iterable[str]) -> List[str]:
        """Return the paths that are not ignored."""
        return [p for p in paths if not self.matches(p)]


def apply_ignore_filter(
    files: List[UploadFile], patterns: Iterable[str]
) -> List[UploadFile]:
    """
    Drop UploadFiles whose relative path matches an ignore pattern.

    Args:
        files: Files to filter.
        patterns: Gitignore-style patterns.

    Returns:
        Files not matched by any pattern, in their original order.
    """
    matcher = IgnoreMatcher(patterns)
    if not len(matcher):
        return list(files)
    return [
        f for f in files if not matcher.matches(f.relative_path, f.is_directory)
    ]


def load_ignore_file(path: Path) -> List[str]:
    """
    Load exclude patterns from a .deploysync_ignore file.

    Args:
        path: Path to the ignore file.

    Returns:
        List of exclude patterns (empty if file doesn't exist or can't be read).
    """
    if not path.exists():
        return []
    try:
        with open(path, "r") as f:
            return [
                line.strip() for line in f if line.strip() and not line.startswith("#")
            ]
    except OSError:
        return []


def collect_ignore_patterns(directory: Path, local_basepath: Path) -> List[str]:
    """
    Collect all .deploysync_ignore files from directory up to local_basepath.

    Patterns with a path component are re-anchored to local_basepath so
    they keep their meaning when applied from the root.

    Args:
        directory: Starting directory.
        local_basepath: Root directory (stops walking up here).

    Returns:
        List of exclude patterns from all ignore files found.
    """
    all_excludes: List[str] = []
    current = directory

    while True:
        ignore_file = current / IGNORE_FILENAME
        if ignore_file.exists():
            try:
                rel_dir = current.relative_to(local_basepath)
            except ValueError:
                rel_dir = Path(".")
            rel_dir_str = str(rel_dir).replace(os.sep, "/")

            for p in load_ignore_file(ignore_file):
                if "/" in p.rstrip("/"):
                    clean_p = p.lstrip("/")
                    if rel_dir_str == ".":
                        all_excludes.append("/" + clean_p)
                    else:
                        all_excludes.append("/" + rel_dir_str + "/" + clean_p)
                else:
                    all_excludes.append(p)

        try:
            if current.resolve() == local_basepath.resolve():
                break
        except (ValueError, OSError):
            break

        parent = current.parent
        if parent == current:
            break
        current = parent

    return all_excludes


def is_excluded(path: Path, excludes: List[str], local_basepath: Path) -> bool:
    """
    Check if a local path matches any exclude pattern.

    Args:
        path: Path to check.
        excludes: List of exclude patterns.
        local_basepath: Base directory for relative path calculation.

    Returns:
        True if path should be excluded, False otherwise.
    """
    try:
        rel_path = path.relative_to(local_basepath)
    except ValueError:
        return False

    rel_str = str(rel_path).replace(os.sep, "/")
    return IgnoreMatcher(excludes).matches(rel_str, path.is_dir())


def walk_directory(
    directory: Path, excludes: List[str], local_basepath: Path
) -> List[Path]:
    """
    Recursively walk a directory, applying exclude patterns.

    Args:
        directory: Directory to walk.
        excludes: List of exclude patterns.
        local_basepath: Base directory for relative path calculation.

    Returns:
        List of file paths that are not excluded.
    """
    files: List[Path] = []

    current_excludes = excludes + collect_ignore_patterns(directory, local_basepath)

    try:
        entries = sorted(directory.iterdir())
    except OSError:
        return []

    for entry in entries:
        if is_excluded(entry, current_excludes, local_basepath):
            continue

        if entry.is_file():
            files.append(entry)
        elif entry.is_dir():
            files.extend(walk_directory(entry, current_excludes, local_basepath))

    return files


def show_ignored_files(local_basepath: Path, excludes: List[str]) -> None:
    """
    List all files and directories that are being ignored by exclude patterns.

    Args:
        local_basepath: Base directory to scan from.
        excludes: List of exclude patterns to apply.
    """
    click.echo(click.style("\n🚫 Ignored Files and Directories:", fg="cyan", bold=True))
    click.echo(f"Scanning from: {local_basepath}\n")

    if not excludes:
        click.echo(click.style("No exclude patterns configured.", dim=True))
        return

    click.echo(click.style("Active exclude patterns:", fg="yellow"))
    for pattern in excludes:
        click.echo(f"  • {click.style(pattern, fg='white')}")
    click.echo()

    ignored_items: List[Tuple[str, str, int]] = []
    scanned_count = 0

    def scan_directory(directory: Path, depth: int = 0) -> None:
        nonlocal scanned_count

        try:
            entries = sorted(directory.iterdir())
        except OSError:
            return

        for entry in entries:
            scanned_count += 1
            if is_excluded(entry, excludes, local_basepath):
                rel_path = entry.relative_to(local_basepath)
                item_type = "📁" if entry.is_dir() else "📄"
                ignored_items.append((str(rel_path), item_type, depth))
                continue  # excluded directories are not descended into

            if entry.is_dir():
                scan_directory(entry, depth + 1)

    scan_directory(local_basepath)

    if ignored_items:
        click.echo(
            click.style(
                f"Found {len(ignored_items)} ignored items:", fg="red", bold=True
            )
        )
        click.echo()
        for rel_path, item_type, depth in ignored_items:
            indent = "  " * depth
            click.echo(f"{indent}{item_type} {click.style(rel_path, fg='bright_red')}")
    else:
        click.echo(click.style("No ignored files or directories found.", fg="green"))

    click.echo(f"\n{click.style('Total items scanned:', fg='cyan')} {scanned_count}")
