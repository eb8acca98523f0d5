"""
Parser for rsync ``--itemize-changes`` output.

Turns the dry-run change report into a normalized DiffResult.
"""

import re
from typing import List, Optional, Union

from deploysync.models import DiffEntry, DiffKind, DiffResult

DELETE_MARKER = "*deleting"

# <direction><kind><9 flags> <path>
#   direction: < > . c h    kind: f d L D S
ITEMIZE_RE = re.compile(r"^([<>.ch])([fdLDS])([cCsSpPtToOgGuUaAxX.+]{9})\s+(.+)$")


def parse_itemize_line(line: str) -> Optional[DiffEntry]:
    """
    Parse one line of itemized output.

    Examples:
        ``>f+++++++++ new.txt``   -> A
        ``>f.st...... edit.txt``  -> M
        ``>f..t...... touch.txt`` -> None (timestamp only)
        ``*deleting   old.txt``   -> D
        ``cd+++++++++ dir/``      -> None (directory)

    Args:
        line: A single output line.

    Returns:
        DiffEntry, or None when the line is not a file content change.
    """
    if not line or not line.strip():
        return None

    if line.startswith(DELETE_MARKER):
        path = line[len(DELETE_MARKER):].strip()
        if not path or path.endswith("/"):
            return None
        return DiffEntry(path, DiffKind.DELETED)

    match = ITEMIZE_RE.match(line.rstrip("\r\n"))
    if not match:
        return None

    _direction, kind, flags, path = match.groups()
    if kind != "f":
        return None

    if set(flags) == {"+"}:
        return DiffEntry(path, DiffKind.ADDED)

    # flags[0] is the checksum column, flags[1] the size column.
    if flags[0] in "cC" or flags[1] in "sS":
        return DiffEntry(path, DiffKind.MODIFIED)

    # time, permission, owner, group, acl or xattr changes only
    return None


def parse_itemize_changes(output: Union[str, bytes]) -> DiffResult:
    """
    Parse the full itemized output of an rsync dry run.

    Args:
        output: Raw stdout, as text or bytes.

    Returns:
        DiffResult with one entry per changed regular file.
    """
    text = output.decode("utf-8", errors="replace") if isinstance(output, bytes) else output
    entries: List[DiffEntry] = []
    for line in text.splitlines():
        entry = parse_itemize_line(line)
        if entry is not None:
            entries.append(entry)
    return DiffResult.from_entries(entries)
