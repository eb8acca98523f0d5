"""
Diff tree display for deploysync.

Renders a target's DiffResult as a directory tree before upload.
"""

from typing import Any, Dict, List

import click

from deploysync.models import DiffKind, DiffResult

DEFAULT_MAX_DEPTH = 20

STATUS_LABELS = {
    DiffKind.ADDED: ("[NEW]", "green"),
    DiffKind.MODIFIED: ("[MODIFIED]", "yellow"),
    DiffKind.DELETED: ("[DELETE]", "red"),
}


def build_tree(diff: DiffResult) -> Dict[str, Any]:
    """
    Nest diff entries by path segment.

    Directories are ``{"__type__": "dir", "__children__": {...}}``, files
    ``{"__type__": "file", "__status__": DiffKind}``.
    """
    tree_structure: Dict[str, Any] = {}

    for entry in diff.entries:
        parts = entry.path.strip("/").split("/")
        current = tree_structure
        for part in parts[:-1]:
            if part not in current:
                current[part] = {"__type__": "dir", "__children__": {}}
            current = current[part]["__children__"]
        current[parts[-1]] = {"__type__": "file", "__status__": entry.kind}

    return tree_structure


def _count_files(node: Dict[str, Any]) -> int:
    count = 0
    for value in node.values():
        if value.get("__type__") == "file":
            count += 1
        elif value.get("__type__") == "dir":
            count += _count_files(value.get("__children__", {}))
    return count


def render_tree(tree_structure: Dict[str, Any], max_depth: int = DEFAULT_MAX_DEPTH) -> List[str]:
    """Render a built tree to lines, directories first at each level."""
    lines: List[str] = []
    depth_exceeded_count = 0

    def display_node(node: Dict[str, Any], prefix: str = "", depth: int = 0) -> None:
        nonlocal depth_exceeded_count

        if depth > max_depth:
            depth_exceeded_count += _count_files(node)
            return

        items = sorted(node.items())
        dirs = [(k, v) for k, v in items if v.get("__type__") == "dir"]
        files = [(k, v) for k, v in items if v.get("__type__") == "file"]
        all_items = dirs + files

        for idx, (name, value) in enumerate(all_items):
            is_last = idx == len(all_items) - 1
            connector = "└── " if is_last else "├── "

            if value.get("__type__") == "dir":
                lines.append(f"{prefix}{connector}{name}/")
                extension = "    " if is_last else "│   "
                display_node(value.get("__children__", {}), prefix + extension, depth + 1)
            else:
                label, color = STATUS_LABELS[value["__status__"]]
                lines.append(
                    f"{prefix}{connector}{name} {click.style(label, fg=color, bold=True)}"
                )

    display_node(tree_structure)

    if depth_exceeded_count > 0:
        lines.append(f"\n... ({depth_exceeded_count} more files beyond depth {max_depth})")
    return lines


def display_diff_tree(
    diff: DiffResult,
    title: str = "",
    max_depth: int = DEFAULT_MAX_DEPTH,
    summary_only: bool = False,
) -> None:
    """
    Display a diff as a tree followed by summary counts.

    Args:
        diff: Diff to display.
        title: Heading, typically the target id.
        max_depth: Maximum tree depth to display.
        summary_only: Skip the tree and show counts only.
    """
    if title:
        click.echo(click.style(f"\n📂 {title}", fg="cyan", bold=True))

    if not summary_only:
        if diff.total == 0:
            click.echo(click.style("  No changes.", dim=True))
        else:
            for line in render_tree(build_tree(diff), max_depth):
                click.echo(line)

    _display_summary(diff)


def _display_summary(diff: DiffResult) -> None:
    click.echo(f"\n{'=' * 60}")
    click.echo("📊 Summary:")
    click.echo(f"{'=' * 60}")
    click.echo(f"  {click.style('New files:     ', fg='green')} {diff.added}")
    click.echo(f"  {click.style('Modified files:', fg='yellow')} {diff.modified}")
    click.echo(f"  {click.style('Deleted files: ', fg='red')} {diff.deleted}")
    click.echo(f"{'=' * 60}\n")
