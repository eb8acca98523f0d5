"""
CLI entry point for deploysync.

Provides the command-line interface using Click.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Optional, Tuple

import click

from deploysync import __version__
from deploysync.config import (
    auto_detect_profile,
    get_profile_config,
    load_config,
    load_config_with_sources,
    profile_excludes,
    resolve_targets,
)
from deploysync.config import show_config as display_config
from deploysync.engine import get_target_diffs, upload_to_targets
from deploysync.errors import ConfigError
from deploysync.excludes import show_ignored_files
from deploysync.models import (
    ExitCode,
    OverallResult,
    ProgressEvent,
    TransferStatus,
    UploadOptions,
)
from deploysync.tree import DEFAULT_MAX_DEPTH, display_diff_tree
from deploysync.utils import (
    collect_upload_files,
    display_comment,
    format_duration,
    format_size,
    format_speed,
)

# Suppress paramiko's verbose error messages
logging.getLogger("paramiko").setLevel(logging.CRITICAL)


def version_callback(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Callback to display version and exit."""
    if value and not ctx.resilient_parsing:
        click.echo(f"deploysync version {__version__}")
        ctx.exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("paramiko").setLevel(logging.CRITICAL)


def _fail(message: str, code: int) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def _print_progress(event: ProgressEvent) -> None:
    """Print one line per finished file."""
    if event.status == TransferStatus.COMPLETED:
        mark = click.style("✅", fg="green")
    elif event.status == TransferStatus.FAILED:
        mark = click.style("❌", fg="red")
    else:
        return
    prefix = f"[{event.host}]" if event.total_targets > 1 else ""
    click.echo(
        f"{prefix}[{event.file_index + 1}/{event.total_files}] {mark} {event.current_file}"
    )


def _print_summary(result: OverallResult, elapsed: float) -> None:
    click.echo(f"\n{'=' * 60}")
    for target_result in result.targets:
        target = target_result.target
        if target_result.succeeded:
            status = click.style("✅ OK", fg="green", bold=True)
        else:
            status = click.style("❌ FAILED", fg="red", bold=True)
        click.echo(
            f"  {status}  {target.target_id} ({target.protocol.value}): "
            f"{target_result.success_count} done, {target_result.failed_count} failed, "
            f"{target_result.skipped_count} skipped"
        )
        if target_result.error:
            click.echo(click.style(f"      ↳ {target_result.error}", fg="red"), err=True)
        for f in target_result.files:
            if f.status == TransferStatus.FAILED and f.error:
                click.echo(click.style(f"      ↳ {f.path}: {f.error}", fg="red"), err=True)
    click.echo(f"{'=' * 60}")
    click.echo(
        f"📊 {result.success_targets} target(s) succeeded, {result.failed_targets} failed; "
        f"{result.total_files} file(s), {format_size(result.total_size)}"
        f" ({format_speed(result.total_size, elapsed)})"
    )
    click.echo(f"⏱️  Completed in {format_duration(elapsed)}")


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--version",
    "-v",
    is_flag=True,
    callback=version_callback,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option(
    "-p",
    "--profile",
    "profile_name",
    default=None,
    help="Profile from configuration. If omitted, auto-detects from current directory.",
)
@click.option(
    "-r/-nr",
    "--recursive/--no-recursive",
    default=True,
    help="Search for files recursively in subdirectories when using glob patterns [default: enabled]",
)
@click.option("--dry-run", is_flag=True, help="Connect and diff, but do not change any target.")
@click.option("--strict", is_flag=True, help="Abort a target at its first failed file.")
@click.option("--parallel", is_flag=True, help="Upload to all targets concurrently.")
@click.option(
    "--concurrency",
    default=10,
    type=click.IntRange(min=1),
    show_default=True,
    help="Parallel remote comparisons per target when diffing without rsync.",
)
@click.option(
    "--all",
    "all_files",
    is_flag=True,
    help="Upload every collected file instead of only changed ones.",
)
@click.option("--checksum", is_flag=True, help="Compare by checksum when rsync computes the diff.")
@click.option(
    "--diff",
    "show_diff",
    is_flag=True,
    help="Show what would change on each target and exit.",
)
@click.option(
    "--max-depth",
    default=DEFAULT_MAX_DEPTH,
    type=int,
    help=f"Maximum tree depth to display in diffs (default: {DEFAULT_MAX_DEPTH})",
)
@click.option(
    "-f",
    "--force",
    is_flag=True,
    help="Upload without showing the diff or asking for confirmation.",
)
@click.option(
    "--show-config",
    is_flag=True,
    help="Display the merged configuration with source file annotations and exit.",
)
@click.option(
    "--show-ignored",
    is_flag=True,
    help="List all files and directories that are being ignored by exclude patterns and exit.",
)
@click.option("--verbose", is_flag=True, help="Print debug logging.")
@click.argument("patterns", nargs=-1, required=False)
def main(
    profile_name: Optional[str],
    recursive: bool,
    dry_run: bool,
    strict: bool,
    parallel: bool,
    concurrency: int,
    all_files: bool,
    checksum: bool,
    show_diff: bool,
    max_depth: int,
    force: bool,
    show_config: bool,
    show_ignored: bool,
    verbose: bool,
    patterns: Tuple[str, ...],
) -> None:
    """
    Deploy files to every target of a profile, transferring only what changed.

    Targets are defined per profile in .deploysync.json. Each target names a
    protocol (local, scp, rsync, sftp or ftp), a host and a destination.

    \b
    PATTERNS can be:
      - Specific filenames: index.html style.css
      - Glob patterns: "*.css" "*.js" (MUST be quoted to prevent shell expansion)
      - Directories: src/assets (uploads all files in directory)
      - Nothing: the whole local_basepath of the profile

    \b
    Examples:
      deploysync                              # Deploy the auto-detected profile
      deploysync -p staging "*.css"           # Deploy CSS files to 'staging'
      deploysync -p prod --diff               # Show per-target changes and exit
      deploysync -p prod --dry-run            # Plan the deployment only
      deploysync -p prod -f --parallel        # No confirmation, all targets at once

    \b
    Exit codes:
      0 success, 1 error, 2 configuration error, 3 authentication error,
      4 connection error, 5 some targets failed
    """
    _configure_logging(verbose)

    try:
        if show_config:
            merged_config, source_map = load_config_with_sources()
            display_config(merged_config, source_map)
            sys.exit(ExitCode.SUCCESS)

        config = load_config()

        if profile_name is None:
            profile_name = auto_detect_profile(config)
            if profile_name is None:
                click.echo(
                    "Error: Could not auto-detect profile. Please specify one with -p or --profile.",
                    err=True,
                )
                click.echo("\nAvailable profiles:", err=True)
                for name, profile_config in config.get("profiles", {}).items():
                    click.echo(
                        f"  - {name}: {profile_config.get('local_basepath')}", err=True
                    )
                sys.exit(ExitCode.CONFIG_ERROR)
            click.echo(f"🔍 Auto-detected profile: {profile_name}")

        if "comments" in config:
            display_comment(config["comments"])

        profile = get_profile_config(config, profile_name)
        if "comments" in profile:
            display_comment(profile["comments"], prefix="📝")

        local_basepath = Path(profile["local_basepath"])
        if not local_basepath.is_dir():
            _fail(f"Local basepath '{local_basepath}' does not exist.", ExitCode.CONFIG_ERROR)

        excludes = profile_excludes(config, profile)

        if show_ignored:
            show_ignored_files(local_basepath, excludes)
            sys.exit(ExitCode.SUCCESS)

        targets = resolve_targets(config, profile_name)
    except ConfigError as e:
        _fail(str(e), ExitCode.CONFIG_ERROR)
        return

    files = collect_upload_files(list(patterns), excludes, local_basepath, recursive)
    if not files:
        click.echo("No files found to upload.")
        sys.exit(ExitCode.SUCCESS)

    click.echo(
        f"📦 {len(files)} file(s) from {local_basepath} → {len(targets)} target(s)"
    )

    options = UploadOptions(
        dry_run=dry_run,
        strict=strict,
        parallel=parallel,
        concurrency=concurrency,
        changed_only=not all_files,
        local_dir=local_basepath,
        checksum=checksum,
    )

    if show_diff or not (force or dry_run):
        diffs = get_target_diffs(targets, files, options)
        for target_diff in diffs:
            title = f"{target_diff.target.target_id} ({target_diff.method} diff)"
            if target_diff.error:
                click.echo(click.style(f"\n📂 {title}", fg="cyan", bold=True))
                click.echo(click.style(f"  ⚠️  {target_diff.error}", fg="red"), err=True)
            elif target_diff.diff is not None:
                display_diff_tree(target_diff.diff, title=title, max_depth=max_depth)

        if show_diff:
            sys.exit(ExitCode.SUCCESS)

        if not click.confirm("\n⚠️  Proceed with upload?", default=False):
            click.echo("Upload cancelled.")
            sys.exit(ExitCode.SUCCESS)
        click.echo("")

    if dry_run:
        click.echo(click.style("🧪 Dry run: no changes will be made.", fg="yellow"))

    start_time = time.time()
    result = upload_to_targets(targets, files, options, on_progress=_print_progress)
    _print_summary(result, time.time() - start_time)

    sys.exit(result.exit_code())


if __name__ == "__main__":
    main()
